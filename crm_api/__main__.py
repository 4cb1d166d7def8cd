"""
Запуск сервера: python -m crm_api
"""
import os

import uvicorn


def main():
    uvicorn.run(
        "crm_api.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "3001")),
    )


if __name__ == "__main__":
    main()
