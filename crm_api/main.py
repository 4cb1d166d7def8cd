"""
FastAPI приложение - главный файл
REST API CRM: менеджеры, контрагенты, продажи, проекты, воронки, задачи
"""
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from crm_api.config import get_settings
from crm_api.database import init_db
from crm_api.errors import register_exception_handlers
from crm_api.file_storage import URL_PREFIX
from crm_api.logger import app_logger
from crm_api.routers import ALL_ROUTERS

settings = get_settings()

# Создание приложения
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="REST API CRM с ролевой видимостью записей",
    debug=settings.debug,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

for router in ALL_ROUTERS:
    app.include_router(router)

# Загруженные файлы
app.mount(URL_PREFIX.rstrip("/"), StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")


@app.on_event("startup")
async def startup_event():
    """Инициализация при запуске"""
    app_logger.info(f"Запуск {settings.app_name} v{settings.app_version}")
    os.makedirs(settings.upload_dir, exist_ok=True)
    init_db()
    app_logger.info("База данных инициализирована")


@app.get("/")
async def root():
    """Корневой эндпоинт"""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Проверка здоровья сервиса"""
    return {"status": "healthy"}
