"""
Ошибки предметной области и обработчики исключений
Все ошибки отдаются в конверте {success: false, error: ...}
"""
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from crm_api.logger import log_error


class CRMError(Exception):
    """Базовая ошибка CRM"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAuthenticatedError(CRMError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class ForbiddenError(CRMError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(CRMError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ValidationFailedError(CRMError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation error"


class DomainConflictError(CRMError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    body = {"success": False, "error": message}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def crm_error_handler(request: Request, exc: CRMError):
    headers = None
    if isinstance(exc, NotAuthenticatedError):
        headers = {"WWW-Authenticate": "Bearer"}
    response = error_response(exc.status_code, exc.message)
    if headers:
        response.headers.update(headers)
    return response


async def http_exception_handler(request: Request, exc: HTTPException):
    response = error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Некорректный id, пропущенное поле, скаляр вместо массива
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "Validation error",
        details=[
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ],
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    log_error(exc, context=f"{request.method} {request.url.path}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI):
    """Подключить обработчики ошибок к приложению"""
    app.add_exception_handler(CRMError, crm_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
