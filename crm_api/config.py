"""
Конфигурация приложения
Загружает переменные окружения и настройки
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Настройки приложения из .env файла"""

    # База данных
    database_url: str = "sqlite:///./crm.db"

    # JWT
    secret_key: str = "change-this-secret-key"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Приложение
    app_name: str = "CRM API"
    app_version: str = "1.0.0"
    debug: bool = False
    allowed_origins: list = ["http://localhost:3000"]

    # Файлы
    upload_dir: str = "./uploads"
    max_file_size: int = 10 * 1024 * 1024

    # Логи
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Видимость: руководитель видит подчинённых подчинённых
    transitive_subordinates: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Получить настройки (кэшированные)"""
    return Settings()
