# -*- coding: utf-8 -*-
"""
Централизованная система логирования для CRM API
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from crm_api.config import get_settings


def setup_logger(name='crm', level=None):
    """
    Настраивает и возвращает logger

    Args:
        name: Имя logger'а
        level: Уровень логирования (по умолчанию из настроек)

    Returns:
        Настроенный logger
    """
    logger = logging.getLogger(name)

    # Если logger уже настроен, возвращаем его
    if logger.handlers:
        return logger

    settings = get_settings()
    if level is None:
        level = logging.getLevelName(settings.log_level.upper())
    logger.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    os.makedirs(settings.log_dir, exist_ok=True)

    # Handler 1: Файл для всех логов (ротация при 10MB, хранить 5 файлов)
    file_handler = RotatingFileHandler(
        os.path.join(settings.log_dir, 'crm_all.log'),
        maxBytes=10*1024*1024,
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Handler 2: Файл только для ошибок
    error_handler = RotatingFileHandler(
        os.path.join(settings.log_dir, 'crm_errors.log'),
        maxBytes=10*1024*1024,
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    logger.addHandler(error_handler)

    # Handler 3: Консоль
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Дочерние логгеры пишут через 'crm', без дублирования в root
    logger.propagate = name != 'crm'

    return logger


# Глобальный logger для всего приложения
app_logger = setup_logger('crm')

# Специализированные логгеры для разных модулей
db_logger = logging.getLogger('crm.database')
auth_logger = logging.getLogger('crm.auth')
api_logger = logging.getLogger('crm.api')


def log_database_operation(operation: str, table: str, record_id=None, user=None):
    """
    Логирует операцию с базой данных (аудит)

    Args:
        operation: Тип операции (CREATE, UPDATE, DELETE)
        table: Название таблицы
        record_id: ID записи (опционально)
        user: Пользователь, выполнивший операцию (опционально)
    """
    user_str = f" by {user}" if user else ""
    record_str = f" #{record_id}" if record_id else ""

    db_logger.info(f"DB {operation}: {table}{record_str}{user_str}")


def log_auth_attempt(email: str, success: bool, ip: str = None):
    """
    Логирует попытку входа в систему

    Args:
        email: Email пользователя
        success: Успешна ли попытка
        ip: IP адрес (опционально)
    """
    status = "SUCCESS" if success else "FAILED"
    ip_str = f" from {ip}" if ip else ""

    if success:
        auth_logger.info(f"AUTH {status}: User '{email}'{ip_str}")
    else:
        auth_logger.warning(f"AUTH {status}: User '{email}'{ip_str}")


def log_error(error: Exception, context: str = None):
    """
    Логирует ошибку с полным traceback

    Args:
        error: Исключение
        context: Контекст ошибки (опционально)
    """
    context_str = f" [{context}]" if context else ""
    api_logger.error(f"ERROR{context_str}: {str(error)}", exc_info=error)


def log_file_operation(operation: str, filename: str, user=None):
    """
    Логирует операцию с файлом

    Args:
        operation: Тип операции (UPLOAD, DELETE)
        filename: Имя файла
        user: Пользователь (опционально)
    """
    user_str = f" by {user}" if user else ""
    api_logger.info(f"FILE {operation}: {filename}{user_str}")
