"""
Локальное хранилище вложений
Файлы сохраняются в upload_dir и отдаются по /uploads/<имя>
"""
import os
import re
import time
from typing import Optional

from crm_api.config import get_settings
from crm_api.logger import log_file_operation

settings = get_settings()

URL_PREFIX = "/uploads/"


class FileTooLargeError(Exception):
    """Файл превышает max_file_size"""


class LocalFileStorage:
    """Сервис для работы с файлами на диске"""

    def __init__(self, base_dir: str = None, max_size: int = None):
        self.base_dir = base_dir or settings.upload_dir
        self.max_size = max_size if max_size is not None else settings.max_file_size

    @staticmethod
    def make_stored_name(original_name: str, timestamp_ms: Optional[int] = None) -> str:
        """
        Уникальное имя файла на диске: <timestamp>_<имя><расширение>

        Args:
            original_name: Имя файла от клиента
            timestamp_ms: Метка времени (по умолчанию текущая, в миллисекундах)

        Returns:
            Имя без каталогов
        """
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        base = os.path.basename(original_name.replace("\\", "/")) or "file"
        stem, ext = os.path.splitext(base)
        stem = re.sub(r"[^\w.\-]+", "_", stem).strip("._") or "file"
        return f"{timestamp_ms}_{stem}{ext}"

    def path_for_url(self, file_url: str) -> str:
        """Путь на диске по URL; каталоги из URL отбрасываются"""
        return os.path.join(self.base_dir, os.path.basename(file_url))

    def save(self, original_name: str, content: bytes, content_type: str = None, user=None) -> dict:
        """
        Сохранить файл

        Returns:
            dict fileName / fileUrl / fileType
        """
        if len(content) > self.max_size:
            raise FileTooLargeError(original_name)

        os.makedirs(self.base_dir, exist_ok=True)
        stored_name = self.make_stored_name(original_name)
        with open(os.path.join(self.base_dir, stored_name), "wb") as f:
            f.write(content)

        log_file_operation("UPLOAD", stored_name, user)
        return {
            "fileName": original_name,
            "fileUrl": f"{URL_PREFIX}{stored_name}",
            "fileType": content_type or "application/octet-stream",
        }

    def delete(self, file_url: str, user=None) -> bool:
        """Удалить файл; False если файла нет"""
        path = self.path_for_url(file_url)
        if not os.path.isfile(path):
            return False
        os.remove(path)
        log_file_operation("DELETE", os.path.basename(path), user)
        return True


# Singleton instance
_file_storage = None


def get_file_storage() -> LocalFileStorage:
    """Получить экземпляр файлового хранилища"""
    global _file_storage
    if _file_storage is None:
        _file_storage = LocalFileStorage()
    return _file_storage
