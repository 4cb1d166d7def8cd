"""
Загрузка и удаление вложений
"""
from fastapi import APIRouter, Depends, File, UploadFile

from crm_api.auth import get_current_user
from crm_api.database import Manager
from crm_api.errors import NotFoundError, ValidationFailedError
from crm_api.file_storage import FileTooLargeError, LocalFileStorage, get_file_storage
from crm_api.responses import ok
from crm_api.schemas import FileDeleteRequest

router = APIRouter(prefix="/api/upload", tags=["upload"])


@router.post("")
async def upload_file(
    file: UploadFile = File(...),
    current_user: Manager = Depends(get_current_user),
    storage: LocalFileStorage = Depends(get_file_storage)
):
    """Загрузить файл; ответ - fileName, fileUrl, fileType"""
    if not file.filename:
        raise ValidationFailedError("No file provided")

    content = await file.read()
    try:
        info = storage.save(file.filename, content, file.content_type, user=current_user.email)
    except FileTooLargeError:
        raise ValidationFailedError("File too large")
    return ok(info)


@router.delete("")
async def delete_file(
    payload: FileDeleteRequest,
    current_user: Manager = Depends(get_current_user),
    storage: LocalFileStorage = Depends(get_file_storage)
):
    """Удалить загруженный файл"""
    if not storage.delete(payload.fileUrl, user=current_user.email):
        raise NotFoundError("File not found")
    return ok(message="File deleted successfully")
