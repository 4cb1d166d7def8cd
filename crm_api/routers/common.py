"""
Общие проверки для роутеров
"""
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from crm_api.database import Manager
from crm_api.errors import NotFoundError


def ensure_exists(db: Session, model, record_id: Optional[int], message: str):
    """Запись справочника по id или NotFoundError; None пропускается"""
    if record_id is None:
        return None
    record = db.get(model, record_id)
    if record is None:
        raise NotFoundError(message)
    return record


def owner_or_self(db: Session, requested_id: Optional[int], current_user: Manager) -> int:
    """Ответственный из запроса (должен существовать) или сам автор"""
    if requested_id is None:
        return current_user.id
    ensure_exists(db, Manager, requested_id, "Manager not found")
    return requested_id


def apply_update(record, update_data: dict, required: Iterable[str] = ()):
    """Перенести поля из exclude_unset-дампа; обязательные поля не обнуляются"""
    required = set(required)
    for field, value in update_data.items():
        if value is None and field in required:
            continue
        if hasattr(value, "value"):
            value = value.value
        setattr(record, field, value)
    return record
