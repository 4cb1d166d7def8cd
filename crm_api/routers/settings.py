"""
Настройки профиля текущего пользователя
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crm_api.auth import get_current_user, get_password_hash, verify_password
from crm_api.database import Manager, get_db
from crm_api.errors import ValidationFailedError
from crm_api.responses import dump, ok, record_activity
from crm_api.routers.managers import ensure_email_free
from crm_api.schemas import ChangePasswordRequest, ManagerResponse, ProfileUpdate

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/profile")
async def get_profile(current_user: Manager = Depends(get_current_user)):
    """Профиль текущего пользователя"""
    return ok(dump(ManagerResponse, current_user))


@router.put("/profile")
async def update_profile(
    profile: ProfileUpdate,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Изменить свои имя, email, телефон (роль и руководители - только через admin)"""
    update_data = profile.model_dump(exclude_unset=True)
    if update_data.get("email"):
        ensure_email_free(db, update_data["email"], exclude_id=current_user.id)

    for field, value in update_data.items():
        if value is not None or field == "phone_number":
            setattr(current_user, field, value)

    current_user.updated_at = datetime.utcnow()
    record_activity(db, current_user, "update", "profile", current_user.id)
    db.commit()
    db.refresh(current_user)
    return ok(dump(ManagerResponse, current_user))


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Сменить пароль, зная текущий"""
    if not verify_password(payload.current_password, current_user.password_hash):
        raise ValidationFailedError("Current password is incorrect")

    current_user.password_hash = get_password_hash(payload.new_password)
    record_activity(db, current_user, "update", "password", current_user.id)
    db.commit()
    return ok(message="Password changed successfully")
