"""
Аутентификация: вход, текущий пользователь, выход
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from crm_api.auth import create_access_token, get_current_user, verify_password
from crm_api.database import Manager, get_db
from crm_api.errors import NotAuthenticatedError
from crm_api.logger import log_auth_attempt
from crm_api.responses import dump, ok, record_activity
from crm_api.schemas import LoginRequest, LoginResponse, ManagerResponse

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login")
async def login(
    credentials: LoginRequest,
    request: Request,
    db: Session = Depends(get_db)
):
    """Вход в систему"""
    client_ip = request.client.host if request.client else None
    manager = db.query(Manager).filter(func.lower(Manager.email) == credentials.email).first()
    if not manager or not verify_password(credentials.password, manager.password_hash):
        log_auth_attempt(credentials.email, False, client_ip)
        raise NotAuthenticatedError("Invalid email or password")

    token = create_access_token(manager)
    manager.last_login = datetime.utcnow()
    record_activity(db, manager, "login", "auth", manager.id)
    db.commit()
    db.refresh(manager)

    log_auth_attempt(manager.email, True, client_ip)
    return ok(LoginResponse(user=dump(ManagerResponse, manager), token=token))


@router.get("/me")
async def get_me(current_user: Manager = Depends(get_current_user)):
    """Получить информацию о текущем пользователе"""
    return ok(dump(ManagerResponse, current_user))


@router.post("/logout")
async def logout(
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Выход из системы; токен не хранится на сервере, клиент его забывает"""
    record_activity(db, current_user, "logout", "auth", current_user.id)
    db.commit()
    return ok(message="Logged out")
