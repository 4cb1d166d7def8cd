"""
JWT аутентификация
Создание и проверка токенов, текущий менеджер и его область видимости
"""
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from crm_api.config import get_settings
from crm_api.database import get_db, Manager
from crm_api.access import Role, Scope, load_scope
from crm_api.errors import NotAuthenticatedError, ForbiddenError

settings = get_settings()

# Контекст для хэширования паролей
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# OAuth2 схема
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Проверка пароля"""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Хэширование пароля"""
    return pwd_context.hash(password)


def create_access_token(manager: Manager, expires_delta: Optional[timedelta] = None) -> str:
    """Создание JWT токена для менеджера"""
    to_encode = {
        "sub": str(manager.id),
        "manager_id": manager.id,
        "email": manager.email,
        "role": manager.role,
    }
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    return encoded_jwt


def decode_token(token: str) -> dict:
    """Декодирование JWT токена"""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload
    except JWTError:
        raise NotAuthenticatedError("Invalid or expired token")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> Manager:
    """Получить текущего менеджера из токена"""
    payload = decode_token(token)
    manager_id = payload.get("manager_id") or payload.get("sub")
    try:
        manager_id = int(manager_id)
    except (TypeError, ValueError):
        raise NotAuthenticatedError("Invalid or expired token")

    manager = db.get(Manager, manager_id)
    if manager is None:
        raise NotAuthenticatedError("Invalid or expired token")

    return manager


async def get_current_scope(
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Scope:
    """Область видимости текущего менеджера"""
    return load_scope(db, current_user, transitive=settings.transitive_subordinates)


async def require_admin(current_user: Manager = Depends(get_current_user)) -> Manager:
    """Только для администратора"""
    if current_user.role != Role.ADMIN.value:
        raise ForbiddenError("Admin access required")
    return current_user
