"""
Менеджеры (пользователи системы) и граф подчинения
"""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from crm_api.access import Scope, get_visible_or_404, scoped_query
from crm_api.auth import get_current_scope, get_password_hash, require_admin
from crm_api.database import (
    ActivityLog, Counterparty, Manager, Project, ProjectComment, Sale,
    SubProjectComment, Task, get_db, manager_supervisors, project_managers
)
from crm_api.errors import DomainConflictError, NotFoundError, ValidationFailedError
from crm_api.responses import PageParams, dump, ok, paginated, record_activity
from crm_api.schemas import ManagerCreate, ManagerResponse, ManagerUpdate, SupervisorsUpdate

router = APIRouter(prefix="/api/managers", tags=["managers"])


def ensure_email_free(db: Session, email: str, exclude_id: int = None):
    query = db.query(Manager).filter(func.lower(Manager.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(Manager.id != exclude_id)
    if query.first():
        raise DomainConflictError("Email already exists")


def set_supervisors(db: Session, manager: Manager, supervisor_ids: List[int]):
    """Заменить множество руководителей менеджера"""
    wanted = sorted(set(supervisor_ids))
    if manager.id is not None and manager.id in wanted:
        raise ValidationFailedError("Manager cannot supervise themselves")
    supervisors = db.query(Manager).filter(Manager.id.in_(wanted)).all() if wanted else []
    missing = set(wanted) - {s.id for s in supervisors}
    if missing:
        raise NotFoundError(f"Supervisor not found: {sorted(missing)[0]}")
    manager.supervisors = supervisors


@router.get("")
async def get_managers(
    page: PageParams = Depends(),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Список менеджеров в области видимости"""
    query = scoped_query(db, Manager, scope).order_by(Manager.id)
    return paginated(query, page, ManagerResponse)


@router.get("/{manager_id}")
async def get_manager(
    manager_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Получить менеджера по ID"""
    manager = get_visible_or_404(db, Manager, manager_id, scope, "Manager not found")
    return ok(dump(ManagerResponse, manager))


@router.post("", status_code=201)
async def create_manager(
    manager_data: ManagerCreate,
    current_user: Manager = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Создать менеджера (только admin)"""
    ensure_email_free(db, manager_data.email)

    manager = Manager(
        **manager_data.model_dump(exclude={"password", "supervisor_ids", "role"}),
        role=manager_data.role.value,
        password_hash=get_password_hash(manager_data.password),
    )
    set_supervisors(db, manager, manager_data.supervisor_ids)
    db.add(manager)
    db.flush()

    record_activity(db, current_user, "create", "manager", manager.id)
    db.commit()
    db.refresh(manager)
    return ok(dump(ManagerResponse, manager))


@router.put("/{manager_id}")
async def update_manager(
    manager_id: int,
    manager_data: ManagerUpdate,
    current_user: Manager = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Обновить менеджера (только admin)"""
    manager = db.get(Manager, manager_id)
    if not manager:
        raise NotFoundError("Manager not found")

    update_data = manager_data.model_dump(exclude_unset=True)
    if update_data.get("email"):
        ensure_email_free(db, update_data["email"], exclude_id=manager.id)
    if "password" in update_data:
        password = update_data.pop("password")
        if password:
            manager.password_hash = get_password_hash(password)
    if "supervisor_ids" in update_data:
        set_supervisors(db, manager, update_data.pop("supervisor_ids") or [])
    if update_data.get("role") is not None:
        update_data["role"] = update_data["role"].value

    for field, value in update_data.items():
        if value is not None or field == "phone_number":
            setattr(manager, field, value)

    manager.updated_at = datetime.utcnow()
    record_activity(db, current_user, "update", "manager", manager.id)
    db.commit()
    db.refresh(manager)
    return ok(dump(ManagerResponse, manager))


@router.put("/{manager_id}/supervisors")
async def update_supervisors(
    manager_id: int,
    payload: SupervisorsUpdate,
    current_user: Manager = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Задать руководителей менеджера (только admin)"""
    manager = db.get(Manager, manager_id)
    if not manager:
        raise NotFoundError("Manager not found")

    set_supervisors(db, manager, payload.supervisor_ids)
    record_activity(db, current_user, "update", "manager", manager.id)
    db.commit()
    db.refresh(manager)
    return ok(dump(ManagerResponse, manager))


@router.delete("/{manager_id}")
async def delete_manager(
    manager_id: int,
    current_user: Manager = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Удалить менеджера; его записи остаются без ответственного"""
    if manager_id == current_user.id:
        raise ValidationFailedError("Cannot delete yourself")

    manager = db.get(Manager, manager_id)
    if not manager:
        raise NotFoundError("Manager not found")

    # Ссылки-владельцы обнуляются, сами записи остаются
    owner_columns = [
        (Counterparty, Counterparty.responsible_manager_id),
        (Sale, Sale.responsible_manager_id),
        (Project, Project.main_responsible_manager_id),
        (Task, Task.responsible_manager_id),
        (Task, Task.creator_manager_id),
        (ProjectComment, ProjectComment.manager_id),
        (SubProjectComment, SubProjectComment.manager_id),
        (ActivityLog, ActivityLog.manager_id),
    ]
    for model, column in owner_columns:
        db.query(model).filter(column == manager_id).update(
            {column: None}, synchronize_session=False
        )

    db.execute(manager_supervisors.delete().where(
        (manager_supervisors.c.manager_id == manager_id)
        | (manager_supervisors.c.supervisor_id == manager_id)
    ))
    db.execute(project_managers.delete().where(project_managers.c.manager_id == manager_id))

    db.expire_all()
    db.delete(db.get(Manager, manager_id))
    record_activity(db, current_user, "delete", "manager", manager_id)
    db.commit()
    return ok(message="Manager deleted")
