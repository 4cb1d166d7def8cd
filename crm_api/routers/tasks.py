"""
Задачи

Описание задачи меняет только автор, статус - только исполнитель
(admin может и то и другое).
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crm_api.access import Role, Scope, get_visible_or_404, scoped_query
from crm_api.auth import get_current_scope, get_current_user
from crm_api.database import Manager, Project, SubProject, Task, get_db
from crm_api.errors import ForbiddenError
from crm_api.responses import PageParams, dump, ok, paginated, record_activity
from crm_api.routers.common import apply_update, ensure_exists, owner_or_self
from crm_api.schemas import TaskCreate, TaskResponse, TaskStatus, TaskStatusUpdate, TaskUpdate

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def is_admin(manager: Manager) -> bool:
    return manager.role == Role.ADMIN.value


def can_edit_task(task: Task, manager: Manager) -> bool:
    return is_admin(manager) or task.creator_manager_id == manager.id


def can_change_task_status(task: Task, manager: Manager) -> bool:
    return is_admin(manager) or task.responsible_manager_id == manager.id


def check_links(db: Session, scope: Scope, project_id, subproject_id):
    """Привязка к проекту/подпроекту - только к видимым"""
    if project_id is not None:
        get_visible_or_404(db, Project, project_id, scope, "Project not found")
    if subproject_id is not None:
        get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")


@router.get("")
async def get_tasks(
    status: Optional[TaskStatus] = None,
    project_id: Optional[int] = None,
    subproject_id: Optional[int] = None,
    responsible_manager_id: Optional[int] = None,
    page: PageParams = Depends(),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Список задач: где пользователь (или его подчинённые) исполнитель или автор"""
    query = scoped_query(db, Task, scope)
    if status is not None:
        query = query.filter(Task.status == status.value)
    if project_id is not None:
        query = query.filter(Task.project_id == project_id)
    if subproject_id is not None:
        query = query.filter(Task.subproject_id == subproject_id)
    if responsible_manager_id is not None:
        query = query.filter(Task.responsible_manager_id == responsible_manager_id)
    return paginated(query.order_by(Task.id), page, TaskResponse)


@router.get("/{task_id}")
async def get_task(
    task_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Получить задачу по ID"""
    task = get_visible_or_404(db, Task, task_id, scope, "Task not found")
    return ok(dump(TaskResponse, task))


@router.post("", status_code=201)
async def create_task(
    task_data: TaskCreate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Создать задачу; без исполнителя исполнителем становится автор"""
    check_links(db, scope, task_data.project_id, task_data.subproject_id)

    task = Task(
        title=task_data.title,
        description=task_data.description,
        status=task_data.status.value,
        priority=task_data.priority.value,
        responsible_manager_id=owner_or_self(db, task_data.responsible_manager_id, current_user),
        creator_manager_id=current_user.id,
        project_id=task_data.project_id,
        subproject_id=task_data.subproject_id,
        due_date=task_data.due_date,
    )
    db.add(task)
    db.flush()

    record_activity(db, current_user, "create", "task", task.id)
    db.commit()
    db.refresh(task)
    return ok(dump(TaskResponse, task))


@router.put("/{task_id}")
async def update_task(
    task_id: int,
    task_data: TaskUpdate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Изменить задачу (автор или admin)"""
    task = get_visible_or_404(db, Task, task_id, scope, "Task not found")
    if not can_edit_task(task, current_user):
        raise ForbiddenError("Only the task creator can edit this task")

    update_data = task_data.model_dump(exclude_unset=True)
    check_links(db, scope, update_data.get("project_id"), update_data.get("subproject_id"))
    ensure_exists(db, Manager, update_data.get("responsible_manager_id"), "Manager not found")
    apply_update(task, update_data, required=("title", "priority"))
    task.updated_at = datetime.utcnow()

    record_activity(db, current_user, "update", "task", task.id)
    db.commit()
    db.refresh(task)
    return ok(dump(TaskResponse, task))


@router.put("/{task_id}/status")
async def update_task_status(
    task_id: int,
    payload: TaskStatusUpdate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Сменить статус задачи (исполнитель или admin)"""
    task = get_visible_or_404(db, Task, task_id, scope, "Task not found")
    if not can_change_task_status(task, current_user):
        raise ForbiddenError("Only the assignee can change the task status")

    task.status = payload.status.value
    task.updated_at = datetime.utcnow()
    record_activity(db, current_user, "update", "task", task.id)
    db.commit()
    db.refresh(task)
    return ok(dump(TaskResponse, task))


@router.delete("/{task_id}")
async def delete_task(
    task_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Удалить задачу (автор или admin)"""
    task = get_visible_or_404(db, Task, task_id, scope, "Task not found")
    if not can_edit_task(task, current_user):
        raise ForbiddenError("Only the task creator can delete this task")

    db.delete(task)
    record_activity(db, current_user, "delete", "task", task_id)
    db.commit()
    return ok(message="Task deleted")
