"""
Проекты: карточки, доска воронки, ответственные, товары и услуги проекта
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from crm_api.access import Scope, filter_visible, get_visible_or_404, scoped_query
from crm_api.auth import get_current_scope, get_current_user
from crm_api.database import (
    Counterparty, Funnel, FunnelStage, Manager, Product, Project, ProjectProduct,
    ProjectService, Sale, Service, SubProject, Task, get_db
)
from crm_api.errors import DomainConflictError, NotFoundError, ValidationFailedError
from crm_api.pipeline import build_project_board, move_project_to_stage
from crm_api.pricing import service_units
from crm_api.responses import PageParams, dump, dump_many, ok, paginated, record_activity
from crm_api.routers.common import apply_update, ensure_exists, owner_or_self
from crm_api.schemas import (
    FunnelBrief, ProjectBoardResponse, ProjectCreate, ProjectManagerAdd,
    ProjectProductAdd, ProjectProductResponse, ProjectResponse, ProjectServiceAdd,
    ProjectServiceResponse, ProjectUpdate, StageMove, StageResponse,
    SubProjectResponse
)

router = APIRouter(prefix="/api/projects", tags=["projects"])


def load_managers(db: Session, manager_ids):
    wanted = sorted(set(manager_ids))
    managers = db.query(Manager).filter(Manager.id.in_(wanted)).all() if wanted else []
    missing = set(wanted) - {m.id for m in managers}
    if missing:
        raise NotFoundError(f"Manager not found: {sorted(missing)[0]}")
    return managers


def resolve_funnel_position(db: Session, funnel_id: Optional[int], stage_id: Optional[int]):
    """(funnel_id, funnel_stage_id) с проверкой; этап определяет воронку"""
    if stage_id is not None:
        stage = ensure_exists(db, FunnelStage, stage_id, "Stage not found")
        if funnel_id is not None and funnel_id != stage.funnel_id:
            raise ValidationFailedError("Stage does not belong to the funnel")
        return stage.funnel_id, stage.id
    ensure_exists(db, Funnel, funnel_id, "Funnel not found")
    return funnel_id, None


@router.get("")
async def get_projects(
    funnel_id: Optional[int] = None,
    funnel_stage_id: Optional[int] = None,
    counterparty_id: Optional[int] = None,
    page: PageParams = Depends(),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Список проектов с необязательными фильтрами"""
    query = scoped_query(db, Project, scope)
    if funnel_id is not None:
        query = query.filter(Project.funnel_id == funnel_id)
    if funnel_stage_id is not None:
        query = query.filter(Project.funnel_stage_id == funnel_stage_id)
    if counterparty_id is not None:
        query = query.filter(Project.counterparty_id == counterparty_id)
    return paginated(query.order_by(Project.id), page, ProjectResponse)


@router.get("/board")
async def get_project_board(
    funnel_id: Optional[int] = Query(None),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Доска воронки: этапы по порядку с видимыми проектами"""
    if funnel_id is None:
        funnel = db.query(Funnel).order_by(Funnel.id).first()
        if funnel is None:
            raise NotFoundError("Funnel not found")
    else:
        funnel = ensure_exists(db, Funnel, funnel_id, "Funnel not found")

    stage_ids = [s.id for s in funnel.stages]
    condition = Project.funnel_id == funnel.id
    if stage_ids:
        condition = condition | Project.funnel_stage_id.in_(stage_ids)
    projects = scoped_query(db, Project, scope).filter(condition).order_by(Project.id).all()

    board = build_project_board(funnel.stages, projects)
    return ok(ProjectBoardResponse(
        funnel=dump(FunnelBrief, funnel),
        stages=[
            {
                "stage": dump(StageResponse, column["stage"]),
                "projects": dump_many(ProjectResponse, column["projects"]),
            }
            for column in board["stages"]
        ],
        unassigned=dump_many(ProjectResponse, board["unassigned"]),
    ))


@router.get("/{project_id}")
async def get_project(
    project_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Получить проект по ID"""
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    return ok(dump(ProjectResponse, project))


@router.post("", status_code=201)
async def create_project(
    project_data: ProjectCreate,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Создать проект; без главного ответственного им становится автор"""
    ensure_exists(db, Counterparty, project_data.counterparty_id, "Counterparty not found")
    funnel_id, stage_id = resolve_funnel_position(db, project_data.funnel_id, project_data.funnel_stage_id)

    project = Project(
        name=project_data.name,
        description=project_data.description,
        forecast_amount=project_data.forecast_amount,
        counterparty_id=project_data.counterparty_id,
        main_responsible_manager_id=owner_or_self(db, project_data.main_responsible_manager_id, current_user),
        funnel_id=funnel_id,
        funnel_stage_id=stage_id,
    )
    project.secondary_managers = load_managers(db, project_data.secondary_responsible_manager_ids)
    db.add(project)
    db.flush()

    record_activity(db, current_user, "create", "project", project.id)
    db.commit()
    db.refresh(project)
    return ok(dump(ProjectResponse, project))


@router.put("/{project_id}")
async def update_project(
    project_id: int,
    project_data: ProjectUpdate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Обновить проект"""
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")

    update_data = project_data.model_dump(exclude_unset=True)
    ensure_exists(db, Counterparty, update_data.get("counterparty_id"), "Counterparty not found")
    ensure_exists(db, Manager, update_data.get("main_responsible_manager_id"), "Manager not found")

    if "secondary_responsible_manager_ids" in update_data:
        ids = update_data.pop("secondary_responsible_manager_ids") or []
        project.secondary_managers = load_managers(db, ids)

    if "funnel_id" in update_data or "funnel_stage_id" in update_data:
        funnel_given = "funnel_id" in update_data
        requested_funnel = update_data.pop("funnel_id", None)
        if "funnel_stage_id" in update_data:
            requested_stage = update_data.pop("funnel_stage_id")
            # Снятие этапа без funnel_id оставляет проект в его воронке
            if not funnel_given and requested_stage is None:
                requested_funnel = project.funnel_id
        else:
            # Смена воронки без этапа: этап остаётся, только если он из новой воронки
            current = project.funnel_stage
            keep = current is not None and current.funnel_id == requested_funnel
            requested_stage = current.id if keep else None
        funnel_id, stage_id = resolve_funnel_position(db, requested_funnel, requested_stage)
        project.funnel_id = funnel_id
        project.funnel_stage_id = stage_id

    apply_update(project, update_data, required=("name", "forecast_amount"))
    project.updated_at = datetime.utcnow()

    record_activity(db, current_user, "update", "project", project.id)
    db.commit()
    db.refresh(project)
    return ok(dump(ProjectResponse, project))


@router.delete("/{project_id}")
async def delete_project(
    project_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Удалить проект вместе с подпроектами; продажи и задачи остаются"""
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")

    subproject_ids = [sp.id for sp in project.subprojects]
    db.query(Sale).filter(Sale.project_id == project.id).update(
        {Sale.project_id: None}, synchronize_session=False
    )
    db.query(Task).filter(Task.project_id == project.id).update(
        {Task.project_id: None}, synchronize_session=False
    )
    if subproject_ids:
        db.query(Task).filter(Task.subproject_id.in_(subproject_ids)).update(
            {Task.subproject_id: None}, synchronize_session=False
        )
    db.delete(project)

    record_activity(db, current_user, "delete", "project", project_id)
    db.commit()
    return ok(message="Project deleted")


@router.put("/{project_id}/stage")
async def move_project_stage(
    project_id: int,
    move_request: StageMove,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Переместить проект на этап воронки"""
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    old_stage_id = project.funnel_stage_id
    move_project_to_stage(db, project, move_request.funnel_stage_id)
    project.updated_at = datetime.utcnow()

    record_activity(db, current_user, "move", "project", project.id)
    db.commit()
    db.refresh(project)
    return ok(dump(ProjectResponse, project), old_funnel_stage_id=old_stage_id)


# =========================
# ОТВЕТСТВЕННЫЕ
# =========================

@router.post("/{project_id}/managers", status_code=201)
async def add_project_manager(
    project_id: int,
    payload: ProjectManagerAdd,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Добавить второстепенного ответственного"""
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    manager = ensure_exists(db, Manager, payload.manager_id, "Manager not found")
    if manager in project.secondary_managers:
        raise DomainConflictError("Manager is already assigned to this project")

    project.secondary_managers.append(manager)
    record_activity(db, current_user, "update", "project", project.id)
    db.commit()
    db.refresh(project)
    return ok(dump(ProjectResponse, project))


@router.delete("/{project_id}/managers/{manager_id}")
async def remove_project_manager(
    project_id: int,
    manager_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Убрать второстепенного ответственного"""
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    manager = next((m for m in project.secondary_managers if m.id == manager_id), None)
    if manager is None:
        raise NotFoundError("Manager is not assigned to this project")

    project.secondary_managers.remove(manager)
    record_activity(db, current_user, "update", "project", project.id)
    db.commit()
    db.refresh(project)
    return ok(dump(ProjectResponse, project))


# =========================
# ТОВАРЫ И УСЛУГИ ПРОЕКТА
# =========================

@router.get("/{project_id}/products")
async def get_project_products(
    project_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    return ok(dump_many(ProjectProductResponse, project.product_lines))


@router.post("/{project_id}/products", status_code=201)
async def add_project_product(
    project_id: int,
    payload: ProjectProductAdd,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Добавить товар в проект"""
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    ensure_exists(db, Product, payload.product_id, "Product not found")

    line = ProjectProduct(product_id=payload.product_id, quantity=payload.quantity)
    project.product_lines.append(line)
    record_activity(db, current_user, "update", "project", project.id)
    db.commit()
    db.refresh(line)
    return ok(dump(ProjectProductResponse, line))


@router.delete("/{project_id}/products/{line_id}")
async def remove_project_product(
    project_id: int,
    line_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    line = next((l for l in project.product_lines if l.id == line_id), None)
    if line is None:
        raise NotFoundError("Project product not found")

    project.product_lines.remove(line)
    record_activity(db, current_user, "update", "project", project.id)
    db.commit()
    return ok(message="Product removed from project")


@router.get("/{project_id}/services")
async def get_project_services(
    project_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    return ok(dump_many(ProjectServiceResponse, project.services))


@router.post("/{project_id}/services", status_code=201)
async def add_project_service(
    project_id: int,
    payload: ProjectServiceAdd,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Добавить услугу в проект; количество хранится в десятых и заменяет прежнее"""
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    ensure_exists(db, Service, payload.service_id, "Service not found")

    units = service_units(payload.quantity)
    line = next((l for l in project.service_lines if l.service_id == payload.service_id), None)
    if line is None:
        project.service_lines.append(ProjectService(service_id=payload.service_id, units=units))
    else:
        line.units = units

    record_activity(db, current_user, "update", "project", project.id)
    db.commit()
    db.refresh(project)
    return ok(dump_many(ProjectServiceResponse, project.services))


@router.delete("/{project_id}/services/{service_id}")
async def remove_project_service(
    project_id: int,
    service_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    lines = [l for l in project.service_lines if l.service_id == service_id]
    if not lines:
        raise NotFoundError("Project service not found")

    for line in lines:
        project.service_lines.remove(line)
    record_activity(db, current_user, "update", "project", project.id)
    db.commit()
    return ok(message="Service removed from project")


@router.get("/{project_id}/subprojects")
async def get_project_subprojects(
    project_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Подпроекты проекта"""
    project = get_visible_or_404(db, Project, project_id, scope, "Project not found")
    subprojects = db.query(SubProject).filter(SubProject.project_id == project.id).order_by(SubProject.id).all()
    return ok(dump_many(SubProjectResponse, filter_visible(SubProject, subprojects, scope)))
