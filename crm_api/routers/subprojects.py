"""
Подпроекты, доска статусов, товары и услуги подпроекта
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crm_api.access import Scope, get_visible_or_404, scoped_query
from crm_api.auth import get_current_scope, get_current_user
from crm_api.database import (
    Manager, Product, Project, Service, SubProject, SubProjectProduct, SubProjectService,
    Task, get_db
)
from crm_api.errors import NotFoundError
from crm_api.pipeline import (
    build_status_board, move_subproject_to_status, status_columns
)
from crm_api.pricing import service_units
from crm_api.responses import PageParams, dump, dump_many, ok, paginated, record_activity
from crm_api.routers.common import apply_update, ensure_exists
from crm_api.schemas import (
    ProjectProductAdd, ProjectProductResponse, ProjectServiceAdd, ProjectServiceResponse,
    StatusBoardResponse, SubProjectCreate, SubProjectResponse, SubProjectStatusMove,
    SubProjectUpdate
)

router = APIRouter(prefix="/api/subprojects", tags=["subprojects"])


@router.get("")
async def get_subprojects(
    project_id: Optional[int] = None,
    status: Optional[str] = None,
    page: PageParams = Depends(),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Список подпроектов видимых проектов"""
    query = scoped_query(db, SubProject, scope)
    if project_id is not None:
        query = query.filter(SubProject.project_id == project_id)
    if status is not None:
        query = query.filter(SubProject.status == status)
    return paginated(query.order_by(SubProject.id), page, SubProjectResponse)


@router.get("/board")
async def get_status_board(
    funnel_id: Optional[int] = None,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Доска подпроектов: колонки - статусы справочника или этапы воронки подпроектов"""
    columns = status_columns(db, funnel_id)
    subprojects = scoped_query(db, SubProject, scope).order_by(SubProject.id).all()
    board = build_status_board(columns, subprojects)
    return ok(StatusBoardResponse(
        columns=[
            {"status": column["status"], "subprojects": dump_many(SubProjectResponse, column["subprojects"])}
            for column in board["columns"]
        ],
        unassigned=dump_many(SubProjectResponse, board["unassigned"]),
    ))


@router.get("/{subproject_id}")
async def get_subproject(
    subproject_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Получить подпроект по ID"""
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")
    return ok(dump(SubProjectResponse, subproject))


@router.post("", status_code=201)
async def create_subproject(
    subproject_data: SubProjectCreate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Создать подпроект внутри видимого проекта"""
    get_visible_or_404(db, Project, subproject_data.project_id, scope, "Project not found")

    subproject = SubProject(
        name=subproject_data.name,
        description=subproject_data.description,
        project_id=subproject_data.project_id,
        cost=subproject_data.cost,
    )
    if subproject_data.status:
        move_subproject_to_status(db, subproject, subproject_data.status)
    else:
        # Новый подпроект встаёт в первую колонку справочника
        columns = status_columns(db)
        subproject.status = columns[0] if columns else ""

    db.add(subproject)
    db.flush()
    record_activity(db, current_user, "create", "subproject", subproject.id)
    db.commit()
    db.refresh(subproject)
    return ok(dump(SubProjectResponse, subproject))


@router.put("/{subproject_id}")
async def update_subproject(
    subproject_id: int,
    subproject_data: SubProjectUpdate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Обновить подпроект (статус меняется через /status)"""
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")

    update_data = subproject_data.model_dump(exclude_unset=True)
    if update_data.get("project_id") is not None:
        get_visible_or_404(db, Project, update_data["project_id"], scope, "Project not found")
    apply_update(subproject, update_data, required=("name", "project_id", "cost"))
    subproject.updated_at = datetime.utcnow()

    record_activity(db, current_user, "update", "subproject", subproject.id)
    db.commit()
    db.refresh(subproject)
    return ok(dump(SubProjectResponse, subproject))


@router.put("/{subproject_id}/status")
async def move_subproject_status(
    subproject_id: int,
    move_request: SubProjectStatusMove,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Сменить статус подпроекта"""
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")
    old_status = subproject.status
    move_subproject_to_status(db, subproject, move_request.status)
    subproject.updated_at = datetime.utcnow()

    record_activity(db, current_user, "move", "subproject", subproject.id)
    db.commit()
    db.refresh(subproject)
    return ok(dump(SubProjectResponse, subproject), old_status=old_status)


@router.delete("/{subproject_id}")
async def delete_subproject(
    subproject_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Удалить подпроект; задачи теряют ссылку на него"""
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")
    db.query(Task).filter(Task.subproject_id == subproject.id).update(
        {Task.subproject_id: None}, synchronize_session=False
    )
    db.delete(subproject)

    record_activity(db, current_user, "delete", "subproject", subproject_id)
    db.commit()
    return ok(message="Sub-project deleted")


# =========================
# ТОВАРЫ И УСЛУГИ ПОДПРОЕКТА
# =========================

@router.get("/{subproject_id}/products")
async def get_subproject_products(
    subproject_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")
    return ok(dump_many(ProjectProductResponse, subproject.product_lines))


@router.post("/{subproject_id}/products", status_code=201)
async def add_subproject_product(
    subproject_id: int,
    payload: ProjectProductAdd,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Добавить товар в подпроект; повторное добавление заменяет количество"""
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")
    ensure_exists(db, Product, payload.product_id, "Product not found")

    line = next((l for l in subproject.product_lines if l.product_id == payload.product_id), None)
    if line is None:
        line = SubProjectProduct(product_id=payload.product_id, quantity=payload.quantity)
        subproject.product_lines.append(line)
    else:
        line.quantity = payload.quantity

    record_activity(db, current_user, "update", "subproject", subproject.id)
    db.commit()
    db.refresh(line)
    return ok(dump(ProjectProductResponse, line))


@router.delete("/{subproject_id}/products/{product_id}")
async def remove_subproject_product(
    subproject_id: int,
    product_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")
    line = next((l for l in subproject.product_lines if l.product_id == product_id), None)
    if line is None:
        raise NotFoundError("Product not found in sub-project")

    subproject.product_lines.remove(line)
    record_activity(db, current_user, "update", "subproject", subproject.id)
    db.commit()
    return ok(message="Product removed from sub-project")


@router.get("/{subproject_id}/services")
async def get_subproject_services(
    subproject_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")
    return ok(dump_many(ProjectServiceResponse, subproject.services))


@router.post("/{subproject_id}/services", status_code=201)
async def add_subproject_service(
    subproject_id: int,
    payload: ProjectServiceAdd,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Добавить услугу в подпроект (десятые доли, как у проекта)"""
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")
    ensure_exists(db, Service, payload.service_id, "Service not found")

    units = service_units(payload.quantity)
    line = next((l for l in subproject.service_lines if l.service_id == payload.service_id), None)
    if line is None:
        subproject.service_lines.append(SubProjectService(service_id=payload.service_id, units=units))
    else:
        line.units = units

    record_activity(db, current_user, "update", "subproject", subproject.id)
    db.commit()
    db.refresh(subproject)
    return ok(dump_many(ProjectServiceResponse, subproject.services))


@router.delete("/{subproject_id}/services/{service_id}")
async def remove_subproject_service(
    subproject_id: int,
    service_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    subproject = get_visible_or_404(db, SubProject, subproject_id, scope, "Sub-project not found")
    line = next((l for l in subproject.service_lines if l.service_id == service_id), None)
    if line is None:
        raise NotFoundError("Service not found in sub-project")

    subproject.service_lines.remove(line)
    record_activity(db, current_user, "update", "subproject", subproject.id)
    db.commit()
    return ok(message="Service removed from sub-project")
