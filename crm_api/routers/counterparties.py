"""
Контрагенты
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crm_api.access import Scope, get_visible_or_404, scoped_query
from crm_api.auth import get_current_scope, get_current_user
from crm_api.database import Counterparty, Manager, Project, Sale, get_db
from crm_api.responses import PageParams, dump, ok, paginated, record_activity
from crm_api.routers.common import apply_update, ensure_exists, owner_or_self
from crm_api.schemas import CounterpartyCreate, CounterpartyResponse, CounterpartyUpdate

router = APIRouter(prefix="/api/counterparties", tags=["counterparties"])


@router.get("")
async def get_counterparties(
    page: PageParams = Depends(),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Список контрагентов"""
    query = scoped_query(db, Counterparty, scope).order_by(Counterparty.id)
    return paginated(query, page, CounterpartyResponse)


@router.get("/{counterparty_id}")
async def get_counterparty(
    counterparty_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Получить контрагента по ID"""
    counterparty = get_visible_or_404(db, Counterparty, counterparty_id, scope, "Counterparty not found")
    return ok(dump(CounterpartyResponse, counterparty))


@router.post("", status_code=201)
async def create_counterparty(
    counterparty_data: CounterpartyCreate,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Создать контрагента; без ответственного - ответственным становится автор"""
    data = counterparty_data.model_dump()
    data["type"] = counterparty_data.type.value
    data["responsible_manager_id"] = owner_or_self(db, counterparty_data.responsible_manager_id, current_user)

    counterparty = Counterparty(**data)
    db.add(counterparty)
    db.flush()

    record_activity(db, current_user, "create", "counterparty", counterparty.id)
    db.commit()
    db.refresh(counterparty)
    return ok(dump(CounterpartyResponse, counterparty))


@router.put("/{counterparty_id}")
async def update_counterparty(
    counterparty_id: int,
    counterparty_data: CounterpartyUpdate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Обновить контрагента"""
    counterparty = get_visible_or_404(db, Counterparty, counterparty_id, scope, "Counterparty not found")

    update_data = counterparty_data.model_dump(exclude_unset=True)
    ensure_exists(db, Manager, update_data.get("responsible_manager_id"), "Manager not found")
    apply_update(counterparty, update_data, required=("name", "type"))

    record_activity(db, current_user, "update", "counterparty", counterparty.id)
    db.commit()
    db.refresh(counterparty)
    return ok(dump(CounterpartyResponse, counterparty))


@router.delete("/{counterparty_id}")
async def delete_counterparty(
    counterparty_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Удалить контрагента: проекты теряют ссылку, продажи удаляются"""
    counterparty = get_visible_or_404(db, Counterparty, counterparty_id, scope, "Counterparty not found")

    db.query(Project).filter(Project.counterparty_id == counterparty.id).update(
        {Project.counterparty_id: None}, synchronize_session=False
    )
    for sale in db.query(Sale).filter(Sale.counterparty_id == counterparty.id).all():
        db.delete(sale)
    db.delete(counterparty)

    record_activity(db, current_user, "delete", "counterparty", counterparty_id)
    db.commit()
    return ok(message="Counterparty deleted")
