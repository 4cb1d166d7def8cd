"""
Продажи и их строки (товары, услуги)
"""
from datetime import date, datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crm_api.access import Scope, get_visible_or_404, scoped_query
from crm_api.auth import get_current_scope, get_current_user
from crm_api.database import (
    Counterparty, Manager, Product, Project, Sale, SaleProduct, SaleService,
    SaleStatusType, Service, get_db
)
from crm_api.errors import DomainConflictError, NotFoundError
from crm_api.responses import PageParams, dump, ok, paginated, record_activity
from crm_api.routers.common import apply_update, ensure_exists, owner_or_self
from crm_api.schemas import (
    SaleCreate, SaleProductLineCreate, SaleResponse, SaleServiceLineCreate, SaleUpdate
)

router = APIRouter(prefix="/api/sales", tags=["sales"])

DEFAULT_SALE_STATUS = "new"


def resolve_counterparty(db: Session, counterparty_id):
    if counterparty_id is None or db.get(Counterparty, counterparty_id) is None:
        raise DomainConflictError("Counterparty is required")
    return counterparty_id


def resolve_status(db: Session, status):
    """Статус продажи из справочника; пустой справочник принимает любой статус"""
    known = [name for (name,) in db.query(SaleStatusType.name).order_by(SaleStatusType.id)]
    if status is None:
        return known[0] if known else DEFAULT_SALE_STATUS
    if known and status not in known:
        raise DomainConflictError("Invalid sale status")
    return status


def add_product_line(db: Session, sale: Sale, line: SaleProductLineCreate):
    ensure_exists(db, Product, line.product_id, "Product not found")
    sale.product_lines.append(SaleProduct(product_id=line.product_id, quantity=line.quantity))


def add_service_line(db: Session, sale: Sale, line: SaleServiceLineCreate):
    ensure_exists(db, Service, line.service_id, "Service not found")
    sale.service_lines.append(SaleService(service_id=line.service_id))


@router.get("")
async def get_sales(
    page: PageParams = Depends(),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Список продаж"""
    query = scoped_query(db, Sale, scope).order_by(Sale.sale_date.desc(), Sale.id.desc())
    return paginated(query, page, SaleResponse)


@router.get("/{sale_id}")
async def get_sale(
    sale_id: int,
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Получить продажу по ID"""
    sale = get_visible_or_404(db, Sale, sale_id, scope, "Sale not found")
    return ok(dump(SaleResponse, sale))


@router.post("", status_code=201)
async def create_sale(
    sale_data: SaleCreate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Создать продажу со строками"""
    if sale_data.project_id is not None:
        get_visible_or_404(db, Project, sale_data.project_id, scope, "Project not found")

    sale = Sale(
        counterparty_id=resolve_counterparty(db, sale_data.counterparty_id),
        responsible_manager_id=owner_or_self(db, sale_data.responsible_manager_id, current_user),
        project_id=sale_data.project_id,
        sale_date=sale_data.sale_date or date.today(),
        status=resolve_status(db, sale_data.status),
        deferred_payment_date=sale_data.deferred_payment_date,
    )
    for line in sale_data.products:
        add_product_line(db, sale, line)
    for line in sale_data.services:
        add_service_line(db, sale, line)

    db.add(sale)
    db.flush()
    record_activity(db, current_user, "create", "sale", sale.id)
    db.commit()
    db.refresh(sale)
    return ok(dump(SaleResponse, sale))


@router.put("/{sale_id}")
async def update_sale(
    sale_id: int,
    sale_data: SaleUpdate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Обновить продажу (строки меняются отдельными запросами)"""
    sale = get_visible_or_404(db, Sale, sale_id, scope, "Sale not found")

    update_data = sale_data.model_dump(exclude_unset=True)
    if "counterparty_id" in update_data:
        resolve_counterparty(db, update_data["counterparty_id"])
    if "status" in update_data:
        if update_data["status"] is None:
            update_data.pop("status")
        else:
            resolve_status(db, update_data["status"])
    if update_data.get("project_id") is not None:
        get_visible_or_404(db, Project, update_data["project_id"], scope, "Project not found")
    ensure_exists(db, Manager, update_data.get("responsible_manager_id"), "Manager not found")

    apply_update(sale, update_data, required=("sale_date",))
    sale.updated_at = datetime.utcnow()

    record_activity(db, current_user, "update", "sale", sale.id)
    db.commit()
    db.refresh(sale)
    return ok(dump(SaleResponse, sale))


@router.delete("/{sale_id}")
async def delete_sale(
    sale_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Удалить продажу"""
    sale = get_visible_or_404(db, Sale, sale_id, scope, "Sale not found")
    db.delete(sale)
    record_activity(db, current_user, "delete", "sale", sale_id)
    db.commit()
    return ok(message="Sale deleted")


# =========================
# СТРОКИ ПРОДАЖИ
# =========================

@router.post("/{sale_id}/products", status_code=201)
async def add_sale_product(
    sale_id: int,
    line: SaleProductLineCreate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Добавить товар в продажу"""
    sale = get_visible_or_404(db, Sale, sale_id, scope, "Sale not found")
    add_product_line(db, sale, line)
    record_activity(db, current_user, "update", "sale", sale.id)
    db.commit()
    db.refresh(sale)
    return ok(dump(SaleResponse, sale))


@router.delete("/{sale_id}/products/{line_id}")
async def remove_sale_product(
    sale_id: int,
    line_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Убрать товарную строку из продажи"""
    sale = get_visible_or_404(db, Sale, sale_id, scope, "Sale not found")
    line = next((l for l in sale.product_lines if l.id == line_id), None)
    if line is None:
        raise NotFoundError("Sale line not found")
    sale.product_lines.remove(line)
    record_activity(db, current_user, "update", "sale", sale.id)
    db.commit()
    db.refresh(sale)
    return ok(dump(SaleResponse, sale))


@router.post("/{sale_id}/services", status_code=201)
async def add_sale_service(
    sale_id: int,
    line: SaleServiceLineCreate,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Добавить услугу в продажу"""
    sale = get_visible_or_404(db, Sale, sale_id, scope, "Sale not found")
    add_service_line(db, sale, line)
    record_activity(db, current_user, "update", "sale", sale.id)
    db.commit()
    db.refresh(sale)
    return ok(dump(SaleResponse, sale))


@router.delete("/{sale_id}/services/{line_id}")
async def remove_sale_service(
    sale_id: int,
    line_id: int,
    current_user: Manager = Depends(get_current_user),
    scope: Scope = Depends(get_current_scope),
    db: Session = Depends(get_db)
):
    """Убрать услугу из продажи"""
    sale = get_visible_or_404(db, Sale, sale_id, scope, "Sale not found")
    line = next((l for l in sale.service_lines if l.id == line_id), None)
    if line is None:
        raise NotFoundError("Sale line not found")
    sale.service_lines.remove(line)
    record_activity(db, current_user, "update", "sale", sale.id)
    db.commit()
    db.refresh(sale)
    return ok(dump(SaleResponse, sale))
