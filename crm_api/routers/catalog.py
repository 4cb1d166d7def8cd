"""
Каталог: единицы измерения, склады, услуги, товары и их остатки
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_api.auth import get_current_user
from crm_api.database import (
    Manager, Product, ProductStock, ProjectProduct, ProjectService, SaleProduct,
    SaleService, Service, SubProjectProduct, SubProjectService, Unit, Warehouse, get_db
)
from crm_api.errors import DomainConflictError, NotFoundError
from crm_api.logger import db_logger
from crm_api.responses import PageParams, dump, dump_many, ok, paginated, record_activity
from crm_api.routers.common import apply_update, ensure_exists
from crm_api.schemas import (
    ProductCreate, ProductResponse, ProductUpdate, ServiceCreate, ServiceResponse,
    ServiceUpdate, StockResponse, StockUpdate, UnitCreate, UnitResponse, UnitUpdate,
    WarehouseCreate, WarehouseResponse, WarehouseUpdate
)

router = APIRouter(prefix="/api", tags=["catalog"])


def _dictionary_routes(path: str, model, create_schema, update_schema, response_schema,
                       entity_type: str, label: str, on_delete=None):
    """CRUD для простого справочника каталога"""

    @router.get(f"/{path}", name=f"list_{path}")
    async def list_items(
        page: PageParams = Depends(),
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        return paginated(db.query(model).order_by(model.id), page, response_schema)

    @router.get(f"/{path}/{{item_id}}", name=f"get_{entity_type}")
    async def get_item(
        item_id: int,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        item = ensure_exists(db, model, item_id, f"{label} not found")
        return ok(dump(response_schema, item))

    @router.post(f"/{path}", status_code=201, name=f"create_{entity_type}")
    async def create_item(
        payload: create_schema,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        item = model(**payload.model_dump())
        db.add(item)
        db.flush()
        record_activity(db, current_user, "create", entity_type, item.id)
        db.commit()
        db.refresh(item)
        return ok(dump(response_schema, item))

    @router.put(f"/{path}/{{item_id}}", name=f"update_{entity_type}")
    async def update_item(
        item_id: int,
        payload: update_schema,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        item = ensure_exists(db, model, item_id, f"{label} not found")
        apply_update(item, payload.model_dump(exclude_unset=True), required=("name", "price"))
        record_activity(db, current_user, "update", entity_type, item.id)
        db.commit()
        db.refresh(item)
        return ok(dump(response_schema, item))

    @router.delete(f"/{path}/{{item_id}}", name=f"delete_{entity_type}")
    async def delete_item(
        item_id: int,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        item = ensure_exists(db, model, item_id, f"{label} not found")
        if on_delete:
            on_delete(db, item)
        db.delete(item)
        record_activity(db, current_user, "delete", entity_type, item_id)
        db.commit()
        return ok(message=f"{label} deleted")


def _detach_unit(db: Session, unit: Unit):
    db.query(Product).filter(Product.unit_id == unit.id).update(
        {Product.unit_id: None}, synchronize_session=False
    )


def _drop_warehouse_stock(db: Session, warehouse: Warehouse):
    db.query(ProductStock).filter(ProductStock.warehouse_id == warehouse.id).delete(
        synchronize_session=False
    )


def _drop_service_lines(db: Session, service: Service):
    db.query(SaleService).filter(SaleService.service_id == service.id).delete(synchronize_session=False)
    db.query(ProjectService).filter(ProjectService.service_id == service.id).delete(synchronize_session=False)
    db.query(SubProjectService).filter(SubProjectService.service_id == service.id).delete(synchronize_session=False)


# =========================
# ЕДИНИЦЫ, СКЛАДЫ, УСЛУГИ
# =========================

_dictionary_routes("units", Unit, UnitCreate, UnitUpdate, UnitResponse,
                   "unit", "Unit", on_delete=_detach_unit)
_dictionary_routes("warehouses", Warehouse, WarehouseCreate, WarehouseUpdate, WarehouseResponse,
                   "warehouse", "Warehouse", on_delete=_drop_warehouse_stock)
_dictionary_routes("services", Service, ServiceCreate, ServiceUpdate, ServiceResponse,
                   "service", "Service", on_delete=_drop_service_lines)


# =========================
# ТОВАРЫ
# =========================

def _ensure_sku_free(db: Session, sku, exclude_id: int = None):
    if not sku:
        return
    query = db.query(Product).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise DomainConflictError("SKU already exists")


@router.get("/products")
async def get_products(
    page: PageParams = Depends(),
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Список товаров"""
    return paginated(db.query(Product).order_by(Product.id), page, ProductResponse)


@router.get("/products/{product_id}")
async def get_product(
    product_id: int,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Получить товар по ID"""
    product = ensure_exists(db, Product, product_id, "Product not found")
    return ok(dump(ProductResponse, product))


@router.post("/products", status_code=201)
async def create_product(
    product_data: ProductCreate,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Создать товар"""
    _ensure_sku_free(db, product_data.sku)
    ensure_exists(db, Unit, product_data.unit_id, "Unit not found")

    product = Product(**product_data.model_dump())
    db.add(product)
    db.flush()

    record_activity(db, current_user, "create", "product", product.id)
    db.commit()
    db.refresh(product)
    return ok(dump(ProductResponse, product))


@router.put("/products/{product_id}")
async def update_product(
    product_id: int,
    product_data: ProductUpdate,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Обновить товар"""
    product = ensure_exists(db, Product, product_id, "Product not found")

    update_data = product_data.model_dump(exclude_unset=True)
    _ensure_sku_free(db, update_data.get("sku"), exclude_id=product.id)
    ensure_exists(db, Unit, update_data.get("unit_id"), "Unit not found")
    apply_update(product, update_data, required=("name", "price"))
    product.updated_at = datetime.utcnow()

    record_activity(db, current_user, "update", "product", product.id)
    db.commit()
    db.refresh(product)
    return ok(dump(ProductResponse, product))


@router.delete("/products/{product_id}")
async def delete_product(
    product_id: int,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Удалить товар вместе с остатками и строками продаж/проектов"""
    product = ensure_exists(db, Product, product_id, "Product not found")

    db.query(SaleProduct).filter(SaleProduct.product_id == product.id).delete(synchronize_session=False)
    db.query(ProjectProduct).filter(ProjectProduct.product_id == product.id).delete(synchronize_session=False)
    db.query(SubProjectProduct).filter(SubProjectProduct.product_id == product.id).delete(synchronize_session=False)
    db.delete(product)

    record_activity(db, current_user, "delete", "product", product_id)
    db.commit()
    return ok(message="Product deleted")


@router.get("/products/{product_id}/stock")
async def get_product_stock(
    product_id: int,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Остатки товара по складам"""
    product = ensure_exists(db, Product, product_id, "Product not found")
    stocks = sorted(product.stocks, key=lambda s: s.warehouse_id)
    return ok(dump_many(StockResponse, stocks))


@router.post("/products/{product_id}/stock")
async def set_product_stock(
    product_id: int,
    payload: StockUpdate,
    current_user: Manager = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Массовая установка остатков: либо применяются все строки, либо ни одной
    """
    product = ensure_exists(db, Product, product_id, "Product not found")

    # Повтор склада в запросе: действует последняя строка
    quantities = {item.warehouse_id: item.quantity for item in payload.stocks}
    known = {
        w.id for w in db.query(Warehouse).filter(Warehouse.id.in_(list(quantities)))
    } if quantities else set()
    missing = sorted(set(quantities) - known)
    if missing:
        raise NotFoundError(f"Warehouse not found: {missing[0]}")

    try:
        for warehouse_id, quantity in quantities.items():
            stock = db.get(ProductStock, (product.id, warehouse_id))
            if stock is None:
                stock = ProductStock(product_id=product.id, warehouse_id=warehouse_id)
                db.add(stock)
            stock.quantity = quantity
        record_activity(db, current_user, "update", "product_stock", product.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        db_logger.error(f"Stock update for product #{product_id} rolled back")
        raise

    db.refresh(product)
    stocks = sorted(product.stocks, key=lambda s: s.warehouse_id)
    return ok(dump_many(StockResponse, stocks))
