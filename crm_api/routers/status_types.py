"""
Справочники статусов продаж и подпроектов
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crm_api.auth import get_current_user
from crm_api.database import Manager, SaleStatusType, SubProjectStatusType, get_db
from crm_api.errors import DomainConflictError
from crm_api.responses import dump, dump_many, ok, record_activity
from crm_api.routers.common import ensure_exists
from crm_api.schemas import StatusTypeCreate, StatusTypeResponse

router = APIRouter(prefix="/api", tags=["status-types"])


def _status_type_routes(path: str, model, entity_type: str):

    @router.get(f"/{path}", name=f"list_{entity_type}")
    async def list_status_types(
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        return ok(dump_many(StatusTypeResponse, db.query(model).order_by(model.id).all()))

    @router.post(f"/{path}", status_code=201, name=f"create_{entity_type}")
    async def create_status_type(
        payload: StatusTypeCreate,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        name = payload.name.strip()
        if db.query(model).filter(model.name == name).first():
            raise DomainConflictError("Status already exists")

        status_type = model(name=name)
        db.add(status_type)
        db.flush()
        record_activity(db, current_user, "create", entity_type, status_type.id)
        db.commit()
        db.refresh(status_type)
        return ok(dump(StatusTypeResponse, status_type))

    @router.get(f"/{path}/{{status_id}}", name=f"get_{entity_type}")
    async def get_status_type(
        status_id: int,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        status_type = ensure_exists(db, model, status_id, "Status not found")
        return ok(dump(StatusTypeResponse, status_type))

    @router.put(f"/{path}/{{status_id}}", name=f"update_{entity_type}")
    async def update_status_type(
        status_id: int,
        payload: StatusTypeCreate,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        # Переименование не трогает метки, уже записанные в продажи и подпроекты
        status_type = ensure_exists(db, model, status_id, "Status not found")
        name = payload.name.strip()
        taken = db.query(model).filter(model.name == name, model.id != status_type.id).first()
        if taken:
            raise DomainConflictError("Status already exists")

        status_type.name = name
        record_activity(db, current_user, "update", entity_type, status_type.id)
        db.commit()
        db.refresh(status_type)
        return ok(dump(StatusTypeResponse, status_type))

    @router.delete(f"/{path}/{{status_id}}", name=f"delete_{entity_type}")
    async def delete_status_type(
        status_id: int,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        status_type = ensure_exists(db, model, status_id, "Status not found")
        db.delete(status_type)
        record_activity(db, current_user, "delete", entity_type, status_id)
        db.commit()
        return ok(message="Status deleted")


_status_type_routes("sale-status-types", SaleStatusType, "sale_status_type")
_status_type_routes("subproject-status-types", SubProjectStatusType, "subproject_status_type")
