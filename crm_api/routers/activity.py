"""
Журнал действий (только admin)
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crm_api.auth import require_admin
from crm_api.database import ActivityLog, Manager, get_db
from crm_api.responses import PageParams, paginated
from crm_api.schemas import ActivityLogResponse

router = APIRouter(prefix="/api/activity", tags=["activity"])


@router.get("")
async def get_activity(
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    page: PageParams = Depends(),
    current_user: Manager = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Последние записи журнала"""
    query = db.query(ActivityLog)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == entity_id)
    query = query.order_by(ActivityLog.action_date.desc(), ActivityLog.id.desc())
    return paginated(query, page, ActivityLogResponse)
