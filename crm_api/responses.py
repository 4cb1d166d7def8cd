"""
Конверт ответа {success, data} и постраничная выдача
"""
import math
from typing import Optional

from fastapi import Query
from sqlalchemy.orm import Session

from crm_api.database import ActivityLog, Manager
from crm_api.logger import log_database_operation


class PageParams:
    """Параметры страницы: без page отдаётся весь список"""

    def __init__(
        self,
        page: Optional[int] = Query(None, ge=1),
        limit: int = Query(50, ge=1, le=500),
    ):
        self.page = page
        self.limit = limit


def ok(data=None, message: str = None, **extra) -> dict:
    body = {"success": True}
    if data is not None or message is None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    body.update(extra)
    return body


def dump(schema, obj):
    """ORM объект -> pydantic схема"""
    return schema.model_validate(obj)


def dump_many(schema, objs):
    return [schema.model_validate(o) for o in objs]


def paginated(query, params: PageParams, schema) -> dict:
    """
    Список по запросу в конверте

    Args:
        query: SQLAlchemy запрос (уже отфильтрованный и упорядоченный)
        params: PageParams
        schema: pydantic схема элемента

    Returns:
        {"success", "data"} и, если задан page, "pagination"
    """
    if params.page is None:
        return ok(dump_many(schema, query.all()))

    total = query.order_by(None).count()
    items = query.offset((params.page - 1) * params.limit).limit(params.limit).all()
    return ok(
        dump_many(schema, items),
        pagination={
            "page": params.page,
            "limit": params.limit,
            "total": total,
            "totalPages": math.ceil(total / params.limit) if total else 0,
        },
    )


def record_activity(db: Session, manager: Optional[Manager], action_type: str,
                    entity_type: str, entity_id: int = None) -> None:
    """Запись в журнал действий (commit - на вызывающей стороне)"""
    db.add(ActivityLog(
        manager_id=manager.id if manager else None,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
    ))
    log_database_operation(
        action_type.upper(), entity_type, entity_id,
        user=manager.email if manager else None
    )
