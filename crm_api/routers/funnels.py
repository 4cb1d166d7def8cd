"""
Воронки проектов и воронки подпроектов с этапами
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crm_api.auth import get_current_user
from crm_api.database import (
    Funnel, FunnelStage, Manager, SubProjectFunnel, SubProjectFunnelStage, get_db
)
from crm_api.pipeline import (
    append_stage, create_stage, delete_funnel, delete_stage, get_funnel_or_404,
    get_stage_or_404, reorder_stages
)
from crm_api.responses import dump, dump_many, ok, record_activity
from crm_api.schemas import (
    FunnelCreate, FunnelResponse, FunnelUpdate, ReorderStagesRequest, StageAppend,
    StageCreate, StageResponse, StageUpdate
)


def build_funnel_router(prefix: str, funnel_model, stage_model, entity_type: str) -> APIRouter:
    """Роутер воронки одного вида: /funnels или /subproject-funnels"""
    router = APIRouter(prefix=prefix, tags=[entity_type])
    stage_entity = f"{entity_type}_stage"

    # Маршруты /stages объявлены до /{funnel_id}

    @router.get("/stages/all")
    async def get_all_stages(
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        """Все этапы всех воронок"""
        stages = db.query(stage_model).order_by(
            stage_model.funnel_id, stage_model.order, stage_model.id
        ).all()
        return ok(dump_many(StageResponse, stages))

    @router.post("/stages", status_code=201)
    async def create_funnel_stage(
        stage_data: StageCreate,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        """Создать этап; без order - в конец воронки"""
        stage = create_stage(db, funnel_model, stage_model, stage_data.funnel_id,
                             stage_data.name, stage_data.order)
        record_activity(db, current_user, "create", stage_entity, stage.id)
        db.commit()
        db.refresh(stage)
        return ok(dump(StageResponse, stage))

    @router.get("/stages/{stage_id}")
    async def get_funnel_stage(
        stage_id: int,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        stage = get_stage_or_404(db, stage_model, stage_id)
        return ok(dump(StageResponse, stage))

    @router.put("/stages/{stage_id}")
    async def update_funnel_stage(
        stage_id: int,
        stage_data: StageUpdate,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        stage = get_stage_or_404(db, stage_model, stage_id)
        if stage_data.name is not None:
            stage.name = stage_data.name
        if stage_data.order is not None:
            stage.order = stage_data.order
        record_activity(db, current_user, "update", stage_entity, stage.id)
        db.commit()
        db.refresh(stage)
        return ok(dump(StageResponse, stage))

    @router.delete("/stages/{stage_id}")
    async def delete_funnel_stage(
        stage_id: int,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        """Удалить этап"""
        stage = get_stage_or_404(db, stage_model, stage_id)
        delete_stage(db, stage)
        record_activity(db, current_user, "delete", stage_entity, stage_id)
        db.commit()
        return ok(message="Stage deleted")

    # =========================
    # ВОРОНКИ
    # =========================

    @router.get("")
    async def get_funnels(
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        """Список воронок с этапами"""
        funnels = db.query(funnel_model).order_by(funnel_model.id).all()
        return ok(dump_many(FunnelResponse, funnels))

    @router.post("", status_code=201)
    async def create_funnel(
        funnel_data: FunnelCreate,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        """Создать воронку, при необходимости сразу с этапами"""
        funnel = funnel_model(name=funnel_data.name)
        db.add(funnel)
        db.flush()
        for name in funnel_data.stages:
            append_stage(db, funnel_model, stage_model, funnel.id, name)

        record_activity(db, current_user, "create", entity_type, funnel.id)
        db.commit()
        db.refresh(funnel)
        return ok(dump(FunnelResponse, funnel))

    @router.get("/{funnel_id}")
    async def get_funnel(
        funnel_id: int,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        funnel = get_funnel_or_404(db, funnel_model, funnel_id)
        return ok(dump(FunnelResponse, funnel))

    @router.put("/{funnel_id}")
    async def update_funnel(
        funnel_id: int,
        funnel_data: FunnelUpdate,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        funnel = get_funnel_or_404(db, funnel_model, funnel_id)
        funnel.name = funnel_data.name
        record_activity(db, current_user, "update", entity_type, funnel.id)
        db.commit()
        db.refresh(funnel)
        return ok(dump(FunnelResponse, funnel))

    @router.delete("/{funnel_id}")
    async def remove_funnel(
        funnel_id: int,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        """Удалить воронку вместе с этапами"""
        funnel = get_funnel_or_404(db, funnel_model, funnel_id)
        delete_funnel(db, funnel)
        record_activity(db, current_user, "delete", entity_type, funnel_id)
        db.commit()
        return ok(message="Funnel deleted")

    @router.post("/{funnel_id}/stages", status_code=201)
    async def add_funnel_stage(
        funnel_id: int,
        stage_data: StageAppend,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        """Добавить этап в конец воронки"""
        stage = append_stage(db, funnel_model, stage_model, funnel_id, stage_data.name)
        record_activity(db, current_user, "create", stage_entity, stage.id)
        db.commit()
        db.refresh(stage)
        return ok(dump(StageResponse, stage))

    @router.put("/{funnel_id}/reorder-stages")
    async def reorder_funnel_stages(
        funnel_id: int,
        payload: ReorderStagesRequest,
        current_user: Manager = Depends(get_current_user),
        db: Session = Depends(get_db)
    ):
        """Задать порядок этапов"""
        funnel = get_funnel_or_404(db, funnel_model, funnel_id)
        stages = reorder_stages(db, funnel, [(item.stage_id, item.order) for item in payload.stages])
        record_activity(db, current_user, "update", entity_type, funnel.id)
        db.commit()
        for stage in stages:
            db.refresh(stage)
        return ok(dump_many(StageResponse, stages))

    return router


funnels_router = build_funnel_router("/api/funnels", Funnel, FunnelStage, "funnel")
subproject_funnels_router = build_funnel_router(
    "/api/subproject-funnels", SubProjectFunnel, SubProjectFunnelStage, "subproject_funnel"
)
