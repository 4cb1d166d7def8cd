"""
Воронки и доски

Проекты двигаются по этапам воронки (ссылки funnel_id / funnel_stage_id),
подпроекты - по текстовому статусу. Обе доски строятся чистыми функциями
из уже отфильтрованных по видимости записей.
"""
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from crm_api.database import (
    Funnel, FunnelStage, Project, SubProject, SubProjectFunnel,
    SubProjectFunnelStage, SubProjectStatusType
)
from crm_api.errors import DomainConflictError, NotFoundError, ValidationFailedError
from crm_api.logger import db_logger


def next_stage_order(orders: Iterable[Optional[int]]) -> int:
    """Порядок для нового этапа в конце воронки: max + 1, для пустой воронки 1"""
    existing = [o for o in orders if o is not None]
    return max(existing) + 1 if existing else 1


def get_funnel_or_404(db: Session, funnel_model, funnel_id: int):
    funnel = db.get(funnel_model, funnel_id)
    if funnel is None:
        raise NotFoundError("Funnel not found")
    return funnel


def get_stage_or_404(db: Session, stage_model, stage_id: int):
    stage = db.get(stage_model, stage_id)
    if stage is None:
        raise NotFoundError("Stage not found")
    return stage


def create_stage(db: Session, funnel_model, stage_model, funnel_id: int, name: str,
                 order: Optional[int] = None):
    """
    Добавить этап в воронку

    Args:
        funnel_model: Funnel или SubProjectFunnel
        stage_model: соответствующая модель этапа
        funnel_id: воронка, должна существовать
        name: название этапа
        order: позиция; если не задана - в конец

    Returns:
        созданный этап (без commit)
    """
    get_funnel_or_404(db, funnel_model, funnel_id)
    if order is None:
        current_max = db.query(func.max(stage_model.order)).filter(
            stage_model.funnel_id == funnel_id
        ).scalar()
        order = next_stage_order([current_max])

    stage = stage_model(funnel_id=funnel_id, name=name, order=order)
    db.add(stage)
    db.flush()
    return stage


def append_stage(db: Session, funnel_model, stage_model, funnel_id: int, name: str):
    return create_stage(db, funnel_model, stage_model, funnel_id, name, order=None)


def move_project_to_stage(db: Session, project: Project, stage_id: int) -> Project:
    """Переместить проект на этап; воронка проекта становится воронкой этапа"""
    stage = get_stage_or_404(db, FunnelStage, stage_id)
    project.funnel_stage_id = stage.id
    project.funnel_id = stage.funnel_id
    db_logger.info(f"Project #{project.id} -> stage #{stage.id} (funnel #{stage.funnel_id})")
    return project


def delete_stage(db: Session, stage) -> None:
    """Удалить этап; проекты на нём остаются в воронке без этапа"""
    if isinstance(stage, FunnelStage):
        db.query(Project).filter(Project.funnel_stage_id == stage.id).update(
            {Project.funnel_stage_id: None}, synchronize_session=False
        )
    db.delete(stage)


def delete_funnel(db: Session, funnel) -> None:
    """Удалить воронку вместе с этапами; ссылки проектов очищаются"""
    stage_model = FunnelStage if isinstance(funnel, Funnel) else SubProjectFunnelStage
    stage_ids = [sid for (sid,) in db.query(stage_model.id).filter(stage_model.funnel_id == funnel.id)]

    if isinstance(funnel, Funnel):
        condition = Project.funnel_id == funnel.id
        if stage_ids:
            condition = condition | Project.funnel_stage_id.in_(stage_ids)
        db.query(Project).filter(condition).update(
            {Project.funnel_id: None, Project.funnel_stage_id: None},
            synchronize_session=False
        )

    for stage in list(funnel.stages):
        db.delete(stage)
    db.delete(funnel)


def reorder_stages(db: Session, funnel, items: Sequence[Tuple[int, int]]) -> List:
    """
    Задать порядок этапов воронки

    Args:
        funnel: воронка
        items: пары (stage_id, order)

    Returns:
        этапы воронки в новом порядке
    """
    stage_model = FunnelStage if isinstance(funnel, Funnel) else SubProjectFunnelStage
    stages = {
        s.id: s for s in db.query(stage_model).filter(stage_model.funnel_id == funnel.id)
    }
    for stage_id, _ in items:
        if stage_id not in stages:
            raise ValidationFailedError(f"Stage {stage_id} does not belong to funnel {funnel.id}")

    for stage_id, order in items:
        stages[stage_id].order = order

    return sorted(stages.values(), key=lambda s: (s.order, s.id))


# =========================
# ДОСКИ
# =========================

def build_project_board(stages: Sequence, projects: Iterable[Project]) -> Dict:
    """
    Доска проектов: этапы по порядку, в каждом - его проекты

    Проекты без этапа (или с этапом не из этой воронки) попадают в unassigned.
    """
    ordered = sorted(stages, key=lambda s: (s.order, s.id))
    columns = {s.id: [] for s in ordered}
    unassigned = []
    for project in projects:
        bucket = columns.get(project.funnel_stage_id)
        if bucket is None:
            unassigned.append(project)
        else:
            bucket.append(project)
    return {
        "stages": [{"stage": s, "projects": columns[s.id]} for s in ordered],
        "unassigned": unassigned,
    }


def build_status_board(columns: Sequence[str], subprojects: Iterable[SubProject]) -> Dict:
    """Доска подпроектов по статусу; статус вне колонок - в unassigned"""
    buckets: Dict[str, list] = {}
    for name in columns:
        buckets.setdefault(name, [])
    unassigned = []
    for subproject in subprojects:
        bucket = buckets.get(subproject.status)
        if bucket is None:
            unassigned.append(subproject)
        else:
            bucket.append(subproject)
    return {
        "columns": [{"status": name, "subprojects": items} for name, items in buckets.items()],
        "unassigned": unassigned,
    }


def status_columns(db: Session, funnel_id: Optional[int] = None) -> List[str]:
    """Колонки доски подпроектов: этапы воронки подпроектов или справочник статусов"""
    if funnel_id is not None:
        funnel = get_funnel_or_404(db, SubProjectFunnel, funnel_id)
        return [stage.name for stage in funnel.stages]
    return [
        name for (name,) in db.query(SubProjectStatusType.name).order_by(SubProjectStatusType.id)
    ]


def known_subproject_statuses(db: Session) -> List[str]:
    """Все известные метки статусов: справочник и этапы воронок подпроектов"""
    names = status_columns(db)
    for (name,) in db.query(SubProjectFunnelStage.name).order_by(SubProjectFunnelStage.id):
        if name not in names:
            names.append(name)
    return names


def move_subproject_to_status(db: Session, subproject: SubProject, new_status: str) -> SubProject:
    """Сменить статус подпроекта; при непустом наборе меток - только на известную"""
    known = known_subproject_statuses(db)
    if known and new_status not in known:
        raise DomainConflictError(f"Unknown sub-project status: {new_status}")
    subproject.status = new_status
    return subproject
