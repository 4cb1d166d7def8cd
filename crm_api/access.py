"""
Ролевая видимость записей

admin видит всё, head видит свои записи и записи подчинённых,
manager видит только свои. Область видимости (Scope) считается один раз
на запрос и применяется к любой сущности через политику её владения.
Запись вне области неотличима от несуществующей: наружу отдаётся 404.
"""
from collections import defaultdict, deque
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from crm_api.database import (
    Counterparty, Manager, Project, ProjectComment, Sale, SubProject,
    SubProjectComment, Task, manager_supervisors
)
from crm_api.errors import NotFoundError


class Role(str, Enum):
    ADMIN = "admin"
    HEAD = "head"
    MANAGER = "manager"



class SupervisorIndex:
    """Граф подчинения как множество рёбер (подчинённый, руководитель)"""

    def __init__(self, edges: Iterable[Tuple[int, int]] = ()):
        self._subordinates: Dict[int, Set[int]] = defaultdict(set)
        for manager_id, supervisor_id in edges:
            self._subordinates[supervisor_id].add(manager_id)

    @classmethod
    def from_supervisors(cls, supervisors: Mapping[int, Iterable[int]]) -> "SupervisorIndex":
        """Из словаря manager_id -> ids руководителей"""
        return cls(
            (manager_id, supervisor_id)
            for manager_id, supervisor_ids in supervisors.items()
            for supervisor_id in supervisor_ids
        )

    def direct_subordinates(self, manager_id: int) -> Set[int]:
        return set(self._subordinates.get(manager_id, ()))

    def all_subordinates(self, manager_id: int) -> Set[int]:
        """Подчинённые на всех уровнях; циклы в графе допустимы"""
        seen: Set[int] = set()
        queue = deque(self.direct_subordinates(manager_id))
        while queue:
            current = queue.popleft()
            if current in seen or current == manager_id:
                continue
            seen.add(current)
            queue.extend(self._subordinates.get(current, ()))
        return seen


@dataclass(frozen=True)
class Scope:
    """Множество id менеджеров, чьи записи доступны; None - без ограничений"""
    manager_ids: Optional[FrozenSet[int]] = None

    @classmethod
    def everything(cls) -> "Scope":
        return cls(None)

    @classmethod
    def of(cls, ids: Iterable[int]) -> "Scope":
        return cls(frozenset(ids))

    @property
    def unrestricted(self) -> bool:
        return self.manager_ids is None

    def includes(self, manager_id: Optional[int]) -> bool:
        if self.unrestricted:
            return True
        return manager_id is not None and manager_id in self.manager_ids

    def intersects(self, manager_ids: Iterable[int]) -> bool:
        if self.unrestricted:
            return True
        return any(mid in self.manager_ids for mid in manager_ids)

    def issubset(self, other: "Scope") -> bool:
        if other.unrestricted:
            return True
        if self.unrestricted:
            return False
        return self.manager_ids <= other.manager_ids


def compute_scope(role: str, manager_id: int, supervisor_index: SupervisorIndex,
                  transitive: bool = False) -> Scope:
    """
    Область видимости для роли и менеджера

    Args:
        role: admin / head / manager
        manager_id: id запрашивающего
        supervisor_index: граф подчинения
        transitive: учитывать подчинённых подчинённых

    Returns:
        Scope
    """
    if role == Role.ADMIN.value:
        return Scope.everything()
    if role == Role.HEAD.value:
        if transitive:
            subordinates = supervisor_index.all_subordinates(manager_id)
        else:
            subordinates = supervisor_index.direct_subordinates(manager_id)
        return Scope.of({manager_id} | subordinates)
    return Scope.of({manager_id})


def load_supervisor_index(db: Session) -> SupervisorIndex:
    edges = db.query(manager_supervisors.c.manager_id, manager_supervisors.c.supervisor_id).all()
    return SupervisorIndex(edges)


def load_scope(db: Session, manager: Manager, transitive: bool = False) -> Scope:
    """Область видимости текущего менеджера по данным из БД"""
    if manager.role != Role.HEAD.value:
        # Для admin и manager граф не нужен
        return compute_scope(manager.role, manager.id, SupervisorIndex(), transitive)
    return compute_scope(manager.role, manager.id, load_supervisor_index(db), transitive)


# =========================
# ПОЛИТИКИ ВИДИМОСТИ
# =========================

class VisibilityPolicy:
    """Правило видимости сущности: проверка записи и условие для запроса"""

    def allows(self, record, scope: Scope) -> bool:
        if scope.unrestricted:
            return True
        if record is None:
            return False
        return self._allows(record, scope)

    def filter_visible(self, records: Iterable, scope: Scope) -> List:
        return [r for r in records if self.allows(r, scope)]

    def apply(self, query, scope: Scope):
        if scope.unrestricted:
            return query
        return query.filter(self.condition(scope))

    def _allows(self, record, scope: Scope) -> bool:
        raise NotImplementedError

    def condition(self, scope: Scope):
        raise NotImplementedError


class OwnerFieldPolicy(VisibilityPolicy):
    """Запись видна, если хотя бы одно из полей-владельцев входит в область"""

    def __init__(self, model, *fields: str):
        self.model = model
        self.fields = fields

    def _allows(self, record, scope):
        return any(scope.includes(getattr(record, f)) for f in self.fields)

    def condition(self, scope):
        ids = sorted(scope.manager_ids)
        return or_(*[getattr(self.model, f).in_(ids) for f in self.fields])


class ProjectPolicy(VisibilityPolicy):
    """Главный ответственный или любой из второстепенных"""

    def _allows(self, record, scope):
        if scope.includes(record.main_responsible_manager_id):
            return True
        return scope.intersects(record.secondary_responsible_manager_ids)

    def condition(self, scope):
        ids = sorted(scope.manager_ids)
        return or_(
            Project.main_responsible_manager_id.in_(ids),
            Project.secondary_managers.any(Manager.id.in_(ids)),
        )


class ParentPolicy(VisibilityPolicy):
    """Видимость наследуется от родительской записи"""

    def __init__(self, relation, parent_policy: VisibilityPolicy):
        self.relation = relation
        self.parent_policy = parent_policy

    def _allows(self, record, scope):
        parent = getattr(record, self.relation.key)
        return self.parent_policy.allows(parent, scope)

    def condition(self, scope):
        return self.relation.has(self.parent_policy.condition(scope))


_project_policy = ProjectPolicy()
_subproject_policy = ParentPolicy(SubProject.project, _project_policy)

POLICIES: Dict[type, VisibilityPolicy] = {
    Manager: OwnerFieldPolicy(Manager, "id"),
    Counterparty: OwnerFieldPolicy(Counterparty, "responsible_manager_id"),
    Sale: OwnerFieldPolicy(Sale, "responsible_manager_id"),
    Project: _project_policy,
    SubProject: _subproject_policy,
    Task: OwnerFieldPolicy(Task, "responsible_manager_id", "creator_manager_id"),
    ProjectComment: ParentPolicy(ProjectComment.project, _project_policy),
    SubProjectComment: ParentPolicy(SubProjectComment.subproject, _subproject_policy),
}


def policy_for(model) -> VisibilityPolicy:
    try:
        return POLICIES[model]
    except KeyError:
        raise ValueError(f"Нет политики видимости для {model.__name__}")


def scoped_query(db: Session, model, scope: Scope):
    """Запрос по сущности, суженный до области видимости"""
    return policy_for(model).apply(db.query(model), scope)


def filter_visible(model, records: Iterable, scope: Scope) -> List:
    return policy_for(model).filter_visible(records, scope)


def is_visible(record, scope: Scope) -> bool:
    return policy_for(type(record)).allows(record, scope)


def get_visible_or_404(db: Session, model, record_id: int, scope: Scope, message: str = None):
    """Запись по id, если она видна; иначе NotFoundError (как для несуществующей)"""
    record = db.get(model, record_id)
    if record is None or not is_visible(record, scope):
        raise NotFoundError(message or f"{model.__name__} not found")
    return record
