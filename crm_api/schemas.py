"""
Pydantic схемы для валидации данных
"""
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from crm_api.access import Role


# =========================
# МЕНЕДЖЕРЫ
# =========================

class ManagerBrief(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: str

    class Config:
        from_attributes = True


class ManagerResponse(ManagerBrief):
    full_name: str
    phone_number: Optional[str] = None
    supervisor_ids: List[int] = []
    subordinate_ids: List[int] = []
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _lower_email(value):
    return value.strip().lower() if isinstance(value, str) else value


class ManagerCreate(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone_number: Optional[str] = None
    password: str = Field(..., min_length=6)
    role: Role = Role.MANAGER
    supervisor_ids: List[int] = []

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return _lower_email(value)


class ManagerUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)
    role: Optional[Role] = None
    supervisor_ids: Optional[List[int]] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return _lower_email(value)


class SupervisorsUpdate(BaseModel):
    supervisor_ids: List[int]


# =========================
# АУТЕНТИФИКАЦИЯ И НАСТРОЙКИ
# =========================

class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return _lower_email(value)


class LoginResponse(BaseModel):
    user: ManagerResponse
    token: str
    token_type: str = "bearer"


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return _lower_email(value)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


# =========================
# КОНТРАГЕНТЫ
# =========================

class CounterpartyType(str, Enum):
    INDIVIDUAL = "individual"
    LEGAL_ENTITY = "legal_entity"


class CounterpartyBase(BaseModel):
    name: str = Field(..., min_length=1)
    type: CounterpartyType = CounterpartyType.INDIVIDUAL
    phone: Optional[str] = None
    email: Optional[str] = None
    responsible_manager_id: Optional[int] = None


class CounterpartyCreate(CounterpartyBase):
    pass


class CounterpartyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    type: Optional[CounterpartyType] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    responsible_manager_id: Optional[int] = None


class CounterpartyBrief(BaseModel):
    id: int
    name: str
    type: str

    class Config:
        from_attributes = True


class CounterpartyResponse(CounterpartyBase):
    id: int
    type: str
    responsible_manager: Optional[ManagerBrief] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =========================
# КАТАЛОГ
# =========================

class UnitCreate(BaseModel):
    name: str = Field(..., min_length=1)
    short_name: Optional[str] = None


class UnitUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    short_name: Optional[str] = None


class UnitResponse(UnitCreate):
    id: int

    class Config:
        from_attributes = True


class WarehouseCreate(BaseModel):
    name: str = Field(..., min_length=1)
    location: Optional[str] = None


class WarehouseUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = None


class WarehouseResponse(WarehouseCreate):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    sku: Optional[str] = None
    description: Optional[str] = None
    price: float = Field(0, ge=0)
    unit_id: Optional[int] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    sku: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    unit_id: Optional[int] = None


class ProductBrief(BaseModel):
    id: int
    name: str
    sku: Optional[str] = None
    price: float

    class Config:
        from_attributes = True


class ProductResponse(ProductCreate):
    id: int
    unit: Optional[UnitResponse] = None
    total_stock: float = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StockItem(BaseModel):
    warehouse_id: int
    quantity: float = Field(..., ge=0)


class StockUpdate(BaseModel):
    stocks: List[StockItem]


class StockResponse(BaseModel):
    product_id: int
    warehouse_id: int
    quantity: float
    warehouse: Optional[WarehouseResponse] = None

    class Config:
        from_attributes = True


class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(0, ge=0)


class ServiceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)


class ServiceResponse(ServiceCreate):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =========================
# СПРАВОЧНИКИ СТАТУСОВ
# =========================

class StatusTypeCreate(BaseModel):
    name: str = Field(..., min_length=1)


class StatusTypeResponse(StatusTypeCreate):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =========================
# ПРОДАЖИ
# =========================

class SaleProductLineCreate(BaseModel):
    product_id: int
    quantity: float = Field(1, gt=0)


class SaleServiceLineCreate(BaseModel):
    service_id: int


class SaleCreate(BaseModel):
    counterparty_id: Optional[int] = None
    responsible_manager_id: Optional[int] = None
    project_id: Optional[int] = None
    sale_date: Optional[date] = None
    status: Optional[str] = None
    deferred_payment_date: Optional[date] = None
    products: List[SaleProductLineCreate] = []
    services: List[SaleServiceLineCreate] = []


class SaleUpdate(BaseModel):
    counterparty_id: Optional[int] = None
    responsible_manager_id: Optional[int] = None
    project_id: Optional[int] = None
    sale_date: Optional[date] = None
    status: Optional[str] = None
    deferred_payment_date: Optional[date] = None


class SaleProductLineResponse(BaseModel):
    id: int
    product_id: int
    quantity: float
    product: Optional[ProductBrief] = None

    class Config:
        from_attributes = True


class SaleServiceLineResponse(BaseModel):
    id: int
    service_id: int
    service: Optional[ServiceResponse] = None

    class Config:
        from_attributes = True


class SaleResponse(BaseModel):
    id: int
    counterparty_id: Optional[int] = None
    responsible_manager_id: Optional[int] = None
    project_id: Optional[int] = None
    sale_date: date
    status: str
    deferred_payment_date: Optional[date] = None
    total_price: float
    counterparty: Optional[CounterpartyBrief] = None
    product_lines: List[SaleProductLineResponse] = []
    service_lines: List[SaleServiceLineResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =========================
# ВОРОНКИ
# =========================

class FunnelCreate(BaseModel):
    name: str = Field(..., min_length=1)
    stages: List[str] = []


class FunnelUpdate(BaseModel):
    name: str = Field(..., min_length=1)


class StageAppend(BaseModel):
    name: str = Field(..., min_length=1)


class StageCreate(BaseModel):
    funnel_id: int
    name: str = Field(..., min_length=1)
    order: Optional[int] = None


class StageUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    order: Optional[int] = None


class StageResponse(BaseModel):
    id: int
    name: str
    funnel_id: int
    order: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FunnelBrief(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class FunnelResponse(FunnelBrief):
    stages: List[StageResponse] = []
    created_at: Optional[datetime] = None


class StageOrderItem(BaseModel):
    stage_id: int
    order: int


class ReorderStagesRequest(BaseModel):
    stages: List[StageOrderItem]


# =========================
# ПРОЕКТЫ
# =========================

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    forecast_amount: float = Field(0, ge=0)
    counterparty_id: Optional[int] = None
    main_responsible_manager_id: Optional[int] = None
    secondary_responsible_manager_ids: List[int] = []
    funnel_id: Optional[int] = None
    funnel_stage_id: Optional[int] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    forecast_amount: Optional[float] = Field(None, ge=0)
    counterparty_id: Optional[int] = None
    main_responsible_manager_id: Optional[int] = None
    secondary_responsible_manager_ids: Optional[List[int]] = None
    funnel_id: Optional[int] = None
    funnel_stage_id: Optional[int] = None


class ProjectResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    forecast_amount: float
    counterparty_id: Optional[int] = None
    main_responsible_manager_id: Optional[int] = None
    secondary_responsible_manager_ids: List[int] = []
    funnel_id: Optional[int] = None
    funnel_stage_id: Optional[int] = None
    items_total: float = 0
    subprojects_cost: float = 0
    counterparty: Optional[CounterpartyBrief] = None
    main_responsible_manager: Optional[ManagerBrief] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StageMove(BaseModel):
    funnel_stage_id: int


class ProjectManagerAdd(BaseModel):
    manager_id: int


class ProjectProductAdd(BaseModel):
    product_id: int
    quantity: float = Field(1, gt=0)


class ProjectProductResponse(BaseModel):
    id: int
    product_id: int
    quantity: float
    product: Optional[ProductBrief] = None

    class Config:
        from_attributes = True


class ProjectServiceAdd(BaseModel):
    service_id: int
    quantity: Optional[float] = None


class ProjectServiceResponse(BaseModel):
    service_id: int
    quantity: float
    service: Optional[ServiceResponse] = None

    class Config:
        from_attributes = True


class ProjectBoardColumn(BaseModel):
    stage: StageResponse
    projects: List[ProjectResponse]


class ProjectBoardResponse(BaseModel):
    funnel: FunnelBrief
    stages: List[ProjectBoardColumn]
    unassigned: List[ProjectResponse]


# =========================
# ПОДПРОЕКТЫ
# =========================

class SubProjectCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    project_id: int
    cost: float = Field(0, ge=0)
    status: Optional[str] = None


class SubProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    project_id: Optional[int] = None
    cost: Optional[float] = Field(None, ge=0)


class SubProjectStatusMove(BaseModel):
    status: str = Field(..., min_length=1)


class SubProjectResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    project_id: int
    cost: float
    status: str
    products: List[ProjectProductResponse] = []
    services: List[ProjectServiceResponse] = []
    items_total: float = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StatusBoardColumn(BaseModel):
    status: str
    subprojects: List[SubProjectResponse]


class StatusBoardResponse(BaseModel):
    columns: List[StatusBoardColumn]
    unassigned: List[SubProjectResponse]


# =========================
# ЗАДАЧИ
# =========================

class TaskStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.NEW
    priority: TaskPriority = TaskPriority.MEDIUM
    responsible_manager_id: Optional[int] = None
    project_id: Optional[int] = None
    subproject_id: Optional[int] = None
    due_date: Optional[datetime] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    responsible_manager_id: Optional[int] = None
    project_id: Optional[int] = None
    subproject_id: Optional[int] = None
    due_date: Optional[datetime] = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    responsible_manager_id: Optional[int] = None
    creator_manager_id: Optional[int] = None
    project_id: Optional[int] = None
    subproject_id: Optional[int] = None
    due_date: Optional[datetime] = None
    responsible_manager: Optional[ManagerBrief] = None
    creator_manager: Optional[ManagerBrief] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =========================
# КОММЕНТАРИИ
# =========================

class CommentCreate(BaseModel):
    content: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_url: Optional[str] = None


class CommentUpdate(CommentCreate):
    pass


class CommentResponse(BaseModel):
    id: int
    manager_id: Optional[int] = None
    content: str = ""
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_url: Optional[str] = None
    manager: Optional[ManagerBrief] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProjectCommentResponse(CommentResponse):
    project_id: int


class SubProjectCommentResponse(CommentResponse):
    subproject_id: int


# =========================
# ФАЙЛЫ И ЛОГ
# =========================

class FileDeleteRequest(BaseModel):
    fileUrl: str = Field(..., min_length=1)


class ActivityLogResponse(BaseModel):
    id: int
    manager_id: Optional[int] = None
    action_type: str
    entity_type: str
    entity_id: Optional[int] = None
    action_date: datetime

    class Config:
        from_attributes = True
