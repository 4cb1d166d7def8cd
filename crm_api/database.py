"""
База данных - SQLAlchemy модели
Менеджеры, контрагенты, каталог, продажи, проекты, воронки, задачи, комментарии
"""
from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, DateTime, Date, Numeric,
    Text, ForeignKey, Table, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from datetime import datetime
from crm_api.config import get_settings
from crm_api.pricing import (
    sale_total, project_items_total, aggregate_service_units, units_to_quantity
)

settings = get_settings()

# Создание engine
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
    pool_pre_ping=True
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def Money():
    """Денежная колонка: Numeric в БД, float в Python"""
    return Numeric(12, 2, asdecimal=False)


# =========================
# СВЯЗУЮЩИЕ ТАБЛИЦЫ
# =========================

# Граф подчинения: manager_id подчиняется supervisor_id (многие-ко-многим)
manager_supervisors = Table(
    "manager_supervisors",
    Base.metadata,
    Column("manager_id", Integer, ForeignKey("managers.id", ondelete="CASCADE"), primary_key=True),
    Column("supervisor_id", Integer, ForeignKey("managers.id", ondelete="CASCADE"), primary_key=True),
)

# Второстепенные ответственные по проекту
project_managers = Table(
    "project_managers",
    Base.metadata,
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    Column("manager_id", Integer, ForeignKey("managers.id", ondelete="CASCADE"), primary_key=True),
)


# =========================
# МЕНЕДЖЕРЫ (пользователи системы)
# =========================

class Manager(Base):
    """Менеджеры"""
    __tablename__ = "managers"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone_number = Column(String)

    # Аутентификация
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False, default="manager")
    last_login = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Связи
    supervisors = relationship(
        "Manager",
        secondary=manager_supervisors,
        primaryjoin=lambda: Manager.id == manager_supervisors.c.manager_id,
        secondaryjoin=lambda: Manager.id == manager_supervisors.c.supervisor_id,
        backref="subordinates",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def supervisor_ids(self):
        return sorted(s.id for s in self.supervisors)

    @property
    def subordinate_ids(self):
        return sorted(s.id for s in self.subordinates)


class ActivityLog(Base):
    """Лог действий"""
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True)
    manager_id = Column(Integer, ForeignKey("managers.id", ondelete="SET NULL"))

    action_type = Column(String, nullable=False)  # 'login', 'logout', 'create', 'update', 'delete'
    entity_type = Column(String, nullable=False)  # 'project', 'sale', 'task', etc.
    entity_id = Column(Integer)

    action_date = Column(DateTime, default=datetime.utcnow, index=True)


# =========================
# КОНТРАГЕНТЫ
# =========================

class Counterparty(Base):
    """Контрагенты"""
    __tablename__ = "counterparties"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="individual")  # individual / legal_entity
    phone = Column(String)
    email = Column(String)
    responsible_manager_id = Column(Integer, ForeignKey("managers.id", ondelete="SET NULL"), index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    responsible_manager = relationship("Manager")


# =========================
# КАТАЛОГ: ЕДИНИЦЫ, СКЛАДЫ, ТОВАРЫ, УСЛУГИ
# =========================

class Unit(Base):
    """Единицы измерения"""
    __tablename__ = "units"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    short_name = Column(String)


class Warehouse(Base):
    """Склады"""
    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    location = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)


class Product(Base):
    """Товары"""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, unique=True)
    description = Column(Text)
    price = Column(Money(), nullable=False, default=0)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="SET NULL"))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    unit = relationship("Unit")
    stocks = relationship("ProductStock", back_populates="product", cascade="all, delete-orphan")

    @property
    def total_stock(self) -> float:
        return float(sum(s.quantity or 0 for s in self.stocks))


class ProductStock(Base):
    """Остатки товара по складам"""
    __tablename__ = "product_stocks"

    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id", ondelete="CASCADE"), primary_key=True)
    quantity = Column(Numeric(12, 3, asdecimal=False), nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product", back_populates="stocks")
    warehouse = relationship("Warehouse")


class Service(Base):
    """Услуги"""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    price = Column(Money(), nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# =========================
# СПРАВОЧНИКИ СТАТУСОВ
# =========================

class SaleStatusType(Base):
    """Статусы продаж"""
    __tablename__ = "sale_status_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class SubProjectStatusType(Base):
    """Статусы подпроектов"""
    __tablename__ = "subproject_status_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# =========================
# ПРОДАЖИ
# =========================

class Sale(Base):
    """Продажи"""
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, index=True)
    counterparty_id = Column(Integer, ForeignKey("counterparties.id", ondelete="SET NULL"), index=True)
    responsible_manager_id = Column(Integer, ForeignKey("managers.id", ondelete="SET NULL"), index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), index=True)

    sale_date = Column(Date, nullable=False)
    status = Column(String, nullable=False)
    deferred_payment_date = Column(Date)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    counterparty = relationship("Counterparty")
    responsible_manager = relationship("Manager")
    project = relationship("Project", back_populates="sales")
    product_lines = relationship("SaleProduct", cascade="all, delete-orphan", order_by="SaleProduct.id")
    service_lines = relationship("SaleService", cascade="all, delete-orphan", order_by="SaleService.id")

    @property
    def total_price(self) -> float:
        total = sale_total(
            [(line.product.price if line.product else 0, line.quantity) for line in self.product_lines],
            [line.service.price if line.service else 0 for line in self.service_lines],
        )
        return float(total)


class SaleProduct(Base):
    """Товарные строки продажи"""
    __tablename__ = "sale_products"

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Numeric(12, 3, asdecimal=False), nullable=False, default=1)

    product = relationship("Product")


class SaleService(Base):
    """Строки услуг продажи"""
    __tablename__ = "sale_services"

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)

    service = relationship("Service")


# =========================
# ВОРОНКИ ПРОЕКТОВ
# =========================

class Funnel(Base):
    """Воронки проектов"""
    __tablename__ = "funnels"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    stages = relationship(
        "FunnelStage",
        back_populates="funnel",
        order_by="(FunnelStage.order, FunnelStage.id)",
    )


class FunnelStage(Base):
    """Этапы воронки проектов"""
    __tablename__ = "funnel_stages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    funnel_id = Column(Integer, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    order = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    funnel = relationship("Funnel", back_populates="stages")


# =========================
# ВОРОНКИ ПОДПРОЕКТОВ
# =========================

class SubProjectFunnel(Base):
    """Воронки подпроектов"""
    __tablename__ = "subproject_funnels"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    stages = relationship(
        "SubProjectFunnelStage",
        back_populates="funnel",
        order_by="(SubProjectFunnelStage.order, SubProjectFunnelStage.id)",
    )


class SubProjectFunnelStage(Base):
    """Этапы воронки подпроектов"""
    __tablename__ = "subproject_funnel_stages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    funnel_id = Column(Integer, ForeignKey("subproject_funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    order = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    funnel = relationship("SubProjectFunnel", back_populates="stages")


# =========================
# ПРОЕКТЫ И ПОДПРОЕКТЫ
# =========================

class LineItemsMixin:
    """Товары и услуги проекта или подпроекта (product_lines, service_lines)"""

    @property
    def products(self):
        return list(self.product_lines)

    @property
    def services(self):
        """Услуги, повторы одной услуги свёрнуты в дробное количество"""
        by_id = {line.service_id: line.service for line in self.service_lines}
        units = aggregate_service_units((line.service_id, line.units) for line in self.service_lines)
        return [
            {
                "service_id": service_id,
                "quantity": float(units_to_quantity(count)),
                "service": by_id.get(service_id),
            }
            for service_id, count in units.items()
        ]

    @property
    def items_total(self) -> float:
        """Стоимость товаров и услуг"""
        return float(project_items_total(
            [(line.product.price if line.product else 0, line.quantity) for line in self.product_lines],
            [(line.service.price if line.service else 0, line.units) for line in self.service_lines],
        ))


class Project(LineItemsMixin, Base):
    """Проекты"""
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    forecast_amount = Column(Money(), nullable=False, default=0)

    counterparty_id = Column(Integer, ForeignKey("counterparties.id", ondelete="SET NULL"))
    main_responsible_manager_id = Column(Integer, ForeignKey("managers.id", ondelete="SET NULL"), index=True)

    # Позиция в воронке
    funnel_id = Column(Integer, ForeignKey("funnels.id", ondelete="SET NULL"))
    funnel_stage_id = Column(Integer, ForeignKey("funnel_stages.id", ondelete="SET NULL"))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Связи
    counterparty = relationship("Counterparty")
    main_responsible_manager = relationship("Manager")
    secondary_managers = relationship("Manager", secondary=project_managers, backref="secondary_projects")
    funnel = relationship("Funnel")
    funnel_stage = relationship("FunnelStage")
    subprojects = relationship("SubProject", back_populates="project", cascade="all, delete-orphan")
    sales = relationship("Sale", back_populates="project")
    product_lines = relationship("ProjectProduct", cascade="all, delete-orphan", order_by="ProjectProduct.id")
    service_lines = relationship("ProjectService", cascade="all, delete-orphan", order_by="ProjectService.id")
    comments = relationship("ProjectComment", back_populates="project", cascade="all, delete-orphan")

    @property
    def secondary_responsible_manager_ids(self):
        return sorted(m.id for m in self.secondary_managers)

    @property
    def subprojects_cost(self) -> float:
        return float(sum(sp.cost or 0 for sp in self.subprojects))


class ProjectProduct(Base):
    """Товары проекта"""
    __tablename__ = "project_products"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Numeric(12, 3, asdecimal=False), nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product")


class ProjectService(Base):
    """Услуги проекта, количество хранится в десятых долях"""
    __tablename__ = "project_services"
    __table_args__ = (UniqueConstraint("project_id", "service_id"),)

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    units = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    service = relationship("Service")


class SubProject(LineItemsMixin, Base):
    """Подпроекты"""
    __tablename__ = "subprojects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    cost = Column(Money(), nullable=False, default=0)
    status = Column(String, nullable=False, default="")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project", back_populates="subprojects")
    comments = relationship("SubProjectComment", back_populates="subproject", cascade="all, delete-orphan")
    product_lines = relationship("SubProjectProduct", cascade="all, delete-orphan", order_by="SubProjectProduct.id")
    service_lines = relationship("SubProjectService", cascade="all, delete-orphan", order_by="SubProjectService.id")


class SubProjectProduct(Base):
    """Товары подпроекта, одна строка на товар"""
    __tablename__ = "subproject_products"
    __table_args__ = (UniqueConstraint("subproject_id", "product_id"),)

    id = Column(Integer, primary_key=True, index=True)
    subproject_id = Column(Integer, ForeignKey("subprojects.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Numeric(12, 3, asdecimal=False), nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product")


class SubProjectService(Base):
    """Услуги подпроекта в десятых долях"""
    __tablename__ = "subproject_services"
    __table_args__ = (UniqueConstraint("subproject_id", "service_id"),)

    id = Column(Integer, primary_key=True, index=True)
    subproject_id = Column(Integer, ForeignKey("subprojects.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    units = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    service = relationship("Service")


# =========================
# ЗАДАЧИ
# =========================

class Task(Base):
    """Задачи"""
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, default="new")
    priority = Column(String, nullable=False, default="medium")

    responsible_manager_id = Column(Integer, ForeignKey("managers.id", ondelete="SET NULL"), index=True)
    creator_manager_id = Column(Integer, ForeignKey("managers.id", ondelete="SET NULL"), index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"))
    subproject_id = Column(Integer, ForeignKey("subprojects.id", ondelete="SET NULL"))
    due_date = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    responsible_manager = relationship("Manager", foreign_keys=[responsible_manager_id])
    creator_manager = relationship("Manager", foreign_keys=[creator_manager_id])


# =========================
# КОММЕНТАРИИ
# =========================

class ProjectComment(Base):
    """Комментарии к проекту"""
    __tablename__ = "project_comments"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    manager_id = Column(Integer, ForeignKey("managers.id", ondelete="SET NULL"))
    content = Column(Text, nullable=False, default="")

    # Вложение
    file_name = Column(String)
    file_type = Column(String)
    file_url = Column(String)

    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    manager = relationship("Manager")
    project = relationship("Project", back_populates="comments")


class SubProjectComment(Base):
    """Комментарии к подпроекту"""
    __tablename__ = "subproject_comments"

    id = Column(Integer, primary_key=True, index=True)
    subproject_id = Column(Integer, ForeignKey("subprojects.id", ondelete="CASCADE"), nullable=False, index=True)
    manager_id = Column(Integer, ForeignKey("managers.id", ondelete="SET NULL"))
    content = Column(Text, nullable=False, default="")

    file_name = Column(String)
    file_type = Column(String)
    file_url = Column(String)

    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    manager = relationship("Manager")
    subproject = relationship("SubProject", back_populates="comments")


def init_db():
    """Инициализация базы данных"""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Получить сессию БД для dependency injection"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
