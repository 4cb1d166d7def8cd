"""
Демонстрационные данные: python -m crm_api.seed [--reset]

Создаёт admin, двух руководителей и двух менеджеров (один подчиняется
обоим руководителям), каталог, справочники статусов и воронку с этапами.
"""
import argparse
from datetime import date

from crm_api.auth import get_password_hash
from crm_api.database import (
    Base, Counterparty, Funnel, FunnelStage, Manager, Product, ProductStock,
    Project, Sale, SaleProduct, SaleService, SaleStatusType, Service,
    SubProject, SubProjectStatusType, Unit, Warehouse, SessionLocal, engine
)
from crm_api.logger import app_logger

ADMIN_PASSWORD = "admin123"
MANAGER_PASSWORD = "manager123"


def seed(db):
    admin_hash = get_password_hash(ADMIN_PASSWORD)
    manager_hash = get_password_hash(MANAGER_PASSWORD)

    admin = Manager(first_name="Admin", last_name="User", email="admin@example.com",
                    phone_number="000-000-0000", role="admin", password_hash=admin_hash)
    ivan = Manager(first_name="Иван", last_name="Петров", email="ivan.p@example.com",
                   phone_number="123-456-7890", role="head", password_hash=manager_hash)
    maria = Manager(first_name="Мария", last_name="Иванова", email="maria.i@example.com",
                    phone_number="098-765-4321", role="manager", password_hash=manager_hash)
    oleg = Manager(first_name="Олег", last_name="Сидоренко", email="oleg.s@example.com",
                   phone_number="111-222-3333", role="manager", password_hash=manager_hash)
    anna = Manager(first_name="Анна", last_name="Коваленко", email="anna.k@example.com",
                   phone_number="444-555-6666", role="head", password_hash=manager_hash)
    db.add_all([admin, ivan, maria, oleg, anna])

    # Граф подчинения: Олег подчиняется двум руководителям
    ivan.supervisors = [admin]
    anna.supervisors = [admin]
    maria.supervisors = [ivan]
    oleg.supervisors = [ivan, anna]

    pcs, kg = Unit(name="шт.", short_name="шт"), Unit(name="кг", short_name="кг")
    main_wh = Warehouse(name="Основной склад", location="Киев, ул. Центральная, 1")
    second_wh = Warehouse(name="Склад №2", location="Львов, ул. Промышленная, 5")
    db.add_all([pcs, kg, main_wh, second_wh])

    laptop = Product(name="Ноутбук Pro 15", sku="NB-PRO-15", price=1500, unit=pcs,
                     description="Ноутбук для профессионалов")
    mouse = Product(name="Мышь Wireless X", sku="MS-WX", price=50, unit=pcs)
    db.add_all([laptop, mouse])
    laptop.stocks = [ProductStock(warehouse=main_wh, quantity=10), ProductStock(warehouse=second_wh, quantity=5)]
    mouse.stocks = [ProductStock(warehouse=main_wh, quantity=50)]

    consulting = Service(name="Консультация по ПО", price=100)
    setup = Service(name="Настройка оборудования", price=250)
    db.add_all([consulting, setup])

    for name in ("new", "paid", "shipped", "cancelled"):
        db.add(SaleStatusType(name=name))
    for name in ("Planning", "In progress", "Done"):
        db.add(SubProjectStatusType(name=name))

    funnel = Funnel(name="Продажи")
    db.add(funnel)
    db.flush()
    stages = [
        FunnelStage(funnel_id=funnel.id, name=name, order=i)
        for i, name in enumerate(("Лид", "Переговоры", "Договор", "Закрыто"), start=1)
    ]
    db.add_all(stages)

    client = Counterparty(name="ООО Ромашка", type="legal_entity", email="info@romashka.example",
                          responsible_manager=maria)
    person = Counterparty(name="Петр Сидоров", type="individual", responsible_manager=oleg)
    db.add_all([client, person])
    db.flush()

    project = Project(name="Оснащение офиса", forecast_amount=20000, counterparty=client,
                      main_responsible_manager=maria, funnel_id=funnel.id, funnel_stage=stages[1])
    project.secondary_managers = [oleg]
    project.subprojects = [SubProject(name="Закупка ноутбуков", cost=15000, status="Planning")]
    db.add(project)

    sale = Sale(counterparty=client, responsible_manager=maria, project=project,
                sale_date=date.today(), status="new")
    sale.product_lines = [SaleProduct(product=laptop, quantity=2), SaleProduct(product=mouse, quantity=2)]
    sale.service_lines = [SaleService(service=setup)]
    db.add(sale)

    db.commit()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Заполнить базу демонстрационными данными")
    parser.add_argument("--reset", action="store_true", help="удалить и пересоздать все таблицы")
    args = parser.parse_args(argv)

    if args.reset:
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if db.query(Manager).count() and not args.reset:
            print("[INFO] База уже содержит данные, используйте --reset")
            return
        seed(db)
        app_logger.info("Демонстрационные данные созданы")
        print(f"[OK] admin@example.com / {ADMIN_PASSWORD}, остальные / {MANAGER_PASSWORD}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
