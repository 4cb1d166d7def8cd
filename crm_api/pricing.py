"""
Расчёт сумм: итог продажи, количество услуг проекта в десятых долях
"""
from collections import OrderedDict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Tuple

CENTS = Decimal("0.01")

# Количество услуги в проекте хранится в десятых долях
SERVICE_UNITS_PER_ONE = 10


def to_decimal(value) -> Decimal:
    """Число из БД/запроса в Decimal без артефактов float"""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Некорректное число: {value!r}")


def sale_total(product_lines: Iterable[Tuple[object, object]], service_prices: Iterable[object]) -> Decimal:
    """
    Итог продажи: сумма (цена товара × количество) плюс сумма цен услуг

    Args:
        product_lines: пары (цена, количество)
        service_prices: цены услуг, по одной на строку

    Returns:
        Decimal, округлённый до копеек
    """
    products = sum((to_decimal(price) * to_decimal(qty) for price, qty in product_lines), Decimal("0"))
    services = sum((to_decimal(price) for price in service_prices), Decimal("0"))
    return (products + services).quantize(CENTS, rounding=ROUND_HALF_UP)


def service_units(quantity) -> int:
    """Количество услуги -> целое число десятых, минимум одна"""
    try:
        raw = to_decimal(1 if quantity is None else quantity)
    except ValueError:
        raw = Decimal("1")
    units = int((raw * SERVICE_UNITS_PER_ONE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(1, units)


def units_to_quantity(units: int) -> Decimal:
    return (Decimal(units) / SERVICE_UNITS_PER_ONE).quantize(Decimal("0.1"))


def aggregate_service_units(lines: Iterable[Tuple[int, int]]) -> "OrderedDict[int, int]":
    """Сворачивает строки (service_id, units) одной услуги в сумму units"""
    grouped = OrderedDict()
    for service_id, units in lines:
        if service_id is None:
            continue
        grouped[service_id] = grouped.get(service_id, 0) + (units or 1)
    return grouped


def project_items_total(product_lines: Iterable[Tuple[object, object]],
                        service_lines: Iterable[Tuple[object, int]]) -> Decimal:
    """Стоимость позиций проекта: товары × количество + услуги × (units / 10)"""
    products = sum((to_decimal(price) * to_decimal(qty) for price, qty in product_lines), Decimal("0"))
    services = sum((to_decimal(price) * units_to_quantity(units) for price, units in service_lines), Decimal("0"))
    return (products + services).quantize(CENTS, rounding=ROUND_HALF_UP)
