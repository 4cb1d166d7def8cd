"""
Backend Tests - Sale Totals and Service Quantities
Tests for crm_api/pricing.py
"""

import pytest
import sys
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from crm_api.pricing import (
    aggregate_service_units, project_items_total, sale_total, service_units,
    to_decimal, units_to_quantity
)


@pytest.mark.backend
class TestSaleTotal:
    """Tests for sale_total()"""

    def test_products_and_services(self):
        """total = sum(price * qty) + sum(service price)"""
        total = sale_total([(100, 2), ('19.99', 3)], [50, '0.01'])
        assert total == Decimal('309.98')

    def test_empty_sale_is_zero(self):
        assert sale_total([], []) == Decimal('0.00')

    def test_no_float_artifacts(self):
        """0.1 * 3 must be exactly 0.30"""
        assert sale_total([(0.1, 3)], []) == Decimal('0.30')

    def test_fractional_quantity_rounds_half_up(self):
        assert sale_total([('10.005', 1)], []) == Decimal('10.01')

    def test_add_then_remove_line_restores_total(self):
        lines = [(100, 1)]
        before = sale_total(lines, [25])
        after = sale_total(lines + [(40, 2)], [25])
        assert after - before == Decimal('80.00')
        assert sale_total(lines, [25]) == before

    def test_invalid_number_raises(self):
        with pytest.raises(ValueError):
            to_decimal('abc')


@pytest.mark.backend
class TestServiceUnits:
    """Service quantity is stored in tenths"""

    def test_one_is_ten_units(self):
        assert service_units(1) == 10

    def test_missing_quantity_defaults_to_one(self):
        assert service_units(None) == 10

    def test_tenths_are_rounded(self):
        assert service_units(0.25) == 3
        assert service_units('1.5') == 15

    def test_minimum_one_unit(self):
        assert service_units(0) == 1
        assert service_units(-5) == 1

    def test_garbage_falls_back_to_one(self):
        assert service_units('x') == 10

    def test_units_to_quantity(self):
        assert units_to_quantity(15) == Decimal('1.5')
        assert units_to_quantity(1) == Decimal('0.1')

    def test_aggregate_sums_same_service(self):
        grouped = aggregate_service_units([(1, 10), (2, 5), (1, 3), (None, 7)])
        assert dict(grouped) == {1: 13, 2: 5}
        assert list(grouped) == [1, 2]

    def test_project_items_total(self):
        total = project_items_total([(100, 2)], [(50, 15)])
        assert total == Decimal('275.00')
