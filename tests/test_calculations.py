"""
Tests for the Discount Calculator.

Validates:
- Percentage, fixed amount and override-price arithmetic
- Boundedness of the discount
- Zero-price guard
- Maximum discount per limit set
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from markdown_authority.policy.calculations import calculate_discount, final_price, max_discount
from markdown_authority.policy.schema import MarkdownType, PermissionTier, limits_for


class TestCalculateDiscount:
    def test_percentage(self):
        result = calculate_discount(MarkdownType.PERCENTAGE, 25, 100)
        assert result.amount == 25
        assert result.percent == 25

    def test_decimal_percentage(self):
        result = calculate_discount(MarkdownType.PERCENTAGE, 12.5, 80)
        assert result.amount == 10
        assert result.percent == Decimal("12.5")

    def test_fixed_amount(self):
        result = calculate_discount(MarkdownType.FIXED_AMOUNT, 15, 100)
        assert result.amount == 15
        assert result.percent == 15

    def test_fixed_amount_capped_at_item_price(self):
        """A $150 discount on a $100 item takes the price to zero, not below."""
        result = calculate_discount(MarkdownType.FIXED_AMOUNT, 150, 100)
        assert result.amount == 100
        assert result.percent == 100

    def test_override_price(self):
        result = calculate_discount(MarkdownType.OVERRIDE_PRICE, 70, 100)
        assert result.amount == 30
        assert result.percent == 30

    def test_override_price_above_original_is_no_discount(self):
        result = calculate_discount(MarkdownType.OVERRIDE_PRICE, 120, 100)
        assert result.amount == 0
        assert result.percent == 0

    @pytest.mark.parametrize("new_price", [100, 100.01, 150, 10_000])
    def test_override_price_never_negative(self, new_price):
        assert calculate_discount(MarkdownType.OVERRIDE_PRICE, new_price, 100).amount == 0

    def test_zero_price(self):
        result = calculate_discount(MarkdownType.PERCENTAGE, 10, 0)
        assert result.amount == 0
        assert result.percent == 0

    def test_string_type_accepted(self):
        assert calculate_discount("FIXED_AMOUNT", 5, 20).amount == 5

    @pytest.mark.parametrize("markdown_type", list(MarkdownType))
    @pytest.mark.parametrize("value", [0.01, 1, 15, 99.99, 100, 250, 100_000])
    @pytest.mark.parametrize("price", [0, 0.5, 19.99, 100, 5000])
    def test_discount_bounded_by_price(self, markdown_type, value, price):
        result = calculate_discount(markdown_type, value, price)
        assert 0 <= result.amount <= Decimal(str(price))
        assert 0 <= result.percent <= 100


class TestFinalPrice:
    def test_final_price(self):
        assert final_price(MarkdownType.PERCENTAGE, 20, 50) == 40
        assert final_price(MarkdownType.FIXED_AMOUNT, 80, 50) == 0
        assert final_price(MarkdownType.OVERRIDE_PRICE, 35, 50) == 35
        assert final_price(MarkdownType.OVERRIDE_PRICE, 65, 50) == 50


class TestMaxDiscount:
    def setup_method(self):
        self.associate = limits_for(PermissionTier.ASSOCIATE)
        self.manager = limits_for(PermissionTier.MANAGER)

    def test_percentage(self):
        assert max_discount(MarkdownType.PERCENTAGE, 100, self.associate) == 15
        assert max_discount(MarkdownType.PERCENTAGE, 100, self.manager) == 50

    def test_fixed_amount(self):
        assert max_discount(MarkdownType.FIXED_AMOUNT, 100, self.associate) == 50
        assert max_discount(MarkdownType.FIXED_AMOUNT, 100, self.manager) == 500

    def test_override_price_is_minimum_price(self):
        assert max_discount(MarkdownType.OVERRIDE_PRICE, 100, self.manager) == 50
        assert max_discount(MarkdownType.OVERRIDE_PRICE, 200, self.manager) == 100

    def test_admin_minimum_price_is_zero(self):
        admin = limits_for(PermissionTier.ADMIN)
        assert max_discount(MarkdownType.OVERRIDE_PRICE, 80, admin) == 0
