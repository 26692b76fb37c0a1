"""
Discount Calculator — pure markdown arithmetic.

Converts a markdown (type + value) into a concrete discount for an item
price, and reports the most generous markdown a limit set allows. No
state and no side effects; safe to call from any number of transactions.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from markdown_authority.policy.schema import (
    DiscountOutcome,
    MarkdownLimit,
    MarkdownType,
    to_decimal,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def calculate_discount(
    markdown_type: MarkdownType,
    value: Any,
    item_price: Any,
) -> DiscountOutcome:
    """
    Compute the discount a markdown yields on an item.

    - PERCENTAGE: ``price * value / 100``
    - FIXED_AMOUNT: ``min(value, price)``; never drives the price negative
    - OVERRIDE_PRICE: ``max(0, price - value)``; a new price above the
      original is not a markdown and yields zero

    Args:
        markdown_type: How ``value`` is interpreted.
        value: Percent, currency amount, or new price.
        item_price: Current price of the item (or cart total).

    Returns:
        DiscountOutcome with ``amount`` in ``[0, price]`` and ``percent``
        in ``[0, 100]``. A zero price yields a zero discount.
    """
    value = to_decimal(value)
    price = to_decimal(item_price)
    markdown_type = MarkdownType(markdown_type)

    if price <= 0:
        return DiscountOutcome(amount=ZERO, percent=ZERO)

    if markdown_type == MarkdownType.PERCENTAGE:
        amount = price * value / HUNDRED
    elif markdown_type == MarkdownType.FIXED_AMOUNT:
        amount = min(value, price)
    else:
        amount = max(ZERO, price - value)

    # Clamp: negative or >100% inputs never produce an out-of-range discount
    amount = min(max(amount, ZERO), price)
    percent = min(amount / price * HUNDRED, HUNDRED)
    return DiscountOutcome(amount=amount, percent=percent)


def final_price(markdown_type: MarkdownType, value: Any, item_price: Any) -> Decimal:
    """Price left after the markdown is applied."""
    price = to_decimal(item_price)
    return max(ZERO, price - calculate_discount(markdown_type, value, price).amount)


def max_discount(
    markdown_type: MarkdownType,
    item_price: Any,
    limits: MarkdownLimit,
) -> Decimal:
    """
    The most generous value a limit set allows for a markdown type.

    For OVERRIDE_PRICE this is the lowest price the item may be set to,
    bounded by the same percentage ceiling as a percentage markdown.
    """
    markdown_type = MarkdownType(markdown_type)
    if markdown_type == MarkdownType.PERCENTAGE:
        return limits.max_percentage
    if markdown_type == MarkdownType.FIXED_AMOUNT:
        return limits.max_fixed_amount
    return to_decimal(item_price) * (1 - limits.max_percentage / HUNDRED)
