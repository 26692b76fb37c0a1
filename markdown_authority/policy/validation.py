"""
Limit Validator — checks a markdown against a tier's limit set.

Two levels of checking:

- ``is_within_limit``: a yes/no numeric check of one value against the caps
- ``validate``: a field-by-field review of a whole markdown request that
  collects errors and warnings and flags when a manager override is needed

Validation problems are returned, never raised: the caller re-prompts.
``requires_override`` is kept separate from errors so a caller can offer an
"ask for override" action instead of a generic failure.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from markdown_authority.policy.calculations import HUNDRED, ZERO
from markdown_authority.policy.schema import (
    MarkdownInput,
    MarkdownLimit,
    MarkdownType,
    ValidationResult,
    to_decimal,
)

logger = logging.getLogger(__name__)

OVERRIDE_REQUIRED_WARNING = "Value exceeds your limit - manager override required"
PRICE_INCREASE_WARNING = "New price is higher than original price"


def implied_discount_percent(new_price: Any, item_price: Any) -> Decimal:
    """Percent discount implied by setting ``item_price`` to ``new_price``."""
    price = to_decimal(item_price)
    if price <= 0:
        return ZERO
    return (price - to_decimal(new_price)) / price * HUNDRED


def is_within_limit(
    markdown_type: MarkdownType,
    value: Any,
    item_price: Any,
    limits: MarkdownLimit,
) -> bool:
    """
    Check whether a markdown value stays inside a limit set.

    An OVERRIDE_PRICE markdown is bounded by the percentage cap through its
    implied discount, and always fails for a tier that cannot override
    prices, however small the implied discount.
    """
    value = to_decimal(value)
    markdown_type = MarkdownType(markdown_type)

    if markdown_type == MarkdownType.PERCENTAGE:
        return value <= limits.max_percentage
    if markdown_type == MarkdownType.FIXED_AMOUNT:
        return value <= limits.max_fixed_amount
    return limits.can_override_price and (
        implied_discount_percent(value, item_price) <= limits.max_percentage
    )


def validate(
    markdown: MarkdownInput,
    limits: MarkdownLimit,
    item_price: Any,
) -> ValidationResult:
    """
    Review a markdown request against a limit set.

    Args:
        markdown: The request, possibly incomplete.
        limits: The limits in force (a tier's own, or elevated ones).
        item_price: Price of the item, or the cart total for cart-level.

    Returns:
        ValidationResult. ``requires_override`` is set only when the value
        is well formed but outside the limits; a percentage above 100 is an
        error at every tier.
    """
    price = to_decimal(item_price)
    result = ValidationResult()

    # Type
    if markdown.type is None:
        result.errors.append("Markdown type is required")
    elif markdown.type not in limits.allowed_types:
        result.errors.append(f"{markdown.type.value} is not allowed for your permission level")

    # Value
    if markdown.value is None:
        result.errors.append("Value is required")
    elif markdown.value <= 0:
        result.errors.append("Value must be greater than 0")
    elif markdown.type is not None:
        if markdown.type == MarkdownType.PERCENTAGE and markdown.value > HUNDRED:
            result.errors.append("Percentage cannot exceed 100%")
        elif not is_within_limit(markdown.type, markdown.value, price, limits):
            result.requires_override = True
            result.warnings.append(OVERRIDE_REQUIRED_WARNING)

        if markdown.type == MarkdownType.OVERRIDE_PRICE and markdown.value > price:
            result.warnings.append(PRICE_INCREASE_WARNING)

    # Reason
    if markdown.reason is None:
        result.errors.append("Reason is required")
    elif markdown.reason not in limits.allowed_reasons:
        result.errors.append(
            f"{markdown.reason.value} is not allowed for your permission level"
        )

    logger.debug(
        "Markdown validated: tier=%s type=%s valid=%s override=%s errors=%d",
        limits.tier.value,
        markdown.type.value if markdown.type else None,
        result.is_valid,
        result.requires_override,
        len(result.errors),
    )
    return result
