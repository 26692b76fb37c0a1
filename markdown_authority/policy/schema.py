"""
Markdown Policy Schema — Pydantic models and the tier policy table.

These models are the canonical data structures for every markdown concept:
permission tiers, markdown limits, caller requests, validation results,
override requests and their outcomes, and the applied-markdown record.

The tier policy table is configuration, not computed. Every tier has a
defined limit set and every reason code has a minimum tier, so both
lookups are total.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr, computed_field, field_validator


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class PermissionTier(str, enum.Enum):
    """Ordered markdown permission tiers (ASSOCIATE < SUPERVISOR < MANAGER < ADMIN)."""

    ASSOCIATE = "ASSOCIATE"
    SUPERVISOR = "SUPERVISOR"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"

    @property
    def level(self) -> int:
        return _TIER_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PermissionTier):
            return NotImplemented
        return self.level < other.level

    def __le__(self, other: object) -> bool:
        if not isinstance(other, PermissionTier):
            return NotImplemented
        return self.level <= other.level

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, PermissionTier):
            return NotImplemented
        return self.level > other.level

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, PermissionTier):
            return NotImplemented
        return self.level >= other.level


_TIER_ORDER = [
    PermissionTier.ASSOCIATE,
    PermissionTier.SUPERVISOR,
    PermissionTier.MANAGER,
    PermissionTier.ADMIN,
]


class MarkdownType(str, enum.Enum):
    """How a markdown value is interpreted."""

    PERCENTAGE = "PERCENTAGE"  # percent off the item price
    FIXED_AMOUNT = "FIXED_AMOUNT"  # currency units off the item price
    OVERRIDE_PRICE = "OVERRIDE_PRICE"  # new price for the item


class ReasonCode(str, enum.Enum):
    """Business justifications for a markdown."""

    PRICE_MATCH = "PRICE_MATCH"
    DAMAGED_ITEM = "DAMAGED_ITEM"
    CUSTOMER_SERVICE = "CUSTOMER_SERVICE"
    BUNDLE_DEAL = "BUNDLE_DEAL"
    MANAGER_DISCRETION = "MANAGER_DISCRETION"
    LOYALTY_EXCEPTION = "LOYALTY_EXCEPTION"
    OVERRIDE = "OVERRIDE"  # admin override


class OverrideState(str, enum.Enum):
    """Lifecycle of the override workflow inside an authorization session."""

    BASE = "base"
    PENDING_OVERRIDE = "pending_override"
    ELEVATED = "elevated"


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, floats and strings to Decimal through their string form."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ════════════════════════════════════════════════════════════════
# Core Models
# ════════════════════════════════════════════════════════════════


class MarkdownLimit(BaseModel):
    """
    The discount authority of one permission tier.

    Immutable: a session replaces its effective limits wholesale rather
    than editing them.
    """

    model_config = ConfigDict(frozen=True)

    tier: PermissionTier
    max_percentage: Decimal = Field(ge=0, le=100, description="Percent cap (0-100)")
    max_fixed_amount: Decimal = Field(ge=0, description="Fixed amount cap in currency units")
    can_override_price: bool = False
    allowed_types: frozenset[MarkdownType] = Field(default_factory=frozenset)
    allowed_reasons: frozenset[ReasonCode] = Field(default_factory=frozenset)


class MarkdownInput(BaseModel):
    """
    A caller's markdown request.

    ``type``, ``value`` and ``reason`` may be missing so that a half-filled
    request can still be validated field by field. Only complete inputs
    can be submitted for override or applied.
    """

    line_id: str | None = Field(
        default=None, description="Line item identifier; None for a cart-level markdown"
    )
    type: MarkdownType | None = None
    value: Decimal | None = None
    reason: ReasonCode | None = None
    notes: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, v: Any) -> Any:
        if v is None or isinstance(v, (Decimal, str)):
            return v
        return to_decimal(v)

    @property
    def is_complete(self) -> bool:
        return (
            self.type is not None
            and self.reason is not None
            and self.value is not None
            and self.value > 0
        )


class ValidationResult(BaseModel):
    """Outcome of validating a markdown against a limit set."""

    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    requires_override: bool = False

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.errors and not self.requires_override


class DiscountOutcome(BaseModel):
    """A concrete discount: amount in currency units and percent of the price."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal
    percent: Decimal


class OverrideRequest(BaseModel):
    """Snapshot of a markdown that exceeded the session's limits."""

    input: MarkdownInput
    item_price: Decimal
    item_name: str = "Cart Total"
    token: UUID = Field(default_factory=uuid4)
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ManagerCredentials(BaseModel):
    """Credentials entered by the approving manager."""

    manager_id: str
    pin: SecretStr


class CredentialCheck(BaseModel):
    """Answer from a credential verifier."""

    valid: bool
    tier: PermissionTier | None = None
    approver_name: str | None = None


class OverrideResult(BaseModel):
    """Outcome of an override authorization attempt."""

    success: bool
    approver_id: str | None = None
    approver_name: str | None = None
    approver_tier: PermissionTier | None = None
    elevated_limits: MarkdownLimit | None = None
    covers_request: bool = Field(
        default=False,
        description="Whether the pending markdown fits inside the elevated limits",
    )
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> OverrideResult:
        return cls(success=False, error=error)


class MarkdownInfo(BaseModel):
    """An applied markdown, ready for the caller to post to its transaction."""

    id: UUID = Field(default_factory=uuid4)
    line_id: str | None = None
    type: MarkdownType
    value: Decimal
    reason: ReasonCode
    original_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    applied_by: str
    applied_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    authorized_by: str | None = None
    authorized_by_name: str | None = None
    notes: str | None = None


class MarkdownResult(BaseModel):
    """Outcome of applying a markdown through a session."""

    success: bool
    markdown: MarkdownInfo | None = None
    validation: ValidationResult | None = None
    error: str | None = None


# ════════════════════════════════════════════════════════════════
# Tier Policy Table
# ════════════════════════════════════════════════════════════════

_ALL_TYPES = frozenset(MarkdownType)
_BASIC_TYPES = frozenset({MarkdownType.PERCENTAGE, MarkdownType.FIXED_AMOUNT})

_ASSOCIATE_REASONS = frozenset({ReasonCode.PRICE_MATCH, ReasonCode.DAMAGED_ITEM})
_SUPERVISOR_REASONS = _ASSOCIATE_REASONS | {ReasonCode.CUSTOMER_SERVICE, ReasonCode.BUNDLE_DEAL}
_MANAGER_REASONS = _SUPERVISOR_REASONS | {
    ReasonCode.MANAGER_DISCRETION,
    ReasonCode.LOYALTY_EXCEPTION,
}

TIER_LIMITS: dict[PermissionTier, MarkdownLimit] = {
    PermissionTier.ASSOCIATE: MarkdownLimit(
        tier=PermissionTier.ASSOCIATE,
        max_percentage=Decimal("15"),
        max_fixed_amount=Decimal("50"),
        can_override_price=False,
        allowed_types=_BASIC_TYPES,
        allowed_reasons=_ASSOCIATE_REASONS,
    ),
    PermissionTier.SUPERVISOR: MarkdownLimit(
        tier=PermissionTier.SUPERVISOR,
        max_percentage=Decimal("25"),
        max_fixed_amount=Decimal("100"),
        can_override_price=False,
        allowed_types=_BASIC_TYPES,
        allowed_reasons=_SUPERVISOR_REASONS,
    ),
    PermissionTier.MANAGER: MarkdownLimit(
        tier=PermissionTier.MANAGER,
        max_percentage=Decimal("50"),
        max_fixed_amount=Decimal("500"),
        can_override_price=True,
        allowed_types=_ALL_TYPES,
        allowed_reasons=_MANAGER_REASONS,
    ),
    PermissionTier.ADMIN: MarkdownLimit(
        tier=PermissionTier.ADMIN,
        max_percentage=Decimal("100"),
        max_fixed_amount=Decimal("10000"),
        can_override_price=True,
        allowed_types=_ALL_TYPES,
        allowed_reasons=frozenset(ReasonCode),
    ),
}

REASON_MINIMUM_TIER: dict[ReasonCode, PermissionTier] = {
    ReasonCode.PRICE_MATCH: PermissionTier.ASSOCIATE,
    ReasonCode.DAMAGED_ITEM: PermissionTier.ASSOCIATE,
    ReasonCode.CUSTOMER_SERVICE: PermissionTier.SUPERVISOR,
    ReasonCode.BUNDLE_DEAL: PermissionTier.SUPERVISOR,
    ReasonCode.MANAGER_DISCRETION: PermissionTier.MANAGER,
    ReasonCode.LOYALTY_EXCEPTION: PermissionTier.MANAGER,
    ReasonCode.OVERRIDE: PermissionTier.ADMIN,
}

MARKDOWN_TYPE_LABELS: dict[MarkdownType, str] = {
    MarkdownType.PERCENTAGE: "Percentage Off",
    MarkdownType.FIXED_AMOUNT: "Fixed Amount Off",
    MarkdownType.OVERRIDE_PRICE: "Set Price",
}

MARKDOWN_REASON_LABELS: dict[ReasonCode, str] = {
    ReasonCode.PRICE_MATCH: "Price Match",
    ReasonCode.DAMAGED_ITEM: "Damaged Item",
    ReasonCode.CUSTOMER_SERVICE: "Customer Service",
    ReasonCode.BUNDLE_DEAL: "Bundle Deal",
    ReasonCode.MANAGER_DISCRETION: "Manager Discretion",
    ReasonCode.LOYALTY_EXCEPTION: "Loyalty Exception",
    ReasonCode.OVERRIDE: "Admin Override",
}


def limits_for(tier: PermissionTier) -> MarkdownLimit:
    """Return the markdown limits for a tier."""
    return TIER_LIMITS[PermissionTier(tier)]


def reason_minimum_tier(reason: ReasonCode) -> PermissionTier:
    """Return the lowest tier allowed to select a reason."""
    return REASON_MINIMUM_TIER[ReasonCode(reason)]


def reasons_for(tier: PermissionTier) -> list[ReasonCode]:
    """Reasons selectable at a tier, in declaration order."""
    tier = PermissionTier(tier)
    return [r for r in ReasonCode if REASON_MINIMUM_TIER[r] <= tier]
