"""
Authorization Session — per-transaction markdown authority state machine.

Each cart/transaction owns exactly one session. The session holds the
acting employee's tier (fixed for its lifetime), the limits currently in
force, and the override workflow:

    BASE ──request_override──▶ PENDING_OVERRIDE ──authorize_override──▶ ELEVATED
      ▲                          │        ▲  (failure: stays pending)      │
      └────────cancel_override───┘        └── request_override (replace)   │
      └──────────────────────────clear_elevation───────────────────────────┘

Elevation is not time-boxed. The owner must call ``clear_elevation()`` or
``close()`` when the transaction that needed it ends, so elevated
authority never leaks into the next transaction.

Concurrency: a session is accessed sequentially by its transaction. Only
``authorize_override`` suspends. While it is in flight a second
authorization is rejected and a new override request raises; a cancel or
close is always honoured and the late verifier answer is discarded.

Invalid transitions raise ``OverrideStateError``: they are caller bugs,
not business-rule violations.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any
from uuid import UUID

from markdown_authority.audit import AuditAction, MarkdownAuditLog
from markdown_authority.authorization.override import OverrideCoordinator
from markdown_authority.policy import calculations, validation
from markdown_authority.policy.schema import (
    DiscountOutcome,
    ManagerCredentials,
    MarkdownInfo,
    MarkdownInput,
    MarkdownLimit,
    MarkdownResult,
    MarkdownType,
    OverrideRequest,
    OverrideResult,
    OverrideState,
    PermissionTier,
    ReasonCode,
    ValidationResult,
    limits_for,
    to_decimal,
)

logger = logging.getLogger(__name__)

AUTHORIZATION_IN_PROGRESS = "authorization already in progress"
REQUEST_CANCELLED = "override request was cancelled"


class OverrideStateError(ValueError):
    """A session transition was called from a state that does not allow it."""


class OverrideInProgressError(OverrideStateError):
    """An override authorization is already in flight for this session."""


class AuthorizationSession:
    """
    Markdown authority for one transaction.

    Args:
        tier: The acting employee's tier, from the identity provider.
        coordinator: Performs manager credential checks.
        transaction_id: Identifier used in logs and audit entries.
        employee_id: The acting employee, stamped on applied markdowns.
        audit_log: Optional shared audit trail.
        default_item_name: Item name used for cart-level requests.
    """

    def __init__(
        self,
        tier: PermissionTier,
        coordinator: OverrideCoordinator,
        transaction_id: str | None = None,
        employee_id: str = "",
        audit_log: MarkdownAuditLog | None = None,
        default_item_name: str = "Cart Total",
    ) -> None:
        self._tier = PermissionTier(tier)
        self.coordinator = coordinator
        self.transaction_id = transaction_id
        self.employee_id = employee_id
        self.audit_log = audit_log
        self.default_item_name = default_item_name

        self._effective_limits: MarkdownLimit = limits_for(self._tier)
        self._pending: OverrideRequest | None = None
        self._approval: OverrideResult | None = None
        self._in_flight_token: UUID | None = None

    # ── State ──────────────────────────────────────────────────

    @property
    def tier(self) -> PermissionTier:
        return self._tier

    @property
    def state(self) -> OverrideState:
        if self._pending is not None:
            return OverrideState.PENDING_OVERRIDE
        if self._approval is not None:
            return OverrideState.ELEVATED
        return OverrideState.BASE

    @property
    def effective_limits(self) -> MarkdownLimit:
        return self._effective_limits

    @property
    def effective_tier(self) -> PermissionTier:
        return self._effective_limits.tier

    @property
    def base_limits(self) -> MarkdownLimit:
        return limits_for(self._tier)

    @property
    def pending_override(self) -> OverrideRequest | None:
        return self._pending

    @property
    def approval(self) -> OverrideResult | None:
        """The successful override currently in force, if any."""
        return self._approval

    @property
    def is_authorizing(self) -> bool:
        return self._in_flight_token is not None

    def get_effective_limits(self) -> MarkdownLimit:
        return self._effective_limits

    # ── Delegations to the policy functions ────────────────────

    def can_apply_type(self, markdown_type: MarkdownType) -> bool:
        return MarkdownType(markdown_type) in self._effective_limits.allowed_types

    def can_use_reason(self, reason: ReasonCode) -> bool:
        return ReasonCode(reason) in self._effective_limits.allowed_reasons

    def is_within_limit(self, markdown_type: MarkdownType, value: Any, item_price: Any) -> bool:
        return validation.is_within_limit(markdown_type, value, item_price, self._effective_limits)

    def max_discount(self, markdown_type: MarkdownType, item_price: Any) -> Decimal:
        return calculations.max_discount(markdown_type, item_price, self._effective_limits)

    def max_percentage(self) -> Decimal:
        return self._effective_limits.max_percentage

    def max_fixed_amount(self) -> Decimal:
        return self._effective_limits.max_fixed_amount

    def can_override_price(self) -> bool:
        return self._effective_limits.can_override_price

    def validate(self, markdown: MarkdownInput, item_price: Any) -> ValidationResult:
        return validation.validate(markdown, self._effective_limits, item_price)

    def calculate_discount(
        self, markdown_type: MarkdownType, value: Any, item_price: Any
    ) -> DiscountOutcome:
        return calculations.calculate_discount(markdown_type, value, item_price)

    # ── Override workflow ──────────────────────────────────────

    def request_override(
        self,
        markdown: MarkdownInput,
        item_price: Any,
        item_name: str | None = None,
    ) -> OverrideRequest:
        """
        Hold a markdown that exceeds the current limits for manager approval.

        Valid from BASE, and from PENDING_OVERRIDE where the new request
        replaces the old one (latest wins).

        Raises:
            OverrideInProgressError: An authorization is in flight.
            OverrideStateError: The session is already elevated.
            ValueError: The markdown is incomplete.
        """
        if self.is_authorizing:
            raise OverrideInProgressError(
                "Cannot request an override while an authorization is in progress"
            )
        if self.state == OverrideState.ELEVATED:
            raise OverrideStateError(
                "Session is already elevated; clear the elevation before requesting "
                "another override"
            )
        if not markdown.is_complete:
            raise ValueError("Override requests need a markdown type, a positive value and a reason")

        replaced = self._pending is not None
        self._pending = OverrideRequest(
            input=markdown,
            item_price=to_decimal(item_price),
            item_name=item_name or self.default_item_name,
        )

        logger.info(
            "Override requested: txn=%s tier=%s type=%s value=%s item='%s'%s",
            self.transaction_id,
            self._tier.value,
            markdown.type.value,
            markdown.value,
            self._pending.item_name[:80],
            " (replaced pending request)" if replaced else "",
        )
        self._audit(
            AuditAction.MARKDOWN_OVERRIDE_REQUESTED,
            f"Override requested for {markdown.value} {markdown.type.value} on "
            f"{self._pending.item_name}",
            markdown_type=markdown.type.value,
            requested_value=str(markdown.value),
            item_price=str(self._pending.item_price),
        )
        return self._pending

    def cancel_override(self) -> None:
        """
        Discard the pending request and return to BASE.

        Effective even while an authorization is in flight; its answer
        will be discarded.

        Raises:
            OverrideStateError: No override is pending.
        """
        if self._pending is None:
            raise OverrideStateError(
                f"No pending override to cancel (session is {self.state.value})"
            )

        request = self._pending
        self._pending = None
        logger.info(
            "Override cancelled: txn=%s%s",
            self.transaction_id,
            " (authorization in flight)" if self.is_authorizing else "",
        )
        self._audit(
            AuditAction.MARKDOWN_OVERRIDE_CANCELLED,
            f"Override request for {request.item_name} cancelled",
        )

    async def authorize_override(self, credentials: ManagerCredentials) -> OverrideResult:
        """
        Check a manager's credentials against the pending request.

        On success the session moves to ELEVATED with the approver's tier
        limits. On failure it stays in PENDING_OVERRIDE with limits
        untouched, so the caller can retry.

        Raises:
            OverrideStateError: No override is pending.
        """
        if self._pending is None:
            raise OverrideStateError(
                f"No pending override to authorize (session is {self.state.value})"
            )
        if self.is_authorizing:
            logger.warning("Override authorization rejected: txn=%s already authorizing",
                           self.transaction_id)
            return OverrideResult.failure(AUTHORIZATION_IN_PROGRESS)

        request = self._pending
        token = request.token
        self._in_flight_token = token
        try:
            result = await self.coordinator.authorize(credentials, request, self.effective_tier)
        finally:
            if self._in_flight_token == token:
                self._in_flight_token = None

        # Stale-response guard: the request was cancelled, replaced or closed
        if self._pending is None or self._pending.token != token:
            logger.info(
                "Discarding override answer for txn=%s: request no longer pending",
                self.transaction_id,
            )
            return OverrideResult.failure(REQUEST_CANCELLED)

        if not result.success:
            self._audit(
                AuditAction.MARKDOWN_OVERRIDE_DENIED,
                f"Markdown override denied for {request.input.value} "
                f"{request.input.type.value}: {result.error}",
                authorized_by=result.approver_id,
                requested_value=str(request.input.value),
            )
            return result

        previous = self._effective_limits
        self._effective_limits = result.elevated_limits
        self._approval = result
        self._pending = None

        logger.info(
            "Session elevated: txn=%s %s -> %s by %s",
            self.transaction_id,
            previous.tier.value,
            self._effective_limits.tier.value,
            result.approver_id,
        )
        self._audit(
            AuditAction.MARKDOWN_OVERRIDE_APPROVED,
            f"Markdown override approved for {request.input.value} "
            f"{request.input.type.value}",
            authorized_by=result.approver_id,
            requested_value=str(request.input.value),
            approver_tier=result.approver_tier.value,
            covers_request=result.covers_request,
        )
        return result

    def clear_elevation(self) -> None:
        """
        Drop elevated limits and return to BASE. A no-op in BASE.

        Raises:
            OverrideStateError: An override is pending.
        """
        state = self.state
        if state == OverrideState.BASE:
            return
        if state == OverrideState.PENDING_OVERRIDE:
            raise OverrideStateError("Cannot clear elevation while an override is pending")

        approver = self._approval.approver_id if self._approval else None
        self._effective_limits = self.base_limits
        self._approval = None
        logger.info("Elevation cleared: txn=%s back to %s", self.transaction_id, self._tier.value)
        self._audit(
            AuditAction.ELEVATION_CLEARED,
            f"Elevation cleared, limits reset to {self._tier.value}",
            authorized_by=approver,
        )

    def close(self) -> None:
        """End of transaction: drop any pending request and elevation."""
        if self._pending is not None:
            self.cancel_override()
        if self.state == OverrideState.ELEVATED:
            self.clear_elevation()
        self._in_flight_token = None
        logger.info("Authorization session closed: txn=%s", self.transaction_id)

    # ── Applying markdowns ─────────────────────────────────────

    def apply_markdown(
        self,
        markdown: MarkdownInput,
        item_price: Any,
        item_name: str | None = None,
        applied_by: str | None = None,
    ) -> MarkdownResult:
        """
        Validate a markdown against the effective limits and build its record.

        The record is stamped with the override approver while the session
        is elevated. Posting it to the transaction is the caller's job.
        """
        price = to_decimal(item_price)
        result = self.validate(markdown, price)
        if not result.is_valid:
            error = (
                "manager override required"
                if result.requires_override and not result.errors
                else "; ".join(result.errors)
            )
            return MarkdownResult(success=False, validation=result, error=error)

        outcome = calculations.calculate_discount(markdown.type, markdown.value, price)
        info = MarkdownInfo(
            line_id=markdown.line_id,
            type=markdown.type,
            value=markdown.value,
            reason=markdown.reason,
            original_price=price,
            discount_amount=outcome.amount,
            final_price=calculations.final_price(markdown.type, markdown.value, price),
            applied_by=applied_by or self.employee_id,
            authorized_by=self._approval.approver_id if self._approval else None,
            authorized_by_name=self._approval.approver_name if self._approval else None,
            notes=markdown.notes,
        )

        name = item_name or self.default_item_name
        self._audit(
            AuditAction.MARKDOWN_APPLIED,
            f"Applied {markdown.value}"
            f"{'%' if markdown.type == MarkdownType.PERCENTAGE else ''} markdown to {name}",
            authorized_by=info.authorized_by,
            markdown_type=markdown.type.value,
            value=str(markdown.value),
            discount_amount=str(outcome.amount),
        )
        return MarkdownResult(success=True, markdown=info, validation=result)

    def _audit(self, action: AuditAction, description: str, authorized_by: str | None = None,
               **details: Any) -> None:
        if self.audit_log is None:
            return
        self.audit_log.record(
            action,
            description,
            transaction_id=self.transaction_id,
            actor_tier=self._tier.value,
            authorized_by=authorized_by,
            **details,
        )
