"""
Tests for the Authorization Session state machine.

Validates:
- Lifecycle (base → pending → elevated → base)
- Manager override scenarios end-to-end
- Monotonic elevation and idempotent clearing
- In-flight authorization guard and stale-response discard
- Applied markdown records and the audit trail
"""

from __future__ import annotations

import asyncio

import pytest

from markdown_authority.audit import AuditAction, MarkdownAuditLog
from markdown_authority.authorization.override import INVALID_CREDENTIALS, OverrideCoordinator
from markdown_authority.authorization.session import (
    AUTHORIZATION_IN_PROGRESS,
    REQUEST_CANCELLED,
    AuthorizationSession,
    OverrideInProgressError,
    OverrideStateError,
)
from markdown_authority.integrations.credentials import InMemoryCredentialVerifier, RosterEntry
from markdown_authority.policy.calculations import final_price
from markdown_authority.policy.schema import (
    CredentialCheck,
    ManagerCredentials,
    MarkdownInput,
    MarkdownType,
    OverrideState,
    PermissionTier,
    ReasonCode,
    limits_for,
)

ROSTER = [
    RosterEntry("SUP-1001", "1111", PermissionTier.SUPERVISOR, "Sam Supervisor"),
    RosterEntry("MGR-2002", "2222", PermissionTier.MANAGER, "Morgan Manager"),
    RosterEntry("ADM-3003", "3333", PermissionTier.ADMIN, "Alex Admin"),
]

MANAGER = ManagerCredentials(manager_id="MGR-2002", pin="2222")
SUPERVISOR = ManagerCredentials(manager_id="SUP-1001", pin="1111")
ADMIN = ManagerCredentials(manager_id="ADM-3003", pin="3333")
WRONG_PIN = ManagerCredentials(manager_id="MGR-2002", pin="0000")


class GatedVerifier:
    """Verifier that blocks until the test releases it."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def verify_credentials(self, manager_id: str, secret: str) -> CredentialCheck:
        self.started.set()
        await self.release.wait()
        return CredentialCheck(valid=True, tier=PermissionTier.MANAGER, approver_name="Gated")


def _markdown(value=30, markdown_type=MarkdownType.PERCENTAGE, reason=ReasonCode.PRICE_MATCH):
    return MarkdownInput(line_id="L1", type=markdown_type, value=value, reason=reason)


class TestSessionBasics:
    def setup_method(self):
        self.coordinator = OverrideCoordinator(InMemoryCredentialVerifier(ROSTER))
        self.session = AuthorizationSession(
            PermissionTier.ASSOCIATE, self.coordinator, transaction_id="TXN-1"
        )

    def test_starts_in_base_with_tier_limits(self):
        assert self.session.state == OverrideState.BASE
        assert self.session.get_effective_limits() == limits_for(PermissionTier.ASSOCIATE)
        assert self.session.pending_override is None
        assert not self.session.is_authorizing

    def test_delegations_use_effective_limits(self):
        assert self.session.can_apply_type(MarkdownType.PERCENTAGE)
        assert not self.session.can_apply_type(MarkdownType.OVERRIDE_PRICE)
        assert self.session.can_use_reason(ReasonCode.DAMAGED_ITEM)
        assert not self.session.can_use_reason(ReasonCode.BUNDLE_DEAL)
        assert self.session.is_within_limit(MarkdownType.PERCENTAGE, 15, 100)
        assert not self.session.is_within_limit(MarkdownType.PERCENTAGE, 16, 100)
        assert self.session.max_percentage() == 15
        assert self.session.max_fixed_amount() == 50
        assert not self.session.can_override_price()
        assert self.session.max_discount(MarkdownType.FIXED_AMOUNT, 100) == 50

    def test_calculate_discount(self):
        result = self.session.calculate_discount(MarkdownType.FIXED_AMOUNT, 150, 100)
        assert result.amount == 100
        assert result.percent == 100

    def test_request_override_moves_to_pending(self):
        request = self.session.request_override(_markdown(), 50, "Denim Jacket")
        assert self.session.state == OverrideState.PENDING_OVERRIDE
        assert self.session.pending_override is request
        assert request.item_name == "Denim Jacket"
        assert request.item_price == 50

    def test_cart_level_request_gets_default_name(self):
        cart_markdown = MarkdownInput(type="FIXED_AMOUNT", value=80, reason="DAMAGED_ITEM")
        request = self.session.request_override(cart_markdown, 300)
        assert request.item_name == "Cart Total"
        assert request.input.line_id is None

    def test_latest_request_wins(self):
        first = self.session.request_override(_markdown(value=30), 50)
        second = self.session.request_override(_markdown(value=40), 50)
        assert self.session.pending_override is second
        assert first.token != second.token
        assert self.session.state == OverrideState.PENDING_OVERRIDE

    def test_incomplete_markdown_cannot_be_submitted(self):
        with pytest.raises(ValueError):
            self.session.request_override(MarkdownInput(type="PERCENTAGE", value=30), 50)
        assert self.session.state == OverrideState.BASE

    def test_cancel_returns_to_base(self):
        self.session.request_override(_markdown(), 50)
        self.session.cancel_override()
        assert self.session.state == OverrideState.BASE
        assert self.session.pending_override is None

    def test_cancel_without_pending_raises(self):
        with pytest.raises(OverrideStateError):
            self.session.cancel_override()

    def test_authorize_without_pending_raises(self):
        with pytest.raises(OverrideStateError):
            asyncio.run(self.session.authorize_override(MANAGER))

    def test_clear_elevation_in_base_is_noop(self):
        self.session.clear_elevation()
        self.session.clear_elevation()
        assert self.session.state == OverrideState.BASE
        assert self.session.effective_limits == limits_for(PermissionTier.ASSOCIATE)

    def test_clear_elevation_while_pending_raises(self):
        self.session.request_override(_markdown(), 50)
        with pytest.raises(OverrideStateError):
            self.session.clear_elevation()

    def test_tier_is_fixed(self):
        with pytest.raises(AttributeError):
            self.session.tier = PermissionTier.ADMIN


class TestOverrideScenarios:
    def setup_method(self):
        self.coordinator = OverrideCoordinator(InMemoryCredentialVerifier(ROSTER))
        self.session = AuthorizationSession(
            PermissionTier.ASSOCIATE, self.coordinator, transaction_id="TXN-2"
        )

    def test_associate_markdown_elevated_by_manager(self):
        """30% on a $50 item: override required, manager approves, re-validation passes."""
        markdown = _markdown(value=30)
        first = self.session.validate(markdown, 50)
        assert first.requires_override
        assert not first.is_valid

        self.session.request_override(markdown, 50, "Denim Jacket")
        assert self.session.state == OverrideState.PENDING_OVERRIDE

        result = asyncio.run(self.session.authorize_override(MANAGER))
        assert result.success
        assert result.elevated_limits.max_percentage == 50
        assert self.session.state == OverrideState.ELEVATED
        assert self.session.pending_override is None
        assert self.session.effective_tier == PermissionTier.MANAGER

        assert self.session.validate(markdown, 50).is_valid

    def test_invalid_credentials_keep_request_pending(self):
        self.session.request_override(_markdown(value=30), 50)
        before = self.session.effective_limits

        result = asyncio.run(self.session.authorize_override(WRONG_PIN))
        assert not result.success
        assert result.error == INVALID_CREDENTIALS
        assert self.session.state == OverrideState.PENDING_OVERRIDE
        assert self.session.effective_limits == before

        # Retry without re-entering the markdown
        retry = asyncio.run(self.session.authorize_override(MANAGER))
        assert retry.success
        assert self.session.state == OverrideState.ELEVATED

    def test_supervisor_approval_requires_revalidation(self):
        markdown = _markdown(value=90)
        self.session.request_override(markdown, 100)
        result = asyncio.run(self.session.authorize_override(SUPERVISOR))
        assert result.success
        assert not result.covers_request
        assert self.session.state == OverrideState.ELEVATED
        assert self.session.validate(markdown, 100).requires_override

    def test_clear_elevation_restores_base_limits(self):
        self.session.request_override(_markdown(), 50)
        asyncio.run(self.session.authorize_override(ADMIN))
        assert self.session.effective_limits.max_percentage == 100

        self.session.clear_elevation()
        assert self.session.state == OverrideState.BASE
        assert self.session.effective_limits == limits_for(PermissionTier.ASSOCIATE)
        self.session.clear_elevation()
        assert self.session.state == OverrideState.BASE

    def test_request_while_elevated_raises(self):
        self.session.request_override(_markdown(), 50)
        asyncio.run(self.session.authorize_override(SUPERVISOR))
        with pytest.raises(OverrideStateError):
            self.session.request_override(_markdown(value=90), 100)

    def test_close_resets_everything(self):
        self.session.request_override(_markdown(), 50)
        asyncio.run(self.session.authorize_override(MANAGER))
        self.session.close()
        assert self.session.state == OverrideState.BASE
        assert self.session.effective_limits == limits_for(PermissionTier.ASSOCIATE)


class TestMonotonicElevation:
    @pytest.mark.parametrize("session_tier", list(PermissionTier))
    @pytest.mark.parametrize("credentials", [SUPERVISOR, MANAGER, ADMIN])
    def test_success_never_lowers_authority(self, session_tier, credentials):
        coordinator = OverrideCoordinator(InMemoryCredentialVerifier(ROSTER))
        session = AuthorizationSession(session_tier, coordinator)
        before = session.effective_limits.max_percentage

        session.request_override(_markdown(value=99), 100)
        result = asyncio.run(session.authorize_override(credentials))

        if result.success:
            assert session.effective_limits.max_percentage >= before
            assert session.effective_tier > session_tier
        else:
            assert session.effective_limits.max_percentage == before
            assert session.state == OverrideState.PENDING_OVERRIDE


class TestConcurrentAuthorization:
    def test_second_authorization_rejected_while_in_flight(self):
        async def scenario():
            verifier = GatedVerifier()
            session = AuthorizationSession(PermissionTier.ASSOCIATE, OverrideCoordinator(verifier))
            session.request_override(_markdown(), 50)

            first = asyncio.create_task(session.authorize_override(MANAGER))
            await verifier.started.wait()
            assert session.is_authorizing

            second = await session.authorize_override(MANAGER)
            assert not second.success
            assert second.error == AUTHORIZATION_IN_PROGRESS

            with pytest.raises(OverrideInProgressError):
                session.request_override(_markdown(value=40), 50)

            verifier.release.set()
            result = await first
            return session, result

        session, result = asyncio.run(scenario())
        assert result.success
        assert session.state == OverrideState.ELEVATED
        assert not session.is_authorizing

    def test_cancel_during_flight_discards_answer(self):
        async def scenario():
            verifier = GatedVerifier()
            session = AuthorizationSession(PermissionTier.ASSOCIATE, OverrideCoordinator(verifier))
            session.request_override(_markdown(), 50)

            task = asyncio.create_task(session.authorize_override(MANAGER))
            await verifier.started.wait()
            session.cancel_override()
            verifier.release.set()
            return session, await task

        session, result = asyncio.run(scenario())
        assert not result.success
        assert result.error == REQUEST_CANCELLED
        assert session.state == OverrideState.BASE
        assert session.effective_limits == limits_for(PermissionTier.ASSOCIATE)
        assert not session.is_authorizing

    def test_close_during_flight_discards_answer(self):
        async def scenario():
            verifier = GatedVerifier()
            session = AuthorizationSession(PermissionTier.ASSOCIATE, OverrideCoordinator(verifier))
            session.request_override(_markdown(), 50)

            task = asyncio.create_task(session.authorize_override(MANAGER))
            await verifier.started.wait()
            session.close()
            verifier.release.set()
            return session, await task

        session, result = asyncio.run(scenario())
        assert result.error == REQUEST_CANCELLED
        assert session.state == OverrideState.BASE


class TestApplyMarkdown:
    def setup_method(self):
        self.audit_log = MarkdownAuditLog()
        self.session = AuthorizationSession(
            PermissionTier.ASSOCIATE,
            OverrideCoordinator(InMemoryCredentialVerifier(ROSTER)),
            transaction_id="TXN-3",
            employee_id="EMP-42",
            audit_log=self.audit_log,
        )

    def test_apply_within_limits(self):
        result = self.session.apply_markdown(_markdown(value=10), 80, "Sneakers")
        assert result.success
        info = result.markdown
        assert info.discount_amount == 8
        assert info.final_price == 72
        assert info.original_price == 80
        assert info.applied_by == "EMP-42"
        assert info.authorized_by is None
        assert info.line_id == "L1"

    def test_applied_final_price_matches_calculator(self):
        manager = AuthorizationSession(
            PermissionTier.MANAGER, OverrideCoordinator(InMemoryCredentialVerifier(ROSTER))
        )
        cases = [
            (MarkdownType.FIXED_AMOUNT, 40, 35),
            (MarkdownType.OVERRIDE_PRICE, 60, 100),
            (MarkdownType.OVERRIDE_PRICE, 120, 100),
        ]
        for markdown_type, value, price in cases:
            result = manager.apply_markdown(_markdown(value=value, markdown_type=markdown_type), price)
            assert result.success, result.error
            assert result.markdown.final_price == final_price(markdown_type, value, price)
            assert 0 <= result.markdown.final_price <= price

    def test_apply_over_limit_refused(self):
        result = self.session.apply_markdown(_markdown(value=30), 50)
        assert not result.success
        assert result.error == "manager override required"
        assert result.validation.requires_override

    def test_apply_invalid_reports_errors(self):
        result = self.session.apply_markdown(_markdown(reason=ReasonCode.OVERRIDE, value=5), 50)
        assert not result.success
        assert "OVERRIDE is not allowed" in result.error

    def test_apply_after_override_stamps_approver(self):
        markdown = _markdown(value=30)
        self.session.request_override(markdown, 50, "Denim Jacket")
        asyncio.run(self.session.authorize_override(MANAGER))

        result = self.session.apply_markdown(markdown, 50, "Denim Jacket")
        assert result.success
        assert result.markdown.discount_amount == 15
        assert result.markdown.authorized_by == "MGR-2002"
        assert result.markdown.authorized_by_name == "Morgan Manager"

    def test_audit_trail(self):
        markdown = _markdown(value=30)
        self.session.request_override(markdown, 50)
        asyncio.run(self.session.authorize_override(WRONG_PIN))
        asyncio.run(self.session.authorize_override(MANAGER))
        self.session.apply_markdown(markdown, 50)
        self.session.clear_elevation()

        actions = [e.action for e in self.audit_log.entries("TXN-3")]
        assert actions == [
            AuditAction.MARKDOWN_OVERRIDE_REQUESTED,
            AuditAction.MARKDOWN_OVERRIDE_DENIED,
            AuditAction.MARKDOWN_OVERRIDE_APPROVED,
            AuditAction.MARKDOWN_APPLIED,
            AuditAction.ELEVATION_CLEARED,
        ]
        approved = self.audit_log.entries("TXN-3")[2]
        assert approved.authorized_by == "MGR-2002"
        assert approved.actor_tier == "ASSOCIATE"
        assert self.audit_log.entries("OTHER") == []

    def test_pin_never_in_audit(self):
        self.session.request_override(_markdown(), 50)
        asyncio.run(self.session.authorize_override(MANAGER))
        dumped = " ".join(
            e.model_dump_json(exclude={"id", "timestamp"}) for e in self.audit_log.entries()
        )
        assert "2222" not in dumped
