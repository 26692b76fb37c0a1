"""
Markdown Authority — HTTP service.

FastAPI application exposing the markdown engine to register clients:
- Tier policy table and discount calculation (stateless)
- One authorization session per open transaction
- Override request / authorize / cancel and elevation clearing
- Per-transaction audit trail

Sessions live in memory for the lifetime of their transaction and are
discarded on ``DELETE /api/sessions/{transaction_id}``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, SecretStr

from markdown_authority.audit import MarkdownAuditLog
from markdown_authority.authorization.override import OverrideCoordinator
from markdown_authority.authorization.session import AuthorizationSession, OverrideStateError
from markdown_authority.config import settings
from markdown_authority.integrations.credentials import (
    CredentialVerifier,
    HttpCredentialVerifier,
    InMemoryCredentialVerifier,
)
from markdown_authority.logging_config import configure_logging
from markdown_authority.policy.calculations import calculate_discount
from markdown_authority.policy.schema import (
    ManagerCredentials,
    MarkdownInput,
    MarkdownType,
    PermissionTier,
    ReasonCode,
    TIER_LIMITS,
    reason_minimum_tier,
)

logger = logging.getLogger(__name__)


# ── Pydantic request / response models ────────────────────────


class OpenSessionRequest(BaseModel):
    transaction_id: str
    tier: PermissionTier
    employee_id: str = ""


class CalculateRequest(BaseModel):
    type: MarkdownType
    value: Decimal
    item_price: Decimal


class MarkdownRequestBody(BaseModel):
    input: MarkdownInput
    item_price: Decimal
    item_name: str | None = None


class AuthorizeRequest(BaseModel):
    manager_id: str
    pin: SecretStr


class SessionRegistry:
    """Open authorization sessions keyed by transaction ID."""

    def __init__(self, coordinator: OverrideCoordinator, audit_log: MarkdownAuditLog) -> None:
        self.coordinator = coordinator
        self.audit_log = audit_log
        self._sessions: dict[str, AuthorizationSession] = {}

    def open(self, transaction_id: str, tier: PermissionTier, employee_id: str = "") -> AuthorizationSession:
        if transaction_id in self._sessions:
            raise OverrideStateError(f"Transaction {transaction_id} already has a session")
        session = AuthorizationSession(
            tier=tier,
            coordinator=self.coordinator,
            transaction_id=transaction_id,
            employee_id=employee_id,
            audit_log=self.audit_log,
            default_item_name=settings.default_item_name,
        )
        self._sessions[transaction_id] = session
        logger.info("Session opened: txn=%s tier=%s", transaction_id, tier.value)
        return session

    def get(self, transaction_id: str) -> AuthorizationSession:
        return self._sessions[transaction_id]

    def close(self, transaction_id: str) -> None:
        session = self._sessions.pop(transaction_id)
        session.close()

    def __len__(self) -> int:
        return len(self._sessions)


def build_verifier() -> CredentialVerifier:
    """HTTP verifier when a credential service is configured, else the configured roster."""
    if settings.credential_service_url:
        return HttpCredentialVerifier(
            base_url=settings.credential_service_url,
            api_token=settings.credential_service_token,
            timeout=settings.credential_timeout_seconds,
        )
    if not settings.manager_roster:
        logger.warning(
            "No credential service or manager roster configured; overrides will be denied"
        )
    return InMemoryCredentialVerifier(
        roster=settings.manager_roster,
        delay_seconds=settings.mock_verifier_delay_seconds,
    )


def build_registry(verifier: CredentialVerifier) -> SessionRegistry:
    coordinator = OverrideCoordinator(
        verifier,
        timeout_seconds=settings.credential_timeout_seconds,
        min_credential_length=settings.credential_min_length,
    )
    return SessionRegistry(coordinator, MarkdownAuditLog())


class ServiceState:
    """Mutable application state injected at startup."""

    def __init__(self) -> None:
        self.registry: SessionRegistry | None = None
        self.verifier: CredentialVerifier | None = None
        self.startup_time: datetime = datetime.now(timezone.utc)


state = ServiceState()


# ── Application lifecycle ──────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup & shutdown lifecycle — wire the credential verifier."""
    configure_logging()
    if state.registry is None:
        state.verifier = build_verifier()
        state.registry = build_registry(state.verifier)
    logger.info("Markdown authority service starting")
    yield
    if isinstance(state.verifier, HttpCredentialVerifier):
        await state.verifier.close()
    logger.info("Markdown authority service stopped")


app = FastAPI(title="Markdown Authority", lifespan=lifespan)


@app.exception_handler(OverrideStateError)
async def override_state_error(request: Request, exc: OverrideStateError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def _registry() -> SessionRegistry:
    if state.registry is None:
        raise HTTPException(status_code=503, detail="Session registry not initialized")
    return state.registry


def _session(transaction_id: str) -> AuthorizationSession:
    try:
        return _registry().get(transaction_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No session for transaction {transaction_id}")


def _session_view(session: AuthorizationSession) -> dict[str, Any]:
    return {
        "transaction_id": session.transaction_id,
        "tier": session.tier.value,
        "state": session.state.value,
        "authorizing": session.is_authorizing,
        "effective_limits": session.effective_limits.model_dump(mode="json"),
        "pending_override": (
            session.pending_override.model_dump(mode="json")
            if session.pending_override
            else None
        ),
    }


# ── Policy ─────────────────────────────────────────────────────


@app.get("/api/tiers")
async def api_tiers():
    return {
        "tiers": [limits.model_dump(mode="json") for limits in TIER_LIMITS.values()],
        "reason_minimum_tier": {
            reason.value: reason_minimum_tier(reason).value
            for reason in ReasonCode
        },
    }


@app.post("/api/calculate")
async def api_calculate(req: CalculateRequest):
    return calculate_discount(req.type, req.value, req.item_price).model_dump(mode="json")


# ── Sessions ───────────────────────────────────────────────────


@app.post("/api/sessions", status_code=201)
async def api_open_session(req: OpenSessionRequest):
    session = _registry().open(req.transaction_id, req.tier, req.employee_id)
    return _session_view(session)


@app.get("/api/sessions/{transaction_id}")
async def api_get_session(transaction_id: str):
    return _session_view(_session(transaction_id))


@app.delete("/api/sessions/{transaction_id}")
async def api_close_session(transaction_id: str):
    _session(transaction_id)
    _registry().close(transaction_id)
    return {"closed": transaction_id}


@app.post("/api/sessions/{transaction_id}/validate")
async def api_validate(transaction_id: str, req: MarkdownRequestBody):
    session = _session(transaction_id)
    return session.validate(req.input, req.item_price).model_dump(mode="json")


@app.post("/api/sessions/{transaction_id}/markdowns")
async def api_apply_markdown(transaction_id: str, req: MarkdownRequestBody):
    session = _session(transaction_id)
    result = session.apply_markdown(req.input, req.item_price, req.item_name)
    return result.model_dump(mode="json")


# ── Override workflow ──────────────────────────────────────────


@app.post("/api/sessions/{transaction_id}/override/request")
async def api_request_override(transaction_id: str, req: MarkdownRequestBody):
    session = _session(transaction_id)
    try:
        session.request_override(req.input, req.item_price, req.item_name)
    except OverrideStateError:
        raise
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return _session_view(session)


@app.post("/api/sessions/{transaction_id}/override/authorize")
async def api_authorize_override(transaction_id: str, req: AuthorizeRequest):
    session = _session(transaction_id)
    result = await session.authorize_override(
        ManagerCredentials(manager_id=req.manager_id, pin=req.pin)
    )
    return result.model_dump(mode="json")


@app.post("/api/sessions/{transaction_id}/override/cancel")
async def api_cancel_override(transaction_id: str):
    session = _session(transaction_id)
    session.cancel_override()
    return _session_view(session)


@app.post("/api/sessions/{transaction_id}/elevation/clear")
async def api_clear_elevation(transaction_id: str):
    session = _session(transaction_id)
    session.clear_elevation()
    return _session_view(session)


@app.get("/api/sessions/{transaction_id}/audit")
async def api_session_audit(transaction_id: str):
    _session(transaction_id)
    return [e.model_dump(mode="json") for e in _registry().audit_log.entries(transaction_id)]


@app.get("/health")
async def health():
    registry = state.registry
    return {
        "status": "ok",
        "open_sessions": len(registry) if registry else 0,
        "uptime_seconds": (datetime.now(timezone.utc) - state.startup_time).total_seconds(),
    }

