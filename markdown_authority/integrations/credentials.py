"""
Markdown Authority — manager credential verification.

The override workflow treats credential checking as an injected async
collaborator. Two implementations are provided:

- ``InMemoryCredentialVerifier``: a roster lookup with an optional
  simulated delay, for tests and single-register deployments
- ``HttpCredentialVerifier``: an async httpx client for an auth service

Both answer with a ``CredentialCheck``. A rejected credential is an
answer, not an error; transport problems raise.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from pydantic import ValidationError

from markdown_authority.policy.schema import CredentialCheck, PermissionTier

logger = logging.getLogger(__name__)


class CredentialVerifierError(Exception):
    """The credential verifier could not produce an answer."""


class CredentialVerifier(Protocol):
    async def verify_credentials(self, manager_id: str, secret: str) -> CredentialCheck:
        ...


@dataclass(frozen=True)
class RosterEntry:
    manager_id: str
    pin: str
    tier: PermissionTier
    name: str = ""


class InMemoryCredentialVerifier:
    """Roster-backed verifier."""

    def __init__(
        self,
        roster: list[RosterEntry] | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self._roster = {entry.manager_id: entry for entry in roster or []}
        self.delay_seconds = delay_seconds

    def add(self, entry: RosterEntry) -> None:
        self._roster[entry.manager_id] = entry

    async def verify_credentials(self, manager_id: str, secret: str) -> CredentialCheck:
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        entry = self._roster.get(manager_id)
        if entry is None or not hmac.compare_digest(entry.pin.encode(), secret.encode()):
            logger.info("Credential rejected: manager=%s", manager_id)
            return CredentialCheck(valid=False)

        return CredentialCheck(
            valid=True,
            tier=entry.tier,
            approver_name=entry.name or None,
        )


class HttpCredentialVerifier:
    """
    Async credential client for an auth service.

    ``POST /v1/credentials/verify`` with ``{"managerId", "pin"}``; the
    service answers ``{"valid": bool, "tier": str, "name": str}``. A 401 or
    403 is a rejection. Any other failure, including a body that is not a
    JSON object, raises.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def verify_credentials(self, manager_id: str, secret: str) -> CredentialCheck:
        client = await self._ensure_client()
        resp = await client.post(
            "/v1/credentials/verify",
            json={"managerId": manager_id, "pin": secret},
        )
        if resp.status_code in (401, 403):
            return CredentialCheck(valid=False)
        resp.raise_for_status()

        try:
            data = resp.json()
            valid = bool(data.get("valid"))
        except (ValueError, AttributeError) as exc:
            content_type = resp.headers.get("content-type", "unknown")
            raise CredentialVerifierError(
                f"Verifier returned a malformed response ({content_type})"
            ) from exc
        if not valid:
            return CredentialCheck(valid=False)

        try:
            tier = PermissionTier(data.get("tier"))
        except ValueError as exc:
            raise CredentialVerifierError(
                f"Verifier returned an unknown tier: {data.get('tier')!r}"
            ) from exc

        try:
            return CredentialCheck(valid=True, tier=tier, approver_name=data.get("name"))
        except ValidationError as exc:
            raise CredentialVerifierError(f"Verifier returned a malformed approver: {exc}") from exc
