"""
Override Coordinator — manager credential check and elevation decision.

When a markdown exceeds the acting employee's authority, a second party
(a supervisor, manager or admin) enters credentials. The coordinator asks
the injected credential verifier, and on success grants the approver's
own tier limits. It never grants arbitrary limits and never more than
ADMIN.

Elevation is monotonic: an approver whose tier does not exceed the
session's current authority cannot elevate it.

Credential failures are returned as ``OverrideResult.error`` strings,
never raised, so the caller may retry without re-entering the markdown.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from markdown_authority.integrations.credentials import (
    CredentialVerifier,
    CredentialVerifierError,
)
from markdown_authority.policy.schema import (
    ManagerCredentials,
    MarkdownLimit,
    OverrideRequest,
    OverrideResult,
    PermissionTier,
    limits_for,
)
from markdown_authority.policy.validation import is_within_limit

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "invalid credentials"
INSUFFICIENT_AUTHORITY = "approver does not have authority above the current limits"


def request_fits(request: OverrideRequest, limits: MarkdownLimit) -> bool:
    """Whether a pending markdown is fully authorized by a limit set."""
    markdown = request.input
    if not markdown.is_complete:
        return False
    return (
        markdown.type in limits.allowed_types
        and markdown.reason in limits.allowed_reasons
        and is_within_limit(markdown.type, markdown.value, request.item_price, limits)
    )


class OverrideCoordinator:
    """
    Turns a credential check into an elevation or a rejection.

    Stateless across calls; the authorization session owns the workflow
    state and the stale-response guard.
    """

    def __init__(
        self,
        verifier: CredentialVerifier,
        timeout_seconds: float = 5.0,
        min_credential_length: int = 4,
    ) -> None:
        """
        Args:
            verifier: Async credential verifier collaborator.
            timeout_seconds: Upper bound on one verifier call.
            min_credential_length: Shorter IDs or PINs are rejected without
                calling the verifier.
        """
        self.verifier = verifier
        self.timeout_seconds = timeout_seconds
        self.min_credential_length = min_credential_length

    async def authorize(
        self,
        credentials: ManagerCredentials,
        request: OverrideRequest,
        current_tier: PermissionTier,
    ) -> OverrideResult:
        """
        Verify credentials and decide the elevation.

        Args:
            credentials: The approver's ID and PIN.
            request: The pending override request.
            current_tier: Tier of the session's current effective limits.

        Returns:
            OverrideResult. On success ``elevated_limits`` are the approver's
            tier limits and ``covers_request`` says whether the original
            markdown now fits; when it does not, the caller must re-validate.
        """
        manager_id = credentials.manager_id.strip()
        pin = credentials.pin.get_secret_value()

        if (
            len(manager_id) < self.min_credential_length
            or len(pin) < self.min_credential_length
        ):
            logger.info("Override rejected before verification: malformed credentials")
            return OverrideResult.failure(INVALID_CREDENTIALS)

        try:
            check = await asyncio.wait_for(
                self.verifier.verify_credentials(manager_id, pin),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, TimeoutError):
            logger.warning(
                "Credential verifier timed out after %.1fs (manager=%s)",
                self.timeout_seconds, manager_id,
            )
            return OverrideResult.failure(
                f"credential verifier unavailable: timed out after {self.timeout_seconds}s"
            )
        except (httpx.HTTPError, CredentialVerifierError, OSError) as exc:
            logger.warning("Credential verifier failed (manager=%s): %s", manager_id, exc)
            return OverrideResult.failure(f"credential verifier unavailable: {exc}")

        if not check.valid or check.tier is None:
            logger.info("Override denied: invalid credentials (manager=%s)", manager_id)
            return OverrideResult.failure(INVALID_CREDENTIALS)

        if check.tier <= current_tier:
            logger.info(
                "Override denied: approver tier %s does not exceed %s (manager=%s)",
                check.tier.value, current_tier.value, manager_id,
            )
            return OverrideResult(
                success=False,
                approver_id=manager_id,
                approver_name=check.approver_name,
                approver_tier=check.tier,
                error=INSUFFICIENT_AUTHORITY,
            )

        elevated = limits_for(check.tier)
        covers = request_fits(request, elevated)

        logger.info(
            "Override approved: manager=%s tier=%s -> %s covers_request=%s",
            manager_id, current_tier.value, check.tier.value, covers,
        )

        return OverrideResult(
            success=True,
            approver_id=manager_id,
            approver_name=check.approver_name,
            approver_tier=check.tier,
            elevated_limits=elevated,
            covers_request=covers,
        )
