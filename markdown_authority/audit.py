"""
Markdown Audit Trail — in-memory record of markdown and override events.

Every applied markdown and every step of the override workflow is
recorded with a severity, so a transaction's discounts can be reviewed
after the fact. Persisting the trail is the caller's job.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class AuditAction(str, enum.Enum):
    MARKDOWN_APPLIED = "MARKDOWN_APPLIED"
    MARKDOWN_OVERRIDE_REQUESTED = "MARKDOWN_OVERRIDE_REQUESTED"
    MARKDOWN_OVERRIDE_APPROVED = "MARKDOWN_OVERRIDE_APPROVED"
    MARKDOWN_OVERRIDE_DENIED = "MARKDOWN_OVERRIDE_DENIED"
    MARKDOWN_OVERRIDE_CANCELLED = "MARKDOWN_OVERRIDE_CANCELLED"
    ELEVATION_CLEARED = "ELEVATION_CLEARED"


class AuditSeverity(str, enum.Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


ACTION_SEVERITY: dict[AuditAction, AuditSeverity] = {
    AuditAction.MARKDOWN_APPLIED: AuditSeverity.INFO,
    AuditAction.MARKDOWN_OVERRIDE_REQUESTED: AuditSeverity.WARNING,
    AuditAction.MARKDOWN_OVERRIDE_APPROVED: AuditSeverity.WARNING,
    AuditAction.MARKDOWN_OVERRIDE_DENIED: AuditSeverity.WARNING,
    AuditAction.MARKDOWN_OVERRIDE_CANCELLED: AuditSeverity.INFO,
    AuditAction.ELEVATION_CLEARED: AuditSeverity.INFO,
}


class AuditEntry(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    action: AuditAction
    severity: AuditSeverity
    transaction_id: str | None = None
    actor_tier: str | None = None
    authorized_by: str | None = None
    description: str
    details: dict[str, Any] = Field(default_factory=dict)


class MarkdownAuditLog:
    """Append-only, in-memory audit trail shared by the sessions of a register."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    def record(
        self,
        action: AuditAction,
        description: str,
        transaction_id: str | None = None,
        actor_tier: str | None = None,
        authorized_by: str | None = None,
        **details: Any,
    ) -> AuditEntry:
        entry = AuditEntry(
            action=action,
            severity=ACTION_SEVERITY[action],
            transaction_id=transaction_id,
            actor_tier=actor_tier,
            authorized_by=authorized_by,
            description=description,
            details=details,
        )
        self._entries.append(entry)
        logger.info("Audit: %s %s", action.value, description)
        return entry

    def entries(self, transaction_id: str | None = None) -> list[AuditEntry]:
        """All entries, or those of one transaction, oldest first."""
        if transaction_id is None:
            return list(self._entries)
        return [e for e in self._entries if e.transaction_id == transaction_id]

    def __len__(self) -> int:
        return len(self._entries)
