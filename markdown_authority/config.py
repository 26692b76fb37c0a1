"""Markdown Authority — Application configuration via environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from markdown_authority.integrations.credentials import RosterEntry


class MarkdownSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "MARKDOWN_",
        "extra": "ignore",
    }

    # ── Credential verification ────────────────────────────────
    credential_service_url: str = ""
    credential_service_token: str = ""
    credential_timeout_seconds: float = 5.0
    credential_min_length: int = 4
    mock_verifier_delay_seconds: float = 0.0
    # JSON list of {"manager_id", "pin", "tier", "name"}; used when no
    # credential service is configured
    manager_roster: list[RosterEntry] = Field(default_factory=list)

    # ── Transactions ───────────────────────────────────────────
    default_item_name: str = "Cart Total"

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = MarkdownSettings()
