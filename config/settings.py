"""Application settings — all configuration loaded from environment variables.

Usage:
    from config.settings import Settings
    settings = Settings()
    settings.validate()   # raises ConfigurationError if ANTHROPIC_API_KEY is missing
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from core.errors import ConfigurationError

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "history.db"


@dataclass
class Settings:
    """Centralised application configuration.

    All values are read from environment variables at instantiation time
    so that tests can override them by patching ``os.environ``.
    """

    # ── API Keys ────────────────────────────────────────────────────────────
    anthropic_api_key: str = field(
        default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", "")
    )

    # ── Flask ───────────────────────────────────────────────────────────────
    debug: bool = field(
        default_factory=lambda: os.environ.get("FLASK_DEBUG", "0") == "1"
    )
    port: int = field(
        default_factory=lambda: int(os.environ.get("PORT", "5001"))
    )

    # ── AI Model ────────────────────────────────────────────────────────────
    #: Model used for the grounded analysis call.
    analysis_model: str = field(
        default_factory=lambda: os.environ.get("ANALYSIS_MODEL", "claude-haiku-4-5")
    )
    max_web_searches: int = field(
        default_factory=lambda: int(os.environ.get("MAX_WEB_SEARCHES", "3"))
    )
    max_tokens: int = field(
        default_factory=lambda: int(os.environ.get("MAX_TOKENS", "2048"))
    )

    # ── History ─────────────────────────────────────────────────────────────
    history_db_path: Path = field(
        default_factory=lambda: Path(os.environ.get("DB_PATH") or DEFAULT_DB_PATH)
    )
    max_history_items: int = field(
        default_factory=lambda: int(os.environ.get("MAX_HISTORY_ITEMS", "20"))
    )

    @property
    def has_credential(self) -> bool:
        """True when a non-blank API key is configured."""
        return bool(self.anthropic_api_key.strip())

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if any required setting is missing."""
        if not self.has_credential:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY environment variable is not set. "
                "Copy .env.example to .env and add your key."
            )
