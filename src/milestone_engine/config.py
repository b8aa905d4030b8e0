"""
config.py — Central settings for the Milestone Engine
=====================================================
All configuration is loaded from environment variables / .env file.
Copy .env.example → .env and adjust as needed.

The engine itself is pure; these settings only supply the defaults a new
milestone gets when its draft omits ``settings``, plus the location of the
reference SQLite store and the log level used by the API layer.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env into os.environ (no-op if already set, safe to call multiple times)
load_dotenv(override=False)

_DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "milestone_engine.db"


# ─── Helpers ────────────────────────────────────────────────────────────────

def _is_placeholder(value: str) -> bool:
    """Return True if the value looks like an unfilled template placeholder."""
    return not value or "<" in value or value.startswith("your-") or value == "PLACEHOLDER"


# ─── Milestone defaults ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class MilestoneDefaults:
    require_all_persona_approvals: bool
    allow_resubmission:            bool
    max_resubmissions:             int
    auto_close_after_days:         int


# ─── Storage ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StorageConfig:
    db_path: str

    @property
    def is_configured(self) -> bool:
        return bool(self.db_path) and not _is_placeholder(self.db_path)

    @property
    def resolved_path(self) -> Path:
        """Configured path, or the workspace-root default for placeholders."""
        return Path(self.db_path) if self.is_configured else _DEFAULT_DB_PATH


# ─── App-level settings ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class AppConfig:
    log_level:            str
    upcoming_window_days: int   # horizon for "upcoming deadlines" in summaries


# ─── Master settings object ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Settings:
    defaults: MilestoneDefaults
    storage:  StorageConfig
    app:      AppConfig

    def status_summary(self) -> dict[str, str]:
        """Return a dict of setting → display value."""
        d = self.defaults
        return {
            "Approval policy":   "All personas" if d.require_all_persona_approvals else "Any persona",
            "Resubmissions":     f"up to {d.max_resubmissions}" if d.allow_resubmission else "disabled",
            "Auto-close":        f"{d.auto_close_after_days} days after due date",
            "Storage":           str(self.storage.resolved_path),
            "Log level":         self.app.log_level,
        }


def get_settings() -> Settings:
    """Load all configuration from environment variables."""
    _str  = lambda k, d="": os.getenv(k, d).strip()
    _int  = lambda k, d=0: int(os.getenv(k, str(d)) or d)
    _bool = lambda k, d=False: os.getenv(k, str(d)).lower() in ("1", "true", "yes")

    return Settings(
        defaults=MilestoneDefaults(
            require_all_persona_approvals = _bool("MILESTONE_REQUIRE_ALL_APPROVALS", True),
            allow_resubmission            = _bool("MILESTONE_ALLOW_RESUBMISSION", True),
            max_resubmissions             = _int("MILESTONE_MAX_RESUBMISSIONS", 3),
            auto_close_after_days         = _int("MILESTONE_AUTO_CLOSE_DAYS", 7),
        ),
        storage=StorageConfig(
            db_path = _str("MILESTONE_DB_PATH"),
        ),
        app=AppConfig(
            log_level            = _str("LOG_LEVEL", "INFO").upper(),
            upcoming_window_days = _int("UPCOMING_WINDOW_DAYS", 7),
        ),
    )
