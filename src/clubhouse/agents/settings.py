"""Read-only access to per-project Clubhouse settings."""

from __future__ import annotations

from pathlib import Path

from clubhouse.config import PROJECT_SETTINGS_DIR, PROJECT_SETTINGS_FILE
from clubhouse.fsutil import read_json


def project_settings_path(project_path: str) -> Path:
    return Path(project_path) / PROJECT_SETTINGS_DIR / PROJECT_SETTINGS_FILE


def read_project_orchestrator(project_path: str) -> str | None:
    """The project's preferred orchestrator id, or None when unset or unreadable."""
    value = read_json(project_settings_path(project_path)).get("orchestrator")
    return value if isinstance(value, str) and value else None
