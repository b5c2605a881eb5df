"""Runtime configuration: defaults, config file loading, and environment overrides."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_ORCHESTRATOR = "claude-code"
DEFAULT_HOOK_HOST = "127.0.0.1"
DEFAULT_MAX_HOOK_BODY = 1024 * 1024
DEFAULT_KILL_TIMEOUT = 5.0

# The listener binds IPv4 only; injected commands must target loopback
LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost"})

PROJECT_SETTINGS_DIR = ".clubhouse"
PROJECT_SETTINGS_FILE = "settings.json"


def get_data_dir() -> Path:
    env = os.environ.get("CLUBHOUSE_DATA_DIR")
    if env:
        return Path(env)
    return Path.home() / ".clubhouse"


def _safe_int(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return default


def _safe_float(value: object, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _loopback_host(value: object) -> str:
    if isinstance(value, str) and value in LOOPBACK_HOSTS:
        return value
    logger.warning(f"Ignoring non-loopback hook host {value!r}, using {DEFAULT_HOOK_HOST}")
    return DEFAULT_HOOK_HOST


@dataclass
class ClubhouseConfig:
    default_orchestrator: str = DEFAULT_ORCHESTRATOR
    hook_host: str = DEFAULT_HOOK_HOST
    max_hook_body_bytes: int = DEFAULT_MAX_HOOK_BODY
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    default_cols: int = 120
    default_rows: int = 30
    max_sessions: int = 32
    max_output_buffer: int = 512 * 1024

    @classmethod
    def from_env(cls) -> ClubhouseConfig:
        config = cls()

        orchestrator = os.environ.get("CLUBHOUSE_DEFAULT_ORCHESTRATOR")
        if orchestrator:
            config.default_orchestrator = orchestrator
        host = os.environ.get("CLUBHOUSE_HOOK_HOST")
        if host:
            config.hook_host = _loopback_host(host)

        config.max_hook_body_bytes = _safe_int(
            os.environ.get("CLUBHOUSE_MAX_HOOK_BODY", str(DEFAULT_MAX_HOOK_BODY)),
            DEFAULT_MAX_HOOK_BODY,
        )
        config.kill_timeout = _safe_float(
            os.environ.get("CLUBHOUSE_KILL_TIMEOUT", str(DEFAULT_KILL_TIMEOUT)),
            DEFAULT_KILL_TIMEOUT,
        )
        config.default_cols = _safe_int(os.environ.get("CLUBHOUSE_COLS", "120"), 120)
        config.default_rows = _safe_int(os.environ.get("CLUBHOUSE_ROWS", "30"), 30)
        config.max_sessions = _safe_int(os.environ.get("CLUBHOUSE_MAX_SESSIONS", "32"), 32)
        return config

    @classmethod
    def from_file(cls, path: Path) -> ClubhouseConfig:
        config = cls.from_env()

        if not path.exists():
            return config

        try:
            data = json.loads(path.read_text())
            if not isinstance(data, dict):
                raise ValueError("config root must be an object")

            if "default_orchestrator" in data:
                if not os.environ.get("CLUBHOUSE_DEFAULT_ORCHESTRATOR"):
                    value = data["default_orchestrator"]
                    if isinstance(value, str) and value:
                        config.default_orchestrator = value
            if "hook_host" in data:
                if not os.environ.get("CLUBHOUSE_HOOK_HOST"):
                    config.hook_host = _loopback_host(data["hook_host"])
            if "max_hook_body_bytes" in data:
                config.max_hook_body_bytes = _safe_int(
                    data["max_hook_body_bytes"], config.max_hook_body_bytes
                )
            if "kill_timeout" in data:
                config.kill_timeout = _safe_float(data["kill_timeout"], config.kill_timeout)
            if "max_sessions" in data:
                config.max_sessions = _safe_int(data["max_sessions"], config.max_sessions)

        except (json.JSONDecodeError, OSError, ValueError) as e:
            logger.warning(f"Failed to load clubhouse config from {path}: {e}")

        return config


def load_config(path: Path | None = None) -> ClubhouseConfig:
    if path is None:
        path = get_data_dir() / "config.json"
    return ClubhouseConfig.from_file(path)
