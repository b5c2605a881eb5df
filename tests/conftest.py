"""Shared fixtures for clubhouse tests."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from clubhouse.orchestrators.claude_code import ClaudeCodeProvider
from clubhouse.orchestrators.codex_cli import CodexCliProvider
from clubhouse.orchestrators.copilot_cli import CopilotCliProvider

HOOK_URL = "http://127.0.0.1:4567/hook"


class StubClaudeProvider(ClaudeCodeProvider):
    """Claude Code provider with a fixed binary path."""

    def find_binary(self) -> str:
        return "/usr/local/bin/claude"


class StubCodexProvider(CodexCliProvider):
    def find_binary(self) -> str:
        return "/usr/local/bin/codex"


class StubCopilotProvider(CopilotCliProvider):
    def find_binary(self) -> str:
        return "/usr/local/bin/copilot"


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLUBHOUSE_DATA_DIR", str(tmp_path / "clubhouse-data"))
    for var in (
        "CLUBHOUSE_DEFAULT_ORCHESTRATOR",
        "CLUBHOUSE_HOOK_HOST",
        "CLUBHOUSE_MAX_HOOK_BODY",
        "CLUBHOUSE_KILL_TIMEOUT",
        "CLUBHOUSE_COLS",
        "CLUBHOUSE_ROWS",
        "CLUBHOUSE_MAX_SESSIONS",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def stub_providers() -> dict:
    providers = [StubClaudeProvider(), StubCodexProvider(), StubCopilotProvider()]
    return {p.id: p for p in providers}


@pytest.fixture
def fake_listener() -> MagicMock:
    listener = MagicMock()
    listener.wait_ready = AsyncMock(return_value=4567)
    listener.stop = AsyncMock()
    listener.url = HOOK_URL
    return listener


@pytest.fixture
def fake_pty() -> MagicMock:
    pty = MagicMock()
    pty.spawn = AsyncMock()
    pty.kill_all = AsyncMock()
    pty.is_running.return_value = True
    return pty
