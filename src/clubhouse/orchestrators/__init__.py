"""Orchestrator registry: static catalog of coding-agent CLI providers."""

from __future__ import annotations

from clubhouse.orchestrators.base import BinaryNotFoundError, OrchestratorProvider
from clubhouse.orchestrators.claude_code import ClaudeCodeProvider
from clubhouse.orchestrators.codex_cli import CodexCliProvider
from clubhouse.orchestrators.copilot_cli import CopilotCliProvider
from clubhouse.orchestrators.opencode import OpenCodeProvider


class UnknownOrchestratorError(Exception):
    """Raised when an orchestrator id does not resolve to a registered provider."""

    def __init__(self, orchestrator_id: str) -> None:
        super().__init__(f"Unknown orchestrator: {orchestrator_id}")
        self.orchestrator_id = orchestrator_id


_PROVIDERS: dict[str, OrchestratorProvider] = {
    p.id: p
    for p in (
        ClaudeCodeProvider(),
        CodexCliProvider(),
        CopilotCliProvider(),
        OpenCodeProvider(),
    )
}


def get_provider(orchestrator_id: str) -> OrchestratorProvider | None:
    return _PROVIDERS.get(orchestrator_id)


def get_all_providers() -> list[OrchestratorProvider]:
    return list(_PROVIDERS.values())


__all__ = [
    "BinaryNotFoundError",
    "OrchestratorProvider",
    "UnknownOrchestratorError",
    "get_all_providers",
    "get_provider",
]
