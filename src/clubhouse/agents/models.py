"""Pydantic models for agent spawn requests and dispatched hook events."""

from __future__ import annotations

from pydantic import BaseModel, Field

from clubhouse.orchestrators.models import AgentKind, HookEventKind


class SpawnAgentRequest(BaseModel):
    agent_id: str
    project_path: str
    cwd: str
    kind: AgentKind = AgentKind.DURABLE
    model: str | None = None
    mission: str | None = None
    system_prompt: str | None = None
    allowed_tools: list[str] | None = None
    orchestrator: str | None = None
    resume: bool = False


class HookEvent(BaseModel):
    """A normalized hook event, attributed to the agent that fired it."""

    agent_id: str
    kind: HookEventKind
    tool_name: str | None = None
    tool_input: dict[str, object] | None = None
    message: str | None = None
    tool_verb: str | None = None
    timestamp: int = Field(description="Milliseconds since the epoch")
