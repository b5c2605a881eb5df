"""Pydantic models shared by every orchestrator provider."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class AgentKind(StrEnum):
    DURABLE = "durable"
    QUICK = "quick"


class HookEventKind(StrEnum):
    PRE_TOOL = "pre_tool"
    POST_TOOL = "post_tool"
    TOOL_ERROR = "tool_error"
    STOP = "stop"
    NOTIFICATION = "notification"
    PERMISSION_REQUEST = "permission_request"


class OrchestratorConventions(BaseModel):
    """File-layout conventions of one coding-agent CLI."""

    model_config = ConfigDict(frozen=True)

    config_dir: str  # e.g. ".claude"
    local_instructions_file: str  # e.g. "CLAUDE.local.md"
    legacy_instructions_file: str  # e.g. "CLAUDE.md"
    mcp_config_file: str  # e.g. ".mcp.json"
    local_settings_file: str  # e.g. "settings.local.json", relative to config_dir
    skills_dir: str = "skills"
    agent_templates_dir: str = "agents"


class ProviderCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    headless: bool = False
    structured_output: bool = False
    hooks: bool = False
    session_resume: bool = False
    permissions: bool = False
    max_turns: bool = False
    max_budget: bool = False


class SpawnOpts(BaseModel):
    cwd: str
    model: str | None = None
    mission: str | None = None
    system_prompt: str | None = None
    allowed_tools: list[str] | None = None
    resume: bool = False
    agent_id: str | None = None


class SpawnCommand(BaseModel):
    binary: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class NormalizedHookEvent(BaseModel):
    kind: HookEventKind
    tool_name: str | None = None
    tool_input: dict[str, object] | None = None
    message: str | None = None


class Availability(BaseModel):
    available: bool
    error: str | None = None


class ModelOption(BaseModel):
    id: str
    label: str


class OrchestratorInfo(BaseModel):
    id: str
    display_name: str
    badge: str | None = None
    capabilities: ProviderCapabilities
