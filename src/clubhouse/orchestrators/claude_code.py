"""Claude Code CLI provider."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from clubhouse.fsutil import read_json, write_json
from clubhouse.hooks.entries import build_hook_command, merge_hook_entries
from clubhouse.orchestrators.base import (
    HOOK_TIMEOUT_SEC,
    OrchestratorProvider,
    home_path,
    humanize_model_id,
    parse_model_choices,
    read_text_or_empty,
)
from clubhouse.orchestrators.models import (
    HookEventKind,
    ModelOption,
    OrchestratorConventions,
    ProviderCapabilities,
    SpawnCommand,
    SpawnOpts,
)

logger = logging.getLogger(__name__)

# (event_name, matcher); a None matcher applies to all tools
HOOK_EVENTS: list[tuple[str, str | None]] = [
    ("PreToolUse", None),
    ("PostToolUse", None),
    ("PostToolUseFailure", None),
    ("Stop", None),
    ("Notification", ""),
    ("PermissionRequest", None),
]

_ALIAS_RE = re.compile(r"alias[^\n]*\(e\.g\.\s*'([^)]+)'\)", re.IGNORECASE)


def parse_claude_models_from_help(help_text: str) -> list[ModelOption] | None:
    """Model choices from ``claude --help``: explicit choices, else aliases."""
    parsed = parse_model_choices(help_text)
    if parsed:
        return parsed

    match = _ALIAS_RE.search(help_text)
    if not match:
        return None
    aliases = [
        a.replace("'", "").strip() for a in re.split(r"'\s*or\s*'|',\s*'", match.group(1))
    ]
    aliases = [a for a in aliases if a]
    if not aliases:
        return None
    return [ModelOption(id="default", label="Default")] + [
        ModelOption(id=a, label=humanize_model_id(a)) for a in aliases
    ]


def build_claude_hooks(hook_url: str) -> dict[str, list[dict[str, Any]]]:
    command = build_hook_command(hook_url)
    hooks: dict[str, list[dict[str, Any]]] = {}
    for event, matcher in HOOK_EVENTS:
        group: dict[str, Any] = {}
        if matcher is not None:
            group["matcher"] = matcher
        group["hooks"] = [
            {"type": "command", "command": command, "async": True, "timeout": HOOK_TIMEOUT_SEC}
        ]
        hooks[event] = [group]
    return hooks


class ClaudeCodeProvider(OrchestratorProvider):
    id = "claude-code"
    display_name = "Claude Code"

    conventions = OrchestratorConventions(
        config_dir=".claude",
        local_instructions_file="CLAUDE.local.md",
        legacy_instructions_file="CLAUDE.md",
        mcp_config_file=".mcp.json",
        local_settings_file="settings.local.json",
    )
    capabilities = ProviderCapabilities(
        headless=True,
        structured_output=True,
        hooks=True,
        session_resume=True,
        permissions=True,
        max_turns=True,
        max_budget=True,
    )

    binary_names = ["claude"]
    tool_verbs = {
        "Bash": "Running command",
        "Edit": "Editing file",
        "Write": "Writing file",
        "Read": "Reading file",
        "Glob": "Searching files",
        "Grep": "Searching code",
        "Task": "Running task",
        "WebSearch": "Searching web",
        "WebFetch": "Fetching page",
        "EnterPlanMode": "Planning",
        "ExitPlanMode": "Finishing plan",
        "NotebookEdit": "Editing notebook",
    }
    event_names = {
        "PreToolUse": HookEventKind.PRE_TOOL,
        "PostToolUse": HookEventKind.POST_TOOL,
        "PostToolUseFailure": HookEventKind.TOOL_ERROR,
        "Stop": HookEventKind.STOP,
        "Notification": HookEventKind.NOTIFICATION,
        "PermissionRequest": HookEventKind.PERMISSION_REQUEST,
    }
    default_durable_permissions = ["Bash(git:*)", "Bash(npm:*)", "Bash(npx:*)"]
    default_quick_permissions = [
        "Bash(git:*)",
        "Bash(npm:*)",
        "Bash(npx:*)",
        "Read",
        "Write",
        "Edit",
        "Glob",
        "Grep",
    ]
    fallback_model_options = [
        ModelOption(id="default", label="Default"),
        ModelOption(id="opus", label="Opus"),
        ModelOption(id="sonnet", label="Sonnet"),
        ModelOption(id="haiku", label="Haiku"),
    ]

    def extra_binary_paths(self) -> list[str]:
        return [
            home_path(".local", "bin", "claude"),
            home_path(".claude", "local", "claude"),
            home_path(".npm-global", "bin", "claude"),
            "/usr/local/bin/claude",
            "/opt/homebrew/bin/claude",
        ]

    async def build_spawn_command(self, opts: SpawnOpts) -> SpawnCommand:
        binary = await self.locate_binary()
        args: list[str] = []

        if opts.resume:
            args.append("--continue")
        if opts.model and opts.model != "default":
            args += ["--model", opts.model]
        for tool in opts.allowed_tools or []:
            args += ["--allowedTools", tool]
        if opts.system_prompt:
            args += ["--append-system-prompt", opts.system_prompt]
        if opts.mission:
            args.append(opts.mission)

        return SpawnCommand(binary=binary, args=args)

    async def write_hooks_config(self, cwd: str, hook_url: str) -> None:
        settings_path = Path(cwd) / self.conventions.config_dir / self.conventions.local_settings_file
        existing = read_json(settings_path)
        merged = merge_hook_entries(existing, build_claude_hooks(hook_url))
        write_json(settings_path, merged)
        logger.debug(f"Wrote Claude hooks config: {settings_path}")

    def read_instructions(self, worktree_path: str) -> str:
        local = self.instructions_path(worktree_path)
        if local.exists():
            return read_text_or_empty(local)
        return read_text_or_empty(Path(worktree_path) / self.conventions.legacy_instructions_file)

    async def get_model_options(self) -> list[ModelOption]:
        return await self.model_options_from_help(parse_claude_models_from_help)
