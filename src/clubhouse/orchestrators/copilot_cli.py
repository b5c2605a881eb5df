"""GitHub Copilot CLI provider."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from clubhouse.fsutil import read_json, write_json
from clubhouse.hooks.entries import build_hook_command, merge_hook_entries
from clubhouse.orchestrators.base import HOOK_TIMEOUT_SEC, OrchestratorProvider, home_path
from clubhouse.orchestrators.models import (
    HookEventKind,
    ModelOption,
    NormalizedHookEvent,
    OrchestratorConventions,
    ProviderCapabilities,
    SpawnCommand,
    SpawnOpts,
)

logger = logging.getLogger(__name__)

HOOKS_FILE_VERSION = 1
HOOK_EVENTS = ["preToolUse", "postToolUse", "errorOccurred", "sessionEnd"]


def build_copilot_hooks(hook_url: str) -> dict[str, list[dict[str, Any]]]:
    # Copilot's hook stdin has no event name, so it travels in the URL.
    return {
        event: [
            {
                "type": "command",
                "bash": build_hook_command(hook_url, event_hint=event),
                "timeoutSec": HOOK_TIMEOUT_SEC,
            }
        ]
        for event in HOOK_EVENTS
    }


class CopilotCliProvider(OrchestratorProvider):
    id = "copilot-cli"
    display_name = "GitHub Copilot CLI"
    badge = "Beta"

    conventions = OrchestratorConventions(
        config_dir=".github",
        local_instructions_file="copilot-instructions.md",
        legacy_instructions_file="copilot-instructions.md",
        mcp_config_file=".github/mcp.json",
        local_settings_file="hooks/hooks.json",
    )
    capabilities = ProviderCapabilities(
        headless=True,
        hooks=True,
        session_resume=True,
        permissions=True,
    )

    binary_names = ["copilot"]
    # Copilot CLI uses lowercase tool names
    tool_verbs = {
        "shell": "Running command",
        "edit": "Editing file",
        "read": "Reading file",
        "search": "Searching code",
        "agent": "Running agent",
    }
    event_names = {
        "preToolUse": HookEventKind.PRE_TOOL,
        "postToolUse": HookEventKind.POST_TOOL,
        "errorOccurred": HookEventKind.TOOL_ERROR,
        "sessionEnd": HookEventKind.STOP,
    }
    default_durable_permissions = ["shell(git:*)", "shell(npm:*)", "shell(npx:*)"]
    default_quick_permissions = [
        "shell(git:*)",
        "shell(npm:*)",
        "shell(npx:*)",
        "read",
        "edit",
        "search",
    ]
    fallback_model_options = [
        ModelOption(id="default", label="Default"),
        ModelOption(id="claude-sonnet-4-5", label="Claude Sonnet 4.5"),
        ModelOption(id="claude-sonnet-4", label="Claude Sonnet 4"),
        ModelOption(id="claude-haiku-4-5", label="Claude Haiku 4.5"),
        ModelOption(id="o4-mini", label="o4-mini"),
    ]

    def extra_binary_paths(self) -> list[str]:
        return [
            home_path(".local", "bin", "copilot"),
            "/usr/local/bin/copilot",
            "/opt/homebrew/bin/copilot",
        ]

    async def build_spawn_command(self, opts: SpawnOpts) -> SpawnCommand:
        binary = await self.locate_binary()
        args: list[str] = []

        if opts.model and opts.model != "default":
            args += ["--model", opts.model]
        for tool in opts.allowed_tools or []:
            args += ["--allow-tool", tool]

        parts = [p for p in (opts.system_prompt, opts.mission) if p]
        if parts:
            args += ["-p", "\n\n".join(parts)]

        return SpawnCommand(binary=binary, args=args)

    async def write_hooks_config(self, cwd: str, hook_url: str) -> None:
        settings_path = Path(cwd) / self.conventions.config_dir / self.conventions.local_settings_file
        existing = read_json(settings_path)
        merged = merge_hook_entries(existing, build_copilot_hooks(hook_url))
        merged.setdefault("version", HOOKS_FILE_VERSION)
        write_json(settings_path, merged)
        logger.debug(f"Wrote Copilot hooks config: {settings_path}")

    def parse_hook_event(self, raw: object) -> NormalizedHookEvent | None:
        if not isinstance(raw, dict):
            return None
        kind = self.event_names.get(str(raw.get("hook_event_name") or ""))
        if kind is None:
            return None

        # Copilot sends camelCase toolName/toolArgs, toolArgs often JSON-encoded
        tool_name = raw.get("tool_name", raw.get("toolName"))
        tool_input = raw.get("tool_input", raw.get("toolArgs"))
        if isinstance(tool_input, str):
            try:
                tool_input = json.loads(tool_input)
            except json.JSONDecodeError:
                tool_input = {"raw": tool_input}

        message = raw.get("message")
        return NormalizedHookEvent(
            kind=kind,
            tool_name=tool_name if isinstance(tool_name, str) else None,
            tool_input=tool_input if isinstance(tool_input, dict) else None,
            message=message if isinstance(message, str) else None,
        )
