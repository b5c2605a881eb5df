"""OpenCode CLI provider. Hook integration is not available for OpenCode."""

from __future__ import annotations

from clubhouse.orchestrators.base import OrchestratorProvider, home_path
from clubhouse.orchestrators.models import (
    HookEventKind,
    OrchestratorConventions,
    ProviderCapabilities,
    SpawnCommand,
    SpawnOpts,
)


class OpenCodeProvider(OrchestratorProvider):
    id = "opencode"
    display_name = "OpenCode"
    badge = "Beta"

    conventions = OrchestratorConventions(
        config_dir=".opencode",
        local_instructions_file="instructions.md",
        legacy_instructions_file="instructions.md",
        mcp_config_file=".opencode/config.json",
        local_settings_file="config.json",
    )
    capabilities = ProviderCapabilities()

    binary_names = ["opencode"]
    tool_verbs = {
        "Bash": "Running command",
        "Edit": "Editing file",
        "Write": "Writing file",
        "Read": "Reading file",
        "Glob": "Searching files",
        "Grep": "Searching code",
        "Task": "Running task",
    }
    event_names = {
        "PreToolUse": HookEventKind.PRE_TOOL,
        "PostToolUse": HookEventKind.POST_TOOL,
        "Stop": HookEventKind.STOP,
    }

    def extra_binary_paths(self) -> list[str]:
        return [
            home_path(".local", "bin", "opencode"),
            home_path("go", "bin", "opencode"),
            "/usr/local/bin/opencode",
            "/opt/homebrew/bin/opencode",
        ]

    async def build_spawn_command(self, opts: SpawnOpts) -> SpawnCommand:
        binary = await self.locate_binary()
        args: list[str] = []
        if opts.mission:
            args.append(opts.mission)
        return SpawnCommand(binary=binary, args=args)
