"""OpenAI Codex CLI provider.

Codex only offers a notify hook for agent-turn-complete, which is too coarse
for tool-level events, so no hook wiring is materialized for it.
"""

from __future__ import annotations

from pathlib import Path

from clubhouse.orchestrators.base import OrchestratorProvider, home_path, parse_model_choices
from clubhouse.orchestrators.models import (
    HookEventKind,
    ModelOption,
    NormalizedHookEvent,
    OrchestratorConventions,
    ProviderCapabilities,
    SpawnCommand,
    SpawnOpts,
)


class CodexCliProvider(OrchestratorProvider):
    id = "codex-cli"
    display_name = "Codex CLI"
    badge = "Beta"

    conventions = OrchestratorConventions(
        config_dir=".codex",
        local_instructions_file="AGENTS.md",
        legacy_instructions_file="AGENTS.md",
        mcp_config_file=".codex/config.toml",
        local_settings_file="config.toml",
    )
    capabilities = ProviderCapabilities(
        headless=True,
        hooks=False,
        session_resume=True,
        permissions=True,
    )

    binary_names = ["codex"]
    tool_verbs = {
        "shell": "Running command",
        "shell_command": "Running command",
        "apply_patch": "Editing file",
    }
    # Codex is sandbox-based; these map onto the generic permission UI.
    default_durable_permissions = ["shell(git:*)", "shell(npm:*)", "shell(npx:*)"]
    default_quick_permissions = [
        "shell(git:*)",
        "shell(npm:*)",
        "shell(npx:*)",
        "shell(*)",
        "apply_patch",
    ]
    fallback_model_options = [
        ModelOption(id="default", label="Default"),
        ModelOption(id="gpt-5.3-codex", label="GPT 5.3 Codex"),
        ModelOption(id="gpt-5.2-codex", label="GPT 5.2 Codex"),
        ModelOption(id="codex-mini-latest", label="Codex Mini"),
        ModelOption(id="gpt-5", label="GPT 5"),
    ]

    def extra_binary_paths(self) -> list[str]:
        return [
            home_path(".local", "bin", "codex"),
            home_path(".npm-global", "bin", "codex"),
            "/usr/local/bin/codex",
            "/opt/homebrew/bin/codex",
            home_path(".volta", "bin", "codex"),
            home_path(".local", "share", "pnpm", "codex"),
            home_path(".local", "share", "fnm", "aliases", "default", "bin", "codex"),
        ]

    async def build_spawn_command(self, opts: SpawnOpts) -> SpawnCommand:
        binary = await self.locate_binary()
        args: list[str] = []

        if opts.model and opts.model != "default":
            args += ["--model", opts.model]

        parts = [p for p in (opts.system_prompt, opts.mission) if p]
        if parts:
            args.append("\n\n".join(parts))

        return SpawnCommand(binary=binary, args=args)

    def parse_hook_event(self, raw: object) -> NormalizedHookEvent | None:
        if not isinstance(raw, dict):
            return None
        if raw.get("type") != "agent-turn-complete":
            return None
        message = raw.get("last-assistant-message")
        return NormalizedHookEvent(
            kind=HookEventKind.STOP,
            message=message if isinstance(message, str) else None,
        )

    def instructions_path(self, worktree_path: str) -> Path:
        return Path(worktree_path) / self.conventions.local_instructions_file

    async def get_model_options(self) -> list[ModelOption]:
        return await self.model_options_from_help(parse_model_choices)
