"""Provider interface and helpers shared by every orchestrator."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any, ClassVar

from clubhouse.orchestrators.models import (
    AgentKind,
    Availability,
    ModelOption,
    NormalizedHookEvent,
    OrchestratorConventions,
    OrchestratorInfo,
    ProviderCapabilities,
    SpawnCommand,
    SpawnOpts,
)

logger = logging.getLogger(__name__)

EXIT_COMMAND = "/exit\r"
HOOK_TIMEOUT_SEC = 5


class BinaryNotFoundError(Exception):
    """Raised when an orchestrator's CLI binary cannot be located."""


def home_path(*segments: str) -> str:
    return str(Path.home().joinpath(*segments))


def find_binary_in_path(names: list[str], extra_paths: list[str]) -> str:
    """Locate a CLI binary.

    Resolution order:
    1. Well-known install locations (``extra_paths``)
    2. The current ``PATH``
    3. ``which`` inside the user's interactive login shell
    """
    for candidate in extra_paths:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate

    for name in names:
        found = shutil.which(name)
        if found:
            return found

    shell = os.environ.get("SHELL", "/bin/zsh")
    for name in names:
        try:
            result = subprocess.run(
                [shell, "-ilc", f"which {name}"],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
            continue
        lines = result.stdout.strip().splitlines()
        path = lines[-1].strip() if lines else ""
        if result.returncode == 0 and path and os.path.isfile(path):
            return path

    raise BinaryNotFoundError(
        f"Could not find any of [{', '.join(names)}] on PATH. Make sure it is installed."
    )


def humanize_model_id(model_id: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in model_id.split("-"))


_CHOICES_RE = re.compile(r"--model\s+(?:<\w+>)?\s*.*?\(choices:\s*(.*?)\)", re.DOTALL)


def parse_model_choices(help_text: str) -> list[ModelOption] | None:
    """Parse ``--model ... (choices: "a", "b")`` from CLI help output."""
    match = _CHOICES_RE.search(help_text)
    if not match:
        return None
    ids = re.findall(r'"([^"]+)"', match.group(1))
    if not ids:
        return None
    return [ModelOption(id="default", label="Default")] + [
        ModelOption(id=i, label=humanize_model_id(i)) for i in ids
    ]


async def read_help_output(binary: str) -> str:
    """Run ``<binary> --help`` off the event loop and return stdout."""

    def _run() -> str:
        result = subprocess.run(
            [binary, "--help"], capture_output=True, text=True, timeout=5
        )
        return result.stdout

    return await asyncio.to_thread(_run)


def read_text_or_empty(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError:
        return ""


class OrchestratorProvider(ABC):
    """Capability surface of one external coding-agent CLI."""

    id: ClassVar[str]
    display_name: ClassVar[str]
    badge: ClassVar[str | None] = None
    conventions: ClassVar[OrchestratorConventions]
    capabilities: ClassVar[ProviderCapabilities]

    binary_names: ClassVar[list[str]] = []
    tool_verbs: ClassVar[dict[str, str]] = {}
    event_names: ClassVar[dict[str, str]] = {}
    default_durable_permissions: ClassVar[list[str]] = []
    default_quick_permissions: ClassVar[list[str]] = []
    fallback_model_options: ClassVar[list[ModelOption]] = [
        ModelOption(id="default", label="Default")
    ]

    def extra_binary_paths(self) -> list[str]:
        return []

    def find_binary(self) -> str:
        return find_binary_in_path(self.binary_names, self.extra_binary_paths())

    async def locate_binary(self) -> str:
        """``find_binary`` off the event loop; it may spawn a login shell."""
        return await asyncio.to_thread(self.find_binary)

    async def check_availability(self) -> Availability:
        try:
            await self.locate_binary()
        except BinaryNotFoundError as e:
            return Availability(available=False, error=str(e))
        return Availability(available=True)

    @abstractmethod
    async def build_spawn_command(self, opts: SpawnOpts) -> SpawnCommand: ...

    def get_exit_command(self) -> str:
        return EXIT_COMMAND

    async def write_hooks_config(self, cwd: str, hook_url: str) -> None:
        """Materialize hook wiring into the provider's settings file.

        Providers without hook support leave the file system untouched.
        """

    def parse_hook_event(self, raw: object) -> NormalizedHookEvent | None:
        if not isinstance(raw, dict):
            return None
        kind = self.event_names.get(str(raw.get("hook_event_name") or ""))
        if kind is None:
            return None
        tool_input = raw.get("tool_input")
        return NormalizedHookEvent(
            kind=kind,
            tool_name=_opt_str(raw.get("tool_name")),
            tool_input=tool_input if isinstance(tool_input, dict) else None,
            message=_opt_str(raw.get("message")),
        )

    def tool_verb(self, tool_name: str) -> str | None:
        return self.tool_verbs.get(tool_name)

    def get_default_permissions(self, kind: AgentKind | str) -> list[str]:
        if AgentKind(kind) == AgentKind.DURABLE:
            return list(self.default_durable_permissions)
        return list(self.default_quick_permissions)

    async def get_model_options(self) -> list[ModelOption]:
        return list(self.fallback_model_options)

    async def model_options_from_help(
        self, parser: Callable[[str], list[ModelOption] | None]
    ) -> list[ModelOption]:
        """Model choices parsed from ``--help``, else the static fallback list."""
        try:
            help_text = await read_help_output(await self.locate_binary())
        except (BinaryNotFoundError, OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Using static model list for {self.id}: {e}")
            return list(self.fallback_model_options)
        return parser(help_text) or list(self.fallback_model_options)

    def instructions_path(self, worktree_path: str) -> Path:
        return Path(worktree_path) / self.conventions.config_dir / (
            self.conventions.local_instructions_file
        )

    def read_instructions(self, worktree_path: str) -> str:
        return read_text_or_empty(self.instructions_path(worktree_path))

    def write_instructions(self, worktree_path: str, content: str) -> None:
        path = self.instructions_path(worktree_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def info(self) -> OrchestratorInfo:
        return OrchestratorInfo(
            id=self.id,
            display_name=self.display_name,
            badge=self.badge,
            capabilities=self.capabilities,
        )


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None
