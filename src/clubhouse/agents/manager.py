"""Agent lifecycle: spawn, kill and track coding-agent subprocesses.

Each spawned agent gets a fresh nonce, hook wiring in its provider's
settings file (snapshotted first), and an exit callback that restores that
file once the process is gone.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import secrets
import time
from collections.abc import Awaitable, Callable
from typing import Any

from clubhouse.agents.models import HookEvent, SpawnAgentRequest
from clubhouse.agents.settings import read_project_orchestrator
from clubhouse.config import ClubhouseConfig
from clubhouse.hooks.entries import AGENT_ID_ENV, NONCE_ENV
from clubhouse.hooks.listener import HookListener
from clubhouse.orchestrators import (
    OrchestratorProvider,
    UnknownOrchestratorError,
    get_all_providers,
    get_provider,
)
from clubhouse.orchestrators.models import Availability, OrchestratorInfo, SpawnOpts
from clubhouse.pipeline import ConfigPipeline, get_hooks_config_path
from clubhouse.terminal import PtyManager

logger = logging.getLogger(__name__)

HookEventCallback = Callable[[HookEvent], Awaitable[None] | None]
AgentExitCallback = Callable[[str, int], Awaitable[None] | None]

_UNSAFE_AGENT_ID = re.compile(r"[/\\\x00-\x1f\x7f]|\.\.")


class AgentBusyError(RuntimeError):
    """Raised when a spawn is requested for an agent that is still spawning."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent {agent_id} is already spawning")
        self.agent_id = agent_id


def validate_agent_id(agent_id: str) -> None:
    """Reject ids that are unsafe as a URL path segment or env value."""
    if not agent_id or _UNSAFE_AGENT_ID.search(agent_id):
        logger.warning(f"Rejected agent id (possible path traversal): {agent_id!r}")
        raise ValueError(f"Invalid agent id: {agent_id!r}")


def _now_ms() -> int:
    return int(time.time() * 1000)


class AgentManager:
    def __init__(
        self,
        config: ClubhouseConfig | None = None,
        *,
        pipeline: ConfigPipeline | None = None,
        pty_manager: PtyManager | None = None,
        listener: HookListener | None = None,
        providers: dict[str, OrchestratorProvider] | None = None,
    ) -> None:
        self.config = config or ClubhouseConfig()
        self.pipeline = pipeline or ConfigPipeline()
        self.pty_manager = pty_manager or PtyManager(config=self.config)
        self.listener = listener or HookListener(
            self.config, self.get_agent_nonce, self._handle_hook_event
        )
        self._providers = providers

        self._project_paths: dict[str, str] = {}
        self._orchestrators: dict[str, str] = {}
        self._nonces: dict[str, str] = {}
        self._spawning: set[str] = set()

        self._hook_listeners: list[HookEventCallback] = []
        self._exit_listeners: list[AgentExitCallback] = []
        self._background: set[asyncio.Future] = set()

    # -- registry -----------------------------------------------------------

    def _lookup(self, orchestrator_id: str) -> OrchestratorProvider | None:
        if self._providers is not None:
            return self._providers.get(orchestrator_id)
        return get_provider(orchestrator_id)

    def _all_providers(self) -> list[OrchestratorProvider]:
        if self._providers is not None:
            return list(self._providers.values())
        return get_all_providers()

    def resolve_orchestrator(
        self, project_path: str, override: str | None = None
    ) -> OrchestratorProvider:
        """Override, then project setting, then the configured default."""
        orchestrator_id = (
            override
            or read_project_orchestrator(project_path)
            or self.config.default_orchestrator
        )
        provider = self._lookup(orchestrator_id)
        if provider is None:
            raise UnknownOrchestratorError(orchestrator_id)
        return provider

    # -- tracking -----------------------------------------------------------

    def get_agent_project_path(self, agent_id: str) -> str | None:
        return self._project_paths.get(agent_id)

    def get_agent_orchestrator(self, agent_id: str) -> str | None:
        return self._orchestrators.get(agent_id)

    def get_agent_nonce(self, agent_id: str) -> str | None:
        return self._nonces.get(agent_id)

    def tracked_agents(self) -> list[str]:
        return list(self._nonces)

    def untrack_agent(self, agent_id: str) -> None:
        """Forget an agent. Does not restore its config files."""
        self._project_paths.pop(agent_id, None)
        self._orchestrators.pop(agent_id, None)
        self._nonces.pop(agent_id, None)

    # -- lifecycle ----------------------------------------------------------

    async def spawn_agent(self, request: SpawnAgentRequest) -> None:
        agent_id = request.agent_id
        validate_agent_id(agent_id)
        provider = self.resolve_orchestrator(request.project_path, request.orchestrator)
        if agent_id in self._spawning:
            raise AgentBusyError(agent_id)

        if agent_id in self._nonces:
            # Release the previous run's snapshot so its ref count cannot leak
            logger.info(f"Respawning tracked agent {agent_id}")
            self.pipeline.restore_for_agent(agent_id)

        self._project_paths[agent_id] = request.project_path
        if request.orchestrator:
            self._orchestrators[agent_id] = request.orchestrator
        else:
            self._orchestrators.pop(agent_id, None)
        nonce = secrets.token_urlsafe(32)
        self._nonces[agent_id] = nonce

        self._spawning.add(agent_id)
        try:
            await self._launch(request, provider, nonce)
        except Exception:
            logger.exception(f"Failed to spawn agent {agent_id}")
            self._restore_quietly(agent_id)
            self.untrack_agent(agent_id)
            raise
        finally:
            self._spawning.discard(agent_id)

    async def _launch(
        self, request: SpawnAgentRequest, provider: OrchestratorProvider, nonce: str
    ) -> None:
        agent_id = request.agent_id
        await self.listener.wait_ready()

        hooks_path = get_hooks_config_path(provider, request.cwd)
        if hooks_path is not None:
            self.pipeline.snapshot_file(agent_id, hooks_path)
        await provider.write_hooks_config(request.cwd, self.listener.url)

        if request.allowed_tools is not None:
            allowed_tools = list(request.allowed_tools)
        else:
            allowed_tools = provider.get_default_permissions(request.kind)

        command = await provider.build_spawn_command(
            SpawnOpts(
                cwd=request.cwd,
                model=request.model,
                mission=request.mission,
                system_prompt=request.system_prompt,
                allowed_tools=allowed_tools,
                resume=request.resume,
                agent_id=agent_id,
            )
        )
        env = {**command.env, AGENT_ID_ENV: agent_id, NONCE_ENV: nonce}

        await self.pty_manager.spawn(
            agent_id,
            request.cwd,
            command.binary,
            command.args,
            env,
            on_exit=lambda exit_code: self._handle_exit(agent_id, exit_code),
        )
        logger.info(f"Agent {agent_id} spawned with {provider.id} in {request.cwd}")

    async def kill_agent(
        self, agent_id: str, project_path: str, orchestrator: str | None = None
    ) -> None:
        """Send the provider's exit keystrokes; the exit callback does the cleanup."""
        provider = self.resolve_orchestrator(project_path, orchestrator)
        self.pty_manager.graceful_kill(agent_id, provider.get_exit_command())

    def _handle_exit(self, agent_id: str, exit_code: int) -> None:
        try:
            self.pipeline.restore_for_agent(agent_id)
        except OSError as e:
            logger.error(f"Config restore failed for agent {agent_id}: {e}")
        finally:
            self.untrack_agent(agent_id)

        for callback in list(self._exit_listeners):
            self._invoke(callback, agent_id, exit_code)

    def _restore_quietly(self, agent_id: str) -> None:
        try:
            self.pipeline.restore_for_agent(agent_id)
        except OSError as e:
            logger.error(f"Config restore failed for agent {agent_id}: {e}")

    def reap_orphans(self) -> list[str]:
        """Restore and forget tracked agents whose process is no longer running."""
        reaped = []
        for agent_id in self.tracked_agents():
            if agent_id in self._spawning or self.pty_manager.is_running(agent_id):
                continue
            logger.warning(f"Reaping orphaned agent {agent_id}")
            self._restore_quietly(agent_id)
            self.untrack_agent(agent_id)
            reaped.append(agent_id)
        return reaped

    async def shutdown(self) -> None:
        """Stop every agent, restore every tracked file, stop the listener."""
        await self.pty_manager.kill_all()
        try:
            self.pipeline.restore_all()
        finally:
            self._project_paths.clear()
            self._orchestrators.clear()
            self._nonces.clear()
            await self.listener.stop()

    # -- availability -------------------------------------------------------

    async def check_availability(
        self, project_path: str | None = None, orchestrator_id: str | None = None
    ) -> Availability:
        orchestrator_id = (
            orchestrator_id
            or (read_project_orchestrator(project_path) if project_path else None)
            or self.config.default_orchestrator
        )
        provider = self._lookup(orchestrator_id)
        if provider is None:
            return Availability(
                available=False, error=str(UnknownOrchestratorError(orchestrator_id))
            )
        return await provider.check_availability()

    def get_available_orchestrators(self) -> list[OrchestratorInfo]:
        return [provider.info() for provider in self._all_providers()]

    # -- hook events --------------------------------------------------------

    def on_hook_event(self, callback: HookEventCallback) -> Callable[[], None]:
        self._hook_listeners.append(callback)
        return lambda: self._unsubscribe(self._hook_listeners, callback)

    def on_agent_exit(self, callback: AgentExitCallback) -> Callable[[], None]:
        self._exit_listeners.append(callback)
        return lambda: self._unsubscribe(self._exit_listeners, callback)

    @staticmethod
    def _unsubscribe(listeners: list, callback: Any) -> None:
        if callback in listeners:
            listeners.remove(callback)

    def _provider_for_agent(self, agent_id: str) -> OrchestratorProvider | None:
        project_path = self._project_paths.get(agent_id)
        if project_path is None:
            return None
        try:
            return self.resolve_orchestrator(project_path, self._orchestrators.get(agent_id))
        except UnknownOrchestratorError as e:
            logger.warning(f"Cannot attribute hook event for agent {agent_id}: {e}")
            return None

    async def _handle_hook_event(self, agent_id: str, payload: dict[str, Any]) -> None:
        provider = self._provider_for_agent(agent_id)
        if provider is None:
            return

        normalized = provider.parse_hook_event(payload)
        if normalized is None:
            logger.debug(f"Ignoring unrecognized hook payload from agent {agent_id}")
            return

        tool_verb = None
        if normalized.tool_name:
            tool_verb = provider.tool_verb(normalized.tool_name) or f"Using {normalized.tool_name}"

        event = HookEvent(
            agent_id=agent_id,
            kind=normalized.kind,
            tool_name=normalized.tool_name,
            tool_input=normalized.tool_input,
            message=normalized.message,
            tool_verb=tool_verb,
            timestamp=_now_ms(),
        )
        for callback in list(self._hook_listeners):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Hook event subscriber failed for agent {agent_id}")

    def _invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
        except Exception:
            logger.exception("Agent exit subscriber failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background.add(task)
            task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Future) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Agent exit subscriber failed: {task.exception()}")
