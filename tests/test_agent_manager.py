"""Tests for the agent lifecycle manager."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from clubhouse.agents import AgentManager, HookEvent, SpawnAgentRequest
from clubhouse.config import ClubhouseConfig
from clubhouse.orchestrators import UnknownOrchestratorError
from clubhouse.orchestrators.models import HookEventKind
from clubhouse.pipeline import ConfigPipeline


@pytest.fixture
def manager(stub_providers, fake_pty, fake_listener) -> AgentManager:
    return AgentManager(
        ClubhouseConfig(),
        pipeline=ConfigPipeline(),
        pty_manager=fake_pty,
        listener=fake_listener,
        providers=stub_providers,
    )


def _request(project: Path, agent_id: str = "A", **kwargs) -> SpawnAgentRequest:
    return SpawnAgentRequest(
        agent_id=agent_id, project_path=str(project), cwd=str(project), **kwargs
    )


def _set_project_orchestrator(project: Path, orchestrator_id: str) -> None:
    settings = project / ".clubhouse" / "settings.json"
    settings.parent.mkdir(parents=True, exist_ok=True)
    settings.write_text(json.dumps({"orchestrator": orchestrator_id}))


def _claude_settings(project: Path) -> Path:
    return project / ".claude" / "settings.local.json"


class TestResolveOrchestrator:
    def test_default(self, manager: AgentManager, project: Path):
        assert manager.resolve_orchestrator(str(project)).id == "claude-code"

    def test_project_setting_beats_default(self, manager: AgentManager, project: Path):
        _set_project_orchestrator(project, "codex-cli")
        assert manager.resolve_orchestrator(str(project)).id == "codex-cli"

    def test_override_beats_project_setting(self, manager: AgentManager, project: Path):
        _set_project_orchestrator(project, "codex-cli")
        provider = manager.resolve_orchestrator(str(project), "copilot-cli")
        assert provider.id == "copilot-cli"

    def test_corrupt_project_setting_is_unset(self, manager: AgentManager, project: Path):
        settings = project / ".clubhouse" / "settings.json"
        settings.parent.mkdir()
        settings.write_text("{oops")
        assert manager.resolve_orchestrator(str(project)).id == "claude-code"

    def test_configured_default(self, stub_providers, project: Path):
        manager = AgentManager(
            ClubhouseConfig(default_orchestrator="codex-cli"),
            pty_manager=MagicMock(),
            listener=MagicMock(),
            providers=stub_providers,
        )
        assert manager.resolve_orchestrator(str(project)).id == "codex-cli"

    def test_unknown_override_raises(self, manager: AgentManager, project: Path):
        with pytest.raises(UnknownOrchestratorError, match="Unknown orchestrator: nope"):
            manager.resolve_orchestrator(str(project), "nope")


class TestSpawnAgent:
    @pytest.mark.asyncio
    async def test_end_to_end_spawn_and_exit(self, manager, project, fake_pty, fake_listener):
        await manager.spawn_agent(_request(project, kind="durable"))

        nonce = manager.get_agent_nonce("A")
        assert nonce
        assert manager.get_agent_project_path("A") == str(project)
        assert manager.get_agent_orchestrator("A") is None
        fake_listener.wait_ready.assert_awaited_once()

        settings = _claude_settings(project)
        assert "PreToolUse" in json.loads(settings.read_text())["hooks"]

        call = fake_pty.spawn.call_args
        agent_id, cwd, binary, args, env = call.args
        assert (agent_id, cwd, binary) == ("A", str(project), "/usr/local/bin/claude")
        assert env["CLUBHOUSE_AGENT_ID"] == "A"
        assert env["CLUBHOUSE_HOOK_NONCE"] == nonce

        call.kwargs["on_exit"](0)

        assert not settings.exists()
        assert manager.get_agent_nonce("A") is None
        assert manager.get_agent_project_path("A") is None

    @pytest.mark.asyncio
    async def test_snapshot_taken_before_hooks_written(self, manager, project, stub_providers):
        settings = _claude_settings(project)
        settings.parent.mkdir()
        settings.write_text('{"permissions": {"allow": ["Read"]}}')

        order = []
        original_snapshot = manager.pipeline.snapshot_file
        original_write = stub_providers["claude-code"].write_hooks_config

        def snapshot(agent_id, path):
            order.append("snapshot")
            original_snapshot(agent_id, path)

        async def write_hooks(cwd, hook_url):
            order.append("write")
            await original_write(cwd, hook_url)

        manager.pipeline.snapshot_file = snapshot
        stub_providers["claude-code"].write_hooks_config = write_hooks

        await manager.spawn_agent(_request(project))

        assert order == ["snapshot", "write"]
        snap = manager.pipeline._snapshots[str(settings)]
        assert snap.original_content == '{"permissions": {"allow": ["Read"]}}'

    @pytest.mark.asyncio
    async def test_user_edits_survive_restore(self, manager, project, fake_pty):
        await manager.spawn_agent(_request(project))
        settings = _claude_settings(project)
        data = json.loads(settings.read_text())
        data["permissions"] = {"allow": ["Bash(make:*)"]}
        settings.write_text(json.dumps(data))

        fake_pty.spawn.call_args.kwargs["on_exit"](0)

        assert json.loads(settings.read_text()) == {"permissions": {"allow": ["Bash(make:*)"]}}

    @pytest.mark.asyncio
    async def test_override_recorded(self, manager, project, fake_pty):
        await manager.spawn_agent(_request(project, orchestrator="copilot-cli"))
        assert manager.get_agent_orchestrator("A") == "copilot-cli"
        assert (project / ".github" / "hooks" / "hooks.json").exists()
        assert fake_pty.spawn.call_args.args[2] == "/usr/local/bin/copilot"

    @pytest.mark.asyncio
    async def test_provider_without_hooks_skips_snapshot(self, manager, project):
        await manager.spawn_agent(_request(project, orchestrator="codex-cli"))
        assert manager.pipeline.tracked_paths("A") == set()
        assert not (project / ".codex").exists()

    @pytest.mark.asyncio
    async def test_allowed_tools_override_defaults(self, manager, project, fake_pty):
        await manager.spawn_agent(_request(project, kind="quick", allowed_tools=["Read"]))
        args = fake_pty.spawn.call_args.args[3]
        assert args == ["--allowedTools", "Read"]

    @pytest.mark.asyncio
    async def test_quick_defaults(self, manager, project, fake_pty):
        await manager.spawn_agent(_request(project, kind="quick"))
        args = fake_pty.spawn.call_args.args[3]
        assert "Read" in args
        assert "Bash(git:*)" in args

    @pytest.mark.asyncio
    async def test_durable_defaults(self, manager, project, fake_pty):
        await manager.spawn_agent(_request(project, kind="durable"))
        args = fake_pty.spawn.call_args.args[3]
        assert "Bash(git:*)" in args
        assert "Read" not in args

    @pytest.mark.asyncio
    async def test_each_spawn_gets_fresh_nonce(self, manager, project):
        await manager.spawn_agent(_request(project, agent_id="A"))
        await manager.spawn_agent(_request(project, agent_id="B"))
        assert manager.get_agent_nonce("A") != manager.get_agent_nonce("B")

    @pytest.mark.asyncio
    async def test_shared_file_restored_by_last_exit(self, manager, project, fake_pty):
        await manager.spawn_agent(_request(project, agent_id="A"))
        exit_a = fake_pty.spawn.call_args.kwargs["on_exit"]
        await manager.spawn_agent(_request(project, agent_id="B"))
        exit_b = fake_pty.spawn.call_args.kwargs["on_exit"]
        settings = _claude_settings(project)

        exit_b(0)
        assert "hooks" in json.loads(settings.read_text())
        exit_a(0)
        assert not settings.exists()

    @pytest.mark.asyncio
    async def test_respawn_does_not_leak_refcount(self, manager, project):
        await manager.spawn_agent(_request(project))
        await manager.spawn_agent(_request(project))
        assert manager.pipeline.ref_count(_claude_settings(project)) == 1

    @pytest.mark.asyncio
    async def test_overlapping_spawn_of_same_id_rejected(
        self, manager, project, fake_pty, fake_listener
    ):
        from clubhouse.agents import AgentBusyError

        release = asyncio.Event()

        async def slow_ready():
            await release.wait()
            return 4567

        fake_listener.wait_ready = AsyncMock(side_effect=slow_ready)
        first = asyncio.ensure_future(manager.spawn_agent(_request(project)))
        await asyncio.sleep(0)
        first_nonce = manager.get_agent_nonce("A")

        with pytest.raises(AgentBusyError):
            await manager.spawn_agent(_request(project))
        assert manager.get_agent_nonce("A") == first_nonce

        release.set()
        await first
        settings = _claude_settings(project)
        assert manager.pipeline.ref_count(settings) == 1

        fake_pty.spawn.call_args.kwargs["on_exit"](0)
        assert manager.pipeline.ref_count(settings) == 0
        assert not settings.exists()

    @pytest.mark.asyncio
    async def test_rejects_path_traversal_id(self, manager, project, fake_pty):
        for bad in ("../etc", "a/b", "a\\b", "a\nb", ""):
            with pytest.raises(ValueError):
                await manager.spawn_agent(_request(project, agent_id=bad))
        fake_pty.spawn.assert_not_called()
        assert manager.tracked_agents() == []

    @pytest.mark.asyncio
    async def test_unknown_orchestrator_raises(self, manager, project, fake_listener):
        with pytest.raises(UnknownOrchestratorError):
            await manager.spawn_agent(_request(project, orchestrator="nope"))
        fake_listener.wait_ready.assert_not_called()
        assert manager.get_agent_nonce("A") is None

    @pytest.mark.asyncio
    async def test_spawn_failure_rolls_back(self, manager, project, fake_pty):
        fake_pty.spawn.side_effect = OSError("fork failed")
        with pytest.raises(OSError):
            await manager.spawn_agent(_request(project))
        assert not _claude_settings(project).exists()
        assert manager.get_agent_nonce("A") is None
        assert manager.pipeline.tracked_agents() == []


class TestKillAndTracking:
    @pytest.mark.asyncio
    async def test_kill_sends_exit_command(self, manager, project, fake_pty):
        await manager.kill_agent("A", str(project))
        fake_pty.graceful_kill.assert_called_once_with("A", "/exit\r")

    @pytest.mark.asyncio
    async def test_kill_does_not_restore(self, manager, project):
        await manager.spawn_agent(_request(project))
        await manager.kill_agent("A", str(project))
        assert manager.pipeline.ref_count(_claude_settings(project)) == 1

    @pytest.mark.asyncio
    async def test_untrack_leaves_pipeline_alone(self, manager, project):
        await manager.spawn_agent(_request(project, orchestrator="claude-code"))
        manager.untrack_agent("A")
        assert manager.get_agent_project_path("A") is None
        assert manager.get_agent_orchestrator("A") is None
        assert manager.get_agent_nonce("A") is None
        assert manager.pipeline.ref_count(_claude_settings(project)) == 1

    @pytest.mark.asyncio
    async def test_exit_subscribers(self, manager, project, fake_pty):
        exits = []
        manager.on_agent_exit(lambda agent_id, code: exits.append((agent_id, code)))
        await manager.spawn_agent(_request(project))
        fake_pty.spawn.call_args.kwargs["on_exit"](137)
        assert exits == [("A", 137)]

    @pytest.mark.asyncio
    async def test_reap_orphans(self, manager, project, fake_pty):
        await manager.spawn_agent(_request(project))
        fake_pty.is_running.return_value = False

        assert manager.reap_orphans() == ["A"]
        assert not _claude_settings(project).exists()
        assert manager.tracked_agents() == []

    @pytest.mark.asyncio
    async def test_reap_keeps_running_agents(self, manager, project):
        await manager.spawn_agent(_request(project))
        assert manager.reap_orphans() == []
        assert manager.get_agent_nonce("A")

    @pytest.mark.asyncio
    async def test_shutdown(self, manager, project, fake_pty, fake_listener):
        await manager.spawn_agent(_request(project))
        await manager.shutdown()

        fake_pty.kill_all.assert_awaited_once()
        fake_listener.stop.assert_awaited_once()
        assert not _claude_settings(project).exists()
        assert manager.tracked_agents() == []


class TestAvailability:
    @pytest.mark.asyncio
    async def test_unknown_orchestrator(self, manager):
        result = await manager.check_availability(orchestrator_id="nope")
        assert result.available is False
        assert result.error == "Unknown orchestrator: nope"

    @pytest.mark.asyncio
    async def test_uses_project_setting(self, manager, project, stub_providers):
        _set_project_orchestrator(project, "codex-cli")
        stub_providers["codex-cli"].check_availability = AsyncMock(
            return_value=MagicMock(available=True)
        )
        result = await manager.check_availability(str(project))
        assert result.available is True
        stub_providers["codex-cli"].check_availability.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_default_without_project(self, manager):
        result = await manager.check_availability()
        assert result.available is True

    def test_available_orchestrators(self, manager):
        infos = manager.get_available_orchestrators()
        assert [i.id for i in infos] == ["claude-code", "codex-cli", "copilot-cli"]
        assert infos[0].display_name == "Claude Code"


class TestHookEvents:
    @pytest.mark.asyncio
    async def test_dispatches_normalized_event(self, manager, project):
        events: list[HookEvent] = []
        manager.on_hook_event(events.append)
        await manager.spawn_agent(_request(project))

        await manager._handle_hook_event(
            "A", {"hook_event_name": "PreToolUse", "tool_name": "Bash", "tool_input": {"command": "ls"}}
        )

        assert len(events) == 1
        event = events[0]
        assert event.agent_id == "A"
        assert event.kind == HookEventKind.PRE_TOOL
        assert event.tool_verb == "Running command"
        assert event.tool_input == {"command": "ls"}
        assert event.timestamp > 1_600_000_000_000

    @pytest.mark.asyncio
    async def test_unknown_tool_verb(self, manager, project):
        events: list[HookEvent] = []
        manager.on_hook_event(events.append)
        await manager.spawn_agent(_request(project))

        await manager._handle_hook_event(
            "A", {"hook_event_name": "PostToolUse", "tool_name": "mcp__db__query"}
        )
        assert events[0].tool_verb == "Using mcp__db__query"

    @pytest.mark.asyncio
    async def test_untracked_agent_ignored(self, manager):
        events = []
        manager.on_hook_event(events.append)
        await manager._handle_hook_event("ghost", {"hook_event_name": "Stop"})
        assert events == []

    @pytest.mark.asyncio
    async def test_async_subscriber_and_failures(self, manager, project):
        seen = []

        async def good(event: HookEvent) -> None:
            seen.append(event.kind)

        def bad(event: HookEvent) -> None:
            raise RuntimeError("boom")

        manager.on_hook_event(bad)
        unsubscribe = manager.on_hook_event(good)
        await manager.spawn_agent(_request(project))

        await manager._handle_hook_event("A", {"hook_event_name": "Stop"})
        unsubscribe()
        await manager._handle_hook_event("A", {"hook_event_name": "Stop"})
        assert seen == [HookEventKind.STOP]
