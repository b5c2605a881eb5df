"""CLI entry point for clubhouse."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import cast

from clubhouse import __version__
from clubhouse.agents import AgentBusyError, AgentManager, SpawnAgentRequest
from clubhouse.config import load_config
from clubhouse.fsutil import read_json, write_json
from clubhouse.hooks.entries import strip_clubhouse_hooks
from clubhouse.hooks.listener import HookListenerError
from clubhouse.orchestrators import BinaryNotFoundError, UnknownOrchestratorError
from clubhouse.orchestrators.models import AgentKind
from clubhouse.pipeline import get_hooks_config_path, is_disposable
from clubhouse.terminal import SessionLimitError


def _flag(value: bool) -> str:
    return "yes" if value else "no"


def _cmd_orchestrators(_args: argparse.Namespace) -> None:
    manager = AgentManager(load_config())
    for info in manager.get_available_orchestrators():
        badge = f" [{info.badge}]" if info.badge else ""
        caps = info.capabilities
        print(f"{info.id}: {info.display_name}{badge}")
        print(
            f"  hooks={_flag(caps.hooks)} headless={_flag(caps.headless)}"
            f" resume={_flag(caps.session_resume)} permissions={_flag(caps.permissions)}"
        )


def _cmd_check(args: argparse.Namespace) -> None:
    manager = AgentManager(load_config())
    project = cast(str | None, args.project)
    orchestrator = cast(str | None, args.orchestrator)

    result = asyncio.run(manager.check_availability(project, orchestrator))
    if result.available:
        print("available")
    else:
        print(f"unavailable: {result.error}", file=sys.stderr)
        sys.exit(1)


def _cmd_restore(args: argparse.Namespace) -> None:
    manager = AgentManager(load_config())
    project = cast(str, args.project)
    cwd = cast(str | None, args.cwd) or project

    try:
        provider = manager.resolve_orchestrator(project, cast(str | None, args.orchestrator))
    except UnknownOrchestratorError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    hooks_path = get_hooks_config_path(provider, cwd)
    if hooks_path is None:
        print(f"{provider.display_name} has no hooks file")
        return

    path = Path(hooks_path)
    settings = read_json(path)
    stripped = strip_clubhouse_hooks(settings)
    if stripped == settings:
        print(f"No clubhouse hooks in {path}")
        return
    if is_disposable(stripped):
        path.unlink()
        print(f"Removed {path} (only clubhouse hooks were left)")
        return
    write_json(path, stripped)
    print(f"Removed clubhouse hooks from {path}")


async def _run_agent(manager: AgentManager, request: SpawnAgentRequest) -> int:
    loop = asyncio.get_running_loop()
    exited: asyncio.Future[int] = loop.create_future()

    def on_exit(agent_id: str, exit_code: int) -> None:
        if agent_id == request.agent_id and not exited.done():
            exited.set_result(exit_code)

    def on_output(agent_id: str, data: bytes) -> None:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()

    manager.on_agent_exit(on_exit)
    manager.pty_manager.add_data_listener(on_output)

    def request_exit() -> None:
        asyncio.ensure_future(
            manager.kill_agent(request.agent_id, request.project_path, request.orchestrator)
        )

    stdin_fd = sys.stdin.fileno() if sys.stdin.isatty() else None
    try:
        await manager.spawn_agent(request)
        loop.add_signal_handler(signal.SIGINT, request_exit)
        if stdin_fd is not None:
            loop.add_reader(
                stdin_fd,
                lambda: manager.pty_manager.write(request.agent_id, os.read(stdin_fd, 1024)),
            )
        return await exited
    finally:
        if stdin_fd is not None:
            loop.remove_reader(stdin_fd)
        loop.remove_signal_handler(signal.SIGINT)
        await manager.shutdown()


def _cmd_run(args: argparse.Namespace) -> None:
    manager = AgentManager(load_config())
    project = cast(str, args.project)
    request = SpawnAgentRequest(
        agent_id=cast(str, args.agent_id),
        project_path=project,
        cwd=cast(str | None, args.cwd) or project,
        kind=AgentKind(cast(str, args.kind)),
        model=cast(str | None, args.model),
        mission=cast(str | None, args.mission),
        allowed_tools=cast(list[str] | None, args.allow),
        orchestrator=cast(str | None, args.orchestrator),
    )

    try:
        exit_code = asyncio.run(_run_agent(manager, request))
    except (
        UnknownOrchestratorError,
        BinaryNotFoundError,
        SessionLimitError,
        AgentBusyError,
        HookListenerError,
        ValueError,
    ) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(exit_code)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="clubhouse",
        description="Run coding-agent CLIs with temporary hook wiring",
    )
    _ = parser.add_argument(
        "-V", "--version", action="version", version=f"clubhouse {__version__}"
    )
    _ = parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # orchestrators subcommand
    _ = subparsers.add_parser("orchestrators", help="List supported coding-agent CLIs")

    # check subcommand
    check_p = subparsers.add_parser("check", help="Check that an orchestrator's CLI is usable")
    _ = check_p.add_argument("--project", default=None, help="Project whose setting applies")
    _ = check_p.add_argument("--orchestrator", default=None, help="Orchestrator id")

    # run subcommand
    run_p = subparsers.add_parser("run", help="Spawn one agent and attach to it")
    _ = run_p.add_argument("agent_id", help="Agent identifier")
    _ = run_p.add_argument("--project", required=True, help="Project root")
    _ = run_p.add_argument("--cwd", default=None, help="Working directory (default: project)")
    _ = run_p.add_argument(
        "--kind", choices=[k.value for k in AgentKind], default=AgentKind.DURABLE.value
    )
    _ = run_p.add_argument("--orchestrator", default=None, help="Orchestrator id override")
    _ = run_p.add_argument("--model", default=None, help="Model id")
    _ = run_p.add_argument("--mission", default=None, help="Initial prompt")
    _ = run_p.add_argument(
        "--allow", action="append", default=None, help="Allowed tool (repeatable)"
    )

    # restore subcommand
    restore_p = subparsers.add_parser(
        "restore", help="Strip leftover clubhouse hooks from a project's hooks file"
    )
    _ = restore_p.add_argument("--project", required=True, help="Project root")
    _ = restore_p.add_argument("--cwd", default=None, help="Worktree (default: project)")
    _ = restore_p.add_argument("--orchestrator", default=None, help="Orchestrator id override")

    args = parser.parse_args(sys.argv[1:])
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    dispatch = {
        "orchestrators": _cmd_orchestrators,
        "check": _cmd_check,
        "run": _cmd_run,
        "restore": _cmd_restore,
    }
    command = cast(str | None, args.command)
    handler = dispatch.get(command) if command is not None else None
    if handler:
        handler(args)
    else:
        parser.print_help()
        sys.exit(1)
