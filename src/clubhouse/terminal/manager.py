from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable
from dataclasses import dataclass, field

from clubhouse.config import ClubhouseConfig
from clubhouse.terminal.pty_session import PTYSession

logger = logging.getLogger(__name__)

DataListener = Callable[[str, bytes], None]
ExitCallback = Callable[[int], None]


class SessionLimitError(RuntimeError):
    """Raised when spawning would exceed the configured session limit."""


@dataclass
class PtyManager:
    """Supervises one PTY-attached process per agent id."""

    config: ClubhouseConfig = field(default_factory=ClubhouseConfig)
    _sessions: dict[str, PTYSession] = field(default_factory=dict)
    _kill_timers: dict[str, asyncio.TimerHandle] = field(default_factory=dict)
    _data_listeners: list[DataListener] = field(default_factory=list)

    async def spawn(
        self,
        agent_id: str,
        cwd: str,
        binary: str,
        args: list[str],
        env: dict[str, str] | None = None,
        on_exit: ExitCallback | None = None,
    ) -> PTYSession:
        previous = self._sessions.pop(agent_id, None)
        if previous is not None:
            logger.info(f"Replacing running session for agent {agent_id}")
            self._cancel_kill_timer(agent_id)
            await previous.close()

        if len(self._sessions) >= self.config.max_sessions:
            raise SessionLimitError(f"Maximum sessions ({self.config.max_sessions}) reached")

        session = PTYSession(
            binary=binary,
            args=list(args),
            cwd=cwd,
            env=dict(env or {}),
            cols=self.config.default_cols,
            rows=self.config.default_rows,
            max_buffer=self.config.max_output_buffer,
        )
        session.on_data = lambda data: self._emit_data(agent_id, data)
        session.on_exit = lambda code: self._handle_exit(agent_id, session, code, on_exit)

        await session.start()
        self._sessions[agent_id] = session
        logger.info(f"Spawned {binary} for agent {agent_id}: pid={session.pid}")
        return session

    def _handle_exit(
        self,
        agent_id: str,
        session: PTYSession,
        exit_code: int,
        on_exit: ExitCallback | None,
    ) -> None:
        # A replaced session's exit must not tear down its successor
        if self._sessions.get(agent_id) is not session:
            logger.debug(f"Ignoring exit of stale session for agent {agent_id}")
            return

        self._sessions.pop(agent_id, None)
        self._cancel_kill_timer(agent_id)
        logger.info(f"Agent {agent_id} exited with code {exit_code}")
        if on_exit is not None:
            on_exit(exit_code)

    def _emit_data(self, agent_id: str, data: bytes) -> None:
        for listener in list(self._data_listeners):
            try:
                listener(agent_id, data)
            except Exception:
                logger.exception(f"Data listener failed for agent {agent_id}")

    def _cancel_kill_timer(self, agent_id: str) -> None:
        timer = self._kill_timers.pop(agent_id, None)
        if timer is not None:
            timer.cancel()

    def add_data_listener(self, listener: DataListener) -> Callable[[], None]:
        self._data_listeners.append(listener)

        def remove() -> None:
            if listener in self._data_listeners:
                self._data_listeners.remove(listener)

        return remove

    def get_session(self, agent_id: str) -> PTYSession | None:
        return self._sessions.get(agent_id)

    def is_running(self, agent_id: str) -> bool:
        session = self._sessions.get(agent_id)
        return session is not None and session.is_running

    def write(self, agent_id: str, data: bytes | str) -> None:
        session = self._sessions.get(agent_id)
        if session is not None:
            session.write(data)

    def resize(self, agent_id: str, cols: int, rows: int) -> None:
        session = self._sessions.get(agent_id)
        if session is not None:
            session.resize(cols, rows)

    def get_buffer(self, agent_id: str) -> bytes:
        session = self._sessions.get(agent_id)
        return session.get_buffer() if session is not None else b""

    def graceful_kill(self, agent_id: str, exit_input: str) -> None:
        """Ask the agent to exit on its own; force-kill after the timeout."""
        session = self._sessions.get(agent_id)
        if session is None:
            return

        try:
            session.write(exit_input)
        except OSError as e:
            logger.warning(f"Could not send exit command to agent {agent_id}: {e}")

        self._cancel_kill_timer(agent_id)
        loop = asyncio.get_running_loop()
        self._kill_timers[agent_id] = loop.call_later(
            self.config.kill_timeout, self._force_kill, agent_id, session
        )

    def _force_kill(self, agent_id: str, session: PTYSession) -> None:
        self._kill_timers.pop(agent_id, None)
        if self._sessions.get(agent_id) is not session or not session.is_running:
            return
        logger.warning(f"Agent {agent_id} ignored exit command, sending SIGKILL")
        session.terminate(signal.SIGKILL)

    async def kill(self, agent_id: str) -> None:
        session = self._sessions.get(agent_id)
        if session is None:
            return
        self._cancel_kill_timer(agent_id)
        await session.close()
        # close() reports the exit when it reaps the child; drop it regardless
        if self._sessions.get(agent_id) is session:
            self._sessions.pop(agent_id, None)

    async def kill_all(self) -> None:
        for agent_id in list(self._sessions):
            await self.kill(agent_id)

    def list_sessions(self) -> list[dict]:
        result = []
        for agent_id, session in self._sessions.items():
            result.append(
                {
                    "agent_id": agent_id,
                    "pid": session.pid,
                    "binary": session.binary,
                    "cwd": session.cwd,
                    "cols": session.cols,
                    "rows": session.rows,
                    "active": session.active,
                }
            )
        return result
