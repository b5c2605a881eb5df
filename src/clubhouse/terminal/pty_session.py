from __future__ import annotations

import asyncio
import fcntl
import logging
import os
import pty
import signal
import struct
import sys
import termios
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

READ_CHUNK = 65536
EXIT_REPOLL_DELAY = 0.05
SUPPORTED_PLATFORMS = ("linux", "darwin")


def check_platform() -> None:
    if sys.platform not in SUPPORTED_PLATFORMS:
        raise RuntimeError(f"PTY not supported on {sys.platform}. Unix-only feature.")


@dataclass
class PTYSession:
    binary: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    cols: int = 120
    rows: int = 30
    max_buffer: int = 512 * 1024
    on_data: Callable[[bytes], None] | None = None
    on_exit: Callable[[int], None] | None = None

    pid: int | None = field(default=None, init=False)
    master_fd: int | None = field(default=None, init=False)
    active: bool = field(default=False, init=False)
    exit_code: int | None = field(default=None, init=False)
    _buffer: bytearray = field(default_factory=bytearray, init=False)
    _closed: bool = field(default=False, init=False)
    _exit_reported: bool = field(default=False, init=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False)

    def __post_init__(self):
        if self.cwd is None:
            self.cwd = os.getcwd()

    @property
    def is_running(self) -> bool:
        return self.master_fd is not None and self.active

    async def start(self) -> None:
        check_platform()

        child_env = {**os.environ, **self.env, "TERM": "xterm-256color"}
        argv = [self.binary, *self.args]

        self.pid, self.master_fd = pty.fork()

        if self.pid == 0:
            try:
                if self.cwd:
                    os.chdir(self.cwd)
                os.execvpe(self.binary, argv, child_env)
            except OSError as e:
                os.write(2, f"exec {self.binary} failed: {e}\r\n".encode())
            os._exit(127)

        self.active = True
        os.set_blocking(self.master_fd, False)
        self._set_winsize(self.cols, self.rows)

        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(self.master_fd, self._read_callback)
        logger.debug(f"PTY session started: pid={self.pid} binary={self.binary}")

    def _set_winsize(self, cols: int, rows: int) -> None:
        if self.master_fd is None:
            return
        winsize = struct.pack("HHHH", rows, cols, 0, 0)
        try:
            fcntl.ioctl(self.master_fd, termios.TIOCSWINSZ, winsize)
        except OSError as e:
            logger.warning(f"Failed to set winsize: {e}")

    def _append_output(self, data: bytes) -> None:
        self._buffer.extend(data)
        overflow = len(self._buffer) - self.max_buffer
        if overflow > 0:
            del self._buffer[:overflow]

    def _read_callback(self) -> None:
        if self.master_fd is None:
            return
        try:
            data = os.read(self.master_fd, READ_CHUNK)
        except BlockingIOError:
            return
        except OSError:
            # EIO on Linux once the child side of the PTY is gone
            self._stop_reading()
            self._check_exit()
            return

        if not data:
            self._stop_reading()
            self._check_exit()
            return

        self._append_output(data)
        if self.on_data is not None:
            try:
                self.on_data(data)
            except Exception:
                logger.exception(f"PTY data listener failed: pid={self.pid}")

    def _stop_reading(self) -> None:
        if self._loop is not None and self.master_fd is not None:
            self._loop.remove_reader(self.master_fd)

    def _check_exit(self) -> None:
        if self.pid is None or self._exit_reported:
            return
        try:
            pid, status = os.waitpid(self.pid, os.WNOHANG)
        except ChildProcessError:
            self._report_exit(-1)
            return

        if pid == self.pid:
            self._report_exit(os.waitstatus_to_exitcode(status))
        elif self._loop is not None:
            # Output closed before the child became reapable
            self._loop.call_later(EXIT_REPOLL_DELAY, self._check_exit)

    def _report_exit(self, exit_code: int) -> None:
        if self._exit_reported:
            return
        self._exit_reported = True
        self.active = False
        self.exit_code = exit_code
        logger.debug(f"PTY process exited: pid={self.pid}, code={exit_code}")
        if self.on_exit is not None:
            try:
                self.on_exit(exit_code)
            except Exception:
                logger.exception(f"PTY exit callback failed: pid={self.pid}")

    def get_buffer(self) -> bytes:
        return bytes(self._buffer)

    def write(self, data: bytes | str) -> None:
        if self.master_fd is None:
            raise RuntimeError("PTY not started")
        if isinstance(data, str):
            data = data.encode()
        os.write(self.master_fd, data)

    def resize(self, cols: int, rows: int) -> None:
        if self.master_fd is None:
            raise RuntimeError("PTY not started")
        self.cols = cols
        self.rows = rows
        self._set_winsize(cols, rows)

    def terminate(self, sig: int = signal.SIGTERM) -> None:
        if self.pid is None or self._exit_reported:
            return
        try:
            os.kill(self.pid, sig)
        except ProcessLookupError:
            pass

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        master_fd = self.master_fd
        pid = self.pid

        if self._loop and master_fd is not None:
            self._stop_reading()

        if pid is not None and not self._exit_reported:
            self.terminate(signal.SIGHUP)

            for _ in range(10):
                self._check_exit()
                if self._exit_reported:
                    break
                await asyncio.sleep(0.1)
            else:
                self.terminate(signal.SIGKILL)
                await asyncio.sleep(0.1)
                self._check_exit()

        self.master_fd = None
        self.active = False
        if master_fd is not None:
            try:
                os.close(master_fd)
            except OSError as e:
                logger.warning(f"Failed to close master_fd: {e}")

        logger.debug(f"PTY session closed: pid={pid}")

    async def __aenter__(self) -> PTYSession:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
