"""Shell session driver: one interactive shell behind three pipes.

The user's shell is started without interactive flags, so there is no job
control or prompt rendering to fight with. Instead a bootstrap line sources
the shell's rc file once, which keeps aliases, functions and environment.

Commands go through the CompletionDetector sentinels; the driver turns
detector results into state changes and listener callbacks:

    Idle --execute--> Running --completion--> Idle
    Running --interrupt--> Idle      (SIGINT to the process group, token disarmed)
    any --process exit--> Terminated (execute/write raise SessionClosedError)

The shell runs in its own process group with a no-op INT trap, so an
interrupt kills the foreground command but not the shell itself.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import signal
import time
from pathlib import Path

from .config import default_cwd, default_shell
from .detector import CompletionDetector
from .errors import NotInitializedError, SessionClosedError, SpawnFailureError
from .logging_config import get_logger
from .types import SessionState, ShellInfo, Source

logger = get_logger(__name__)

READ_CHUNK = 4096
EXIT_DRAIN_TIMEOUT = 1.0  # Wait for readers after exit (background jobs may hold pipes)

_RC_FILES = {"bash": ".bashrc", "zsh": ".zshrc"}


class SessionListener:
    """Receives driver events. Override the callbacks you need."""

    def on_output(self, chunk: str, source: Source) -> None:
        pass

    def on_state_change(self, state: SessionState) -> None:
        pass

    def on_command_complete(self, exit_code: int, duration_ms: int) -> None:
        pass

    def on_exit(self, code: int) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        pass


def bootstrap_script(shell: str) -> str:
    """Startup lines written to the shell before any command."""
    name = Path(shell).name
    rc = _RC_FILES.get(name, ".profile")
    lines = []
    if name == "bash":
        # Non-interactive bash ignores aliases unless told otherwise
        lines.append("shopt -s expand_aliases")
    lines.append(f'[ -f "$HOME/{rc}" ] && . "$HOME/{rc}" >/dev/null 2>&1')
    lines.append("trap ':' INT")
    return "\n".join(lines) + "\n"


def _exit_status(returncode: int) -> int:
    """Shell-style exit status: death by signal N is 128+N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class ShellSession:
    """Owns one shell subprocess and its SessionState."""

    def __init__(
        self,
        shell: str | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        listener: SessionListener | None = None,
    ):
        self.shell = shell or default_shell()
        self.cwd = cwd or default_cwd()
        self.env = env or {}
        self.listener = listener or SessionListener()
        self.state = SessionState(cwd=self.cwd)

        self._detector = CompletionDetector()
        self._proc: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task] = []
        self._exit_task: asyncio.Task | None = None
        self._command_started: float | None = None
        self._closed = False

    async def start(self) -> None:
        """Launch the shell and begin reading its output."""
        if self._proc is not None:
            return

        env = {
            **os.environ,
            **self.env,
            "TERM": "xterm-256color",
            # Simple prompts; nothing decorative to strip from output
            "PS1": "$ ",
            "PS2": "> ",
        }
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.shell,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnFailureError(f"Failed to start shell {self.shell}: {e}") from e

        logger.info("Shell %s started (pid %d, cwd %s)", self.shell, self._proc.pid, self.cwd)
        self.state.pid = self._proc.pid
        self.state.cwd = self.cwd

        assert self._proc.stdout is not None and self._proc.stderr is not None
        self._readers = [
            asyncio.create_task(self._read_stream(self._proc.stdout, "stdout")),
            asyncio.create_task(self._read_stream(self._proc.stderr, "stderr")),
        ]
        self._exit_task = asyncio.create_task(self._wait_exit())

        await self._send(bootstrap_script(self.shell))
        self._emit_state()

    @property
    def started(self) -> bool:
        return self._proc is not None

    async def execute(self, command: str) -> str:
        """Send a command wrapped in completion sentinels. Returns its token."""
        self._ensure_alive()

        token = self._detector.arm()
        self.state.is_running = True
        self.state.last_exit_code = None
        self._command_started = time.monotonic()
        self._emit_state()

        try:
            await self._send(CompletionDetector.wrap(command, token))
        except (OSError, RuntimeError):
            self._detector.disarm()
            self.state.is_running = False
            self._command_started = None
            self._emit_state()
            raise
        logger.debug("Executing %r as %s", command, token)
        return token

    async def write(self, data: str) -> None:
        """Forward raw input with no command boundary (single keystrokes etc.)."""
        self._ensure_alive()
        await self._send(data)

    def interrupt(self) -> None:
        """SIGINT the foreground command and go idle without waiting for it."""
        if self._proc is None or self.state.terminated:
            return
        try:
            os.killpg(self._proc.pid, signal.SIGINT)
        except ProcessLookupError:
            pass
        self._detector.disarm()
        self._command_started = None
        self.state.is_running = False
        self._emit_state()

    def close(self) -> None:
        """Terminate the shell and release its stdin. Exit is reported later via on_exit."""
        if self._proc is None or self._closed:
            return
        self._closed = True
        if self._proc.returncode is None:
            try:
                os.killpg(self._proc.pid, signal.SIGTERM)
            except ProcessLookupError:
                pass
            except PermissionError:
                self._proc.terminate()
        if self._proc.stdin is not None:
            self._proc.stdin.close()

    async def wait_closed(self) -> int | None:
        """Wait for the exit callback to have run. Returns the exit status."""
        if self._exit_task is None:
            return None
        await self._exit_task
        return self._exit_task.result()

    def get_shell_info(self) -> ShellInfo:
        return ShellInfo(pid=self.state.pid or 0, shell=self.shell, cwd=self.state.cwd)

    # --- Internals ---

    def _ensure_alive(self) -> None:
        if self._proc is None:
            raise NotInitializedError()
        if self._closed or self.state.terminated:
            raise SessionClosedError()

    async def _send(self, data: str) -> None:
        assert self._proc is not None and self._proc.stdin is not None
        self._proc.stdin.write(data.encode("utf-8"))
        await self._proc.stdin.drain()

    def _emit_state(self) -> None:
        self.listener.on_state_change(self.state)

    async def _read_stream(self, stream: asyncio.StreamReader, source: Source) -> None:
        """Read one pipe until EOF, feeding the detector."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await stream.read(READ_CHUNK)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    self._handle_output(text, source)
            rest = decoder.decode(b"", final=True) + self._detector.flush(source)
            if rest:
                self.listener.on_output(rest, source)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Reader for %s failed", source)
            self.listener.on_error(e)

    def _handle_output(self, text: str, source: Source) -> None:
        result = self._detector.feed(text, source)
        for stale in result.stale:
            logger.info("Ignoring %s", stale)
        if result.visible:
            self.listener.on_output(result.visible, source)

        completion = result.completion
        if completion is None:
            return
        duration_ms = 0
        if self._command_started is not None:
            duration_ms = int((time.monotonic() - self._command_started) * 1000)
        self._command_started = None
        self.state.is_running = False
        self.state.last_exit_code = completion.exit_code
        self._emit_state()
        self.listener.on_command_complete(completion.exit_code, duration_ms)

    async def _wait_exit(self) -> int:
        assert self._proc is not None
        returncode = await self._proc.wait()
        if self._readers:
            _, pending = await asyncio.wait(self._readers, timeout=EXIT_DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()

        code = _exit_status(returncode)
        logger.info("Shell exited with code %d", code)
        self.state.terminated = True
        self.state.is_running = False
        self._detector.disarm()
        self._emit_state()
        self.listener.on_exit(code)
        return code
