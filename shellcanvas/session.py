"""Terminal session process: shell driver + output buffer + IPC server.

One session per process. The process runs inside a tmux pane (started by
`shell-canvas show terminal ...`), mirrors its buffer to the pane as plain
text, and serves controllers on the session socket until the shell exits,
a controller sends `close`, or the process is signalled.

Everything runs on one event loop. Buffer appends and the events they
produce happen in the same callback, so controllers see output, command
lifecycle and error events in the order they occurred.
"""

import asyncio
import signal
import sys
from contextlib import suppress
from pathlib import Path
from typing import Any, TextIO

from .buffer import OutputBuffer
from .config import get_user_config, socket_path
from .errors import ProtocolDecodeError, classify_exception
from .ipc import IPCServer
from .logging_config import get_logger
from .shell import SessionListener, ShellSession
from .types import OutputLine, SessionState, Source, TerminalConfig

logger = get_logger(__name__)


class TerminalSession(SessionListener):
    """Serves one shell to any number of controllers."""

    def __init__(
        self,
        session_id: str,
        config: TerminalConfig,
        scenario: str = "interactive",
        mirror: TextIO | None = None,
        socket: Path | None = None,
        shell_factory=ShellSession,
    ):
        self.session_id = session_id
        self.config = config
        self.scenario = scenario
        self.streaming = config.streaming_enabled
        self.exit_code: int | None = None

        self.buffer = OutputBuffer(config.max_buffer_lines)
        self.shell = shell_factory(shell=config.shell, cwd=config.cwd, env=config.env, listener=self)
        self.server = IPCServer(socket or socket_path(session_id), self.handle_message)

        self._mirror = mirror
        self._done: asyncio.Event | None = None
        self._initial_task: asyncio.Task | None = None

    # --- Lifecycle ---

    async def start(self) -> None:
        """Bind the socket, launch the shell and announce readiness.

        Raises SpawnFailureError if the shell cannot be launched.
        """
        self._done = asyncio.Event()
        await self.server.start()
        try:
            await self.shell.start()
        except Exception:
            await self.server.stop()
            raise

        self.server.broadcast(
            {
                "type": "terminalReady",
                "scenario": self.scenario,
                "shellInfo": self.shell.get_shell_info().to_dict(),
            }
        )
        logger.info(f"Session {self.session_id} ready ({self.scenario})")

        if self.config.initial_command:
            self._initial_task = asyncio.create_task(self._run_initial_command(self.config.initial_command))

    async def wait(self) -> int | None:
        """Block until the session ends. Returns the shell's exit code if it exited."""
        assert self._done is not None, "start() first"
        await self._done.wait()
        return self.exit_code

    async def stop(self) -> None:
        """Terminate the shell and tear down the socket."""
        if self._initial_task is not None:
            self._initial_task.cancel()
        self.shell.close()
        await self.server.stop()
        if self._done is not None:
            self._done.set()

    def cancel(self, reason: str) -> None:
        """Tell controllers the session is going away, then end it."""
        logger.info(f"Session {self.session_id} cancelled: {reason}")
        self.server.broadcast({"type": "cancelled", "reason": reason})
        if self._done is not None:
            self._done.set()

    async def _run_initial_command(self, command: str) -> None:
        # Let the rc file finish sourcing before the first command
        await asyncio.sleep(get_user_config()["initial_command_delay"])
        try:
            await self.execute(command)
        except Exception as e:
            self.report_error(e)

    # --- Buffer ---

    def append(self, text: str, source: Source) -> list[OutputLine]:
        """Append to the buffer, mirror to the pane, stream if enabled."""
        lines = self.buffer.append(text, source)
        if not lines:
            return lines
        if self._mirror is not None:
            self._mirror.write("".join(f"{line.content}\n" for line in lines))
            self._mirror.flush()
        if self.streaming:
            self.server.broadcast({"type": "output", "chunk": text, "source": source})
        return lines

    def report_error(self, error: BaseException) -> None:
        info = classify_exception(error)
        logger.warning(f"Session error ({info.category}): {info.text}")
        self.append(f"Error: {info.text}", "system")
        self.server.broadcast({"type": "error", "message": info.text})

    # --- Operations ---

    async def execute(self, command: str) -> None:
        self.append(f"$ {command}", "system")
        self.server.broadcast({"type": "commandStarted", "command": command})
        await self.shell.execute(command)

    def interrupt(self) -> None:
        self.shell.interrupt()
        self.append("^C", "system")

    def snapshot(self, line_count: int | None = None, from_end: bool = True) -> dict[str, Any]:
        lines = self.buffer.get_lines(line_count, from_end)
        return {
            "type": "outputBuffer",
            "lines": [line.to_dict() for line in lines],
            "totalAvailable": self.buffer.total_received(),
        }

    # --- Inbound messages ---

    async def handle_message(self, message: dict[str, Any]) -> None:
        """Dispatch one decoded controller message."""
        msg_type = message["type"]
        try:
            if msg_type == "executeCommand":
                command = message.get("command")
                if not isinstance(command, str):
                    raise ProtocolDecodeError("executeCommand requires a string 'command'")
                await self.execute(command)

            elif msg_type == "getOutput":
                line_count = message.get("lineCount")
                if line_count is not None and not isinstance(line_count, int):
                    raise ProtocolDecodeError("getOutput 'lineCount' must be an integer")
                self.server.broadcast(self.snapshot(line_count, message.get("fromEnd", True) is not False))

            elif msg_type == "interrupt":
                self.interrupt()

            elif msg_type == "setStreaming":
                self.streaming = bool(message.get("enabled"))
                logger.info(f"Streaming {'enabled' if self.streaming else 'disabled'}")

            elif msg_type == "terminalInput":
                data = message.get("data")
                if not isinstance(data, str):
                    raise ProtocolDecodeError("terminalInput requires a string 'data'")
                await self.shell.write(data)

            elif msg_type == "close":
                logger.info("Close requested by controller")
                self.shell.close()
                if self._done is not None:
                    self._done.set()

            elif msg_type == "ping":
                self.server.broadcast({"type": "pong"})

            elif msg_type in ("update", "getSelection", "getContent"):
                pass  # Other canvas kinds only

            else:
                logger.warning(f"Ignoring unknown message type: {msg_type}")
        except Exception as e:
            self.report_error(e)

    # --- SessionListener ---

    def on_output(self, chunk: str, source: Source) -> None:
        self.append(chunk, source)

    def on_state_change(self, state: SessionState) -> None:
        logger.debug(f"State: running={state.is_running} exit={state.last_exit_code} terminated={state.terminated}")

    def on_command_complete(self, exit_code: int, duration_ms: int) -> None:
        self.server.broadcast({"type": "commandComplete", "exitCode": exit_code, "duration": duration_ms})

    def on_exit(self, code: int) -> None:
        self.exit_code = code
        self.append(f"\nShell exited with code {code}", "system")
        if self._done is not None:
            self._done.set()

    def on_error(self, error: BaseException) -> None:
        self.report_error(error)


async def run_session(
    session_id: str,
    config: TerminalConfig,
    scenario: str = "interactive",
    mirror: TextIO | None = sys.stdout,
    socket: Path | None = None,
) -> int:
    """Run a terminal session until it ends. Returns a process exit code."""
    session = TerminalSession(session_id, config, scenario=scenario, mirror=mirror, socket=socket)
    await session.start()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, session.cancel, f"Received {signal.Signals(sig).name}")

    try:
        exit_code = await session.wait()
    finally:
        await session.stop()
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(session.shell.wait_closed(), timeout=2.0)

    return exit_code or 0
