"""IPC control plane: newline-delimited JSON over a unix socket.

Server side: IPCServer listens on the session's socket, decodes one JSON
object per line, hands each to a message handler, and broadcasts outbound
events to every connected controller.

Client side: send() / request() and the small helpers built on
them are what controllers (the CLI, the agent tools) use. Request timeouts
live here, on the caller side; the server never times anything out.

Inbound:  executeCommand, getOutput, interrupt, setStreaming, terminalInput,
          close, update, getSelection, getContent, ping
Outbound: terminalReady, output, outputBuffer, commandStarted,
          commandComplete, error, cancelled, pong
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from contextlib import suppress
from pathlib import Path
from typing import Any

from .config import socket_path
from .errors import ProtocolDecodeError
from .logging_config import get_logger

logger = get_logger(__name__)

STREAM_LIMIT = 16 * 1024 * 1024  # Max bytes in one framed message

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


def encode_message(message: dict[str, Any]) -> bytes:
    """Frame a message as one compact JSON line."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8") + b"\n"


def decode_message(line: bytes | str) -> dict[str, Any]:
    """Parse one framed line. Raises ProtocolDecodeError on anything but {"type": str, ...}."""
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolDecodeError(f"Invalid UTF-8: {e}") from e
    try:
        message = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolDecodeError(f"Invalid JSON: {e}") from e
    if not isinstance(message, dict):
        raise ProtocolDecodeError("Message is not a JSON object")
    if not isinstance(message.get("type"), str):
        raise ProtocolDecodeError("Message has no string 'type'")
    return message


class IPCServer:
    """Unix socket server with broadcast to all connected controllers."""

    def __init__(self, path: Path, handler: MessageHandler):
        self.path = path
        self.clients: list[asyncio.StreamWriter] = []
        self._handler = handler
        self._server: asyncio.Server | None = None

    @property
    def is_connected(self) -> bool:
        return bool(self.clients)

    async def start(self) -> None:
        """Bind the socket, replacing any stale socket file from a dead session."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            self.path.unlink()
        self._server = await asyncio.start_unix_server(self._handle_client, path=str(self.path), limit=STREAM_LIMIT)
        self.path.chmod(0o600)
        logger.info(f"IPC server listening on {self.path}")

    async def stop(self) -> None:
        """Close all connections and the server, and remove the socket file."""
        for writer in list(self.clients):
            writer.close()
        self.clients.clear()

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        if self.path.exists():
            with suppress(OSError):
                self.path.unlink()
        logger.info("IPC server stopped")

    def broadcast(self, event: dict[str, Any]) -> None:
        """Write an event to every live connection.

        Does not wait for drain, so every controller receives events in the
        order they were produced.
        """
        if not self.clients:
            return

        data = encode_message(event)
        dead: list[asyncio.StreamWriter] = []
        for writer in self.clients:
            if writer.is_closing():
                dead.append(writer)
                continue
            try:
                writer.write(data)
            except (ConnectionResetError, BrokenPipeError, RuntimeError) as e:
                logger.debug("Dropping controller after write failure: %s", e)
                dead.append(writer)

        for writer in dead:
            self._drop(writer)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.clients.append(writer)
        logger.info("Controller connected (%d total)", len(self.clients))
        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError as e:
                    # Oversized line; asyncio discards it and we keep reading
                    logger.warning("Dropping oversized message: %s", e)
                    continue
                if not line:
                    break
                if not line.strip():
                    continue

                try:
                    message = decode_message(line)
                except ProtocolDecodeError as e:
                    logger.warning("Dropping malformed message: %s", e)
                    continue

                try:
                    await self._handler(message)
                except Exception:
                    logger.exception("Handler failed for %s message", message.get("type"))
        except (ConnectionResetError, BrokenPipeError):
            pass
        finally:
            self._drop(writer)
            with suppress(Exception):
                await writer.wait_closed()

    def _drop(self, writer: asyncio.StreamWriter) -> None:
        if writer not in self.clients:
            return
        self.clients.remove(writer)
        writer.close()
        logger.info("Controller disconnected (%d remaining)", len(self.clients))


# --- Controller side ---


def _resolve(session_id: str, path: Path | None) -> Path:
    return path if path is not None else socket_path(session_id)


async def send(session_id: str, message: dict[str, Any], *, path: Path | None = None) -> None:
    """Connect, send one message, disconnect. No reply expected."""
    reader, writer = await asyncio.open_unix_connection(str(_resolve(session_id, path)))
    try:
        writer.write(encode_message(message))
        await writer.drain()
    finally:
        writer.close()
        with suppress(Exception):
            await writer.wait_closed()


async def request(
    session_id: str,
    message: dict[str, Any],
    until: Callable[[dict[str, Any]], bool],
    *,
    timeout: float = 2.0,
    on_message: Callable[[dict[str, Any]], None] | None = None,
    path: Path | None = None,
) -> dict[str, Any] | None:
    """Send a message and read events until `until(event)` is true.

    Returns the matching event, or None if the session closed the
    connection first. Raises asyncio.TimeoutError after `timeout` seconds.
    Every event seen (matching or not) is passed to on_message.
    """
    reader, writer = await asyncio.open_unix_connection(str(_resolve(session_id, path)), limit=STREAM_LIMIT)
    try:
        writer.write(encode_message(message))
        await writer.drain()

        async def _read() -> dict[str, Any] | None:
            while True:
                line = await reader.readline()
                if not line:
                    return None
                try:
                    event = decode_message(line)
                except ProtocolDecodeError as e:
                    logger.debug("Ignoring malformed event: %s", e)
                    continue
                if on_message:
                    on_message(event)
                if until(event):
                    return event

        return await asyncio.wait_for(_read(), timeout=timeout)
    finally:
        writer.close()
        with suppress(Exception):
            await writer.wait_closed()


def _of_type(*types: str) -> Callable[[dict[str, Any]], bool]:
    return lambda event: event.get("type") in types


async def get_output(
    session_id: str,
    line_count: int | None = None,
    from_end: bool = True,
    *,
    timeout: float = 2.0,
    path: Path | None = None,
) -> dict[str, Any] | None:
    """Fetch a buffer snapshot: {"type": "outputBuffer", "lines": [...], "totalAvailable": n}."""
    message: dict[str, Any] = {"type": "getOutput", "fromEnd": from_end}
    if line_count is not None:
        message["lineCount"] = line_count
    return await request(session_id, message, _of_type("outputBuffer"), timeout=timeout, path=path)


async def execute_command(
    session_id: str,
    command: str,
    *,
    timeout: float = 5.0,
    on_message: Callable[[dict[str, Any]], None] | None = None,
    path: Path | None = None,
) -> dict[str, Any] | None:
    """Run a command and wait for its commandComplete (or an error event)."""
    return await request(
        session_id,
        {"type": "executeCommand", "command": command},
        _of_type("commandComplete", "error"),
        timeout=timeout,
        on_message=on_message,
        path=path,
    )
