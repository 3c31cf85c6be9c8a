"""Terminal session tools: open, exec, output, interrupt, close, panes.

Each tool is a thin controller over a session's IPC socket (or, for open,
close and panes, over the pane registry). Sessions are named by id; the
agent picks the id when it opens one.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from claude_agent_sdk import tool

from ..config import get_user_config
from ..errors import SpawnFailureError
from ..ipc import execute_command, get_output, send
from ..registry import PaneRegistry
from ..spawn import spawn_session, wait_for_socket
from ..types import TERMINAL_KIND


@tool(
    "open",
    """Open a terminal session in a new tmux pane. Returns once the session
is accepting commands.

The id names the session for every other tool. Pass cwd to start
somewhere other than $HOME, and initial_command to run something as soon
as the shell is up.

By default an existing canvas pane is reused; set new_pane=true to split
off a fresh pane instead.""",
    {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "cwd": {"type": "string"},
            "initial_command": {"type": "string"},
            "name": {"type": "string"},
            "new_pane": {"type": "boolean"},
        },
        "required": ["id"],
    },
)
async def open_tool(args: dict[str, Any]) -> dict[str, Any]:
    """Spawn a session and wait for its socket."""
    session_id = args.get("id", "")
    if not session_id:
        return _error("id is required")

    config: dict[str, Any] = {}
    if args.get("cwd"):
        config["cwd"] = args["cwd"]
    if args.get("initial_command"):
        config["initialCommand"] = args["initial_command"]

    try:
        pane = await asyncio.to_thread(
            spawn_session,
            TERMINAL_KIND,
            session_id,
            json.dumps(config) if config else None,
            "interactive",
            bool(args.get("new_pane", False)),
            args.get("name"),
        )
    except SpawnFailureError as e:
        return _error(str(e))

    if not await wait_for_socket(session_id):
        return _error(f"Session {session_id} started in pane {pane} but never opened its socket.")
    return _text(f"Opened session {session_id} in pane {pane}.")


@tool(
    "exec",
    """Run a shell command in a session and wait for it to finish.

Returns the exit code and duration. Use output() afterwards to read what
the command printed. If the command is still running when the timeout
expires, it keeps running; call interrupt() to stop it.""",
    {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "command": {"type": "string"},
            "timeout": {"type": "number"},
        },
        "required": ["id", "command"],
    },
)
async def exec_tool(args: dict[str, Any]) -> dict[str, Any]:
    """Execute a command and wait for commandComplete."""
    session_id = args.get("id", "")
    command = args.get("command", "")
    if not session_id or not command:
        return _error("id and command are required")

    timeout = args.get("timeout") or get_user_config()["exec_timeout"]
    try:
        reply = await execute_command(session_id, command, timeout=timeout)
    except asyncio.TimeoutError:
        return _text(f"Command still running after {timeout}s. Use output() to check on it or interrupt() to stop it.")
    except OSError as e:
        return _error(f"Cannot reach session {session_id}: {e}")

    if reply is None:
        return _error(f"Session {session_id} closed the connection.")
    if reply.get("type") == "error":
        return _error(reply.get("message", "unknown error"))
    return _text(f"Exit code {reply.get('exitCode')} ({reply.get('duration')}ms).")


@tool(
    "output",
    """Read the last lines of a session's output (default 50).

Lines are prefixed with their source when it is not stdout:
[stderr] for error output, [system] for session notes such as the
echoed command line.""",
    {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
            "lines": {"type": "integer"},
        },
        "required": ["id"],
    },
)
async def output_tool(args: dict[str, Any]) -> dict[str, Any]:
    """Fetch an output buffer snapshot."""
    session_id = args.get("id", "")
    if not session_id:
        return _error("id is required")

    try:
        reply = await get_output(
            session_id,
            args.get("lines", 50),
            from_end=True,
            timeout=get_user_config()["request_timeout"],
        )
    except asyncio.TimeoutError:
        return _error(f"Session {session_id} did not answer in time.")
    except OSError as e:
        return _error(f"Cannot reach session {session_id}: {e}")

    if reply is None:
        return _error(f"Session {session_id} closed the connection.")

    lines = reply.get("lines", [])
    if not lines:
        return _text("(no output)")
    rendered = [
        line["content"] if line.get("source") == "stdout" else f"[{line.get('source')}] {line['content']}"
        for line in lines
    ]
    total = reply.get("totalAvailable", len(lines))
    header = f"Last {len(lines)} of {total} lines:"
    return _text(header + "\n" + "\n".join(rendered))


@tool(
    "interrupt",
    """Send Ctrl-C to the command running in a session.""",
    {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
        },
        "required": ["id"],
    },
)
async def interrupt_tool(args: dict[str, Any]) -> dict[str, Any]:
    session_id = args.get("id", "")
    if not session_id:
        return _error("id is required")
    try:
        await send(session_id, {"type": "interrupt"})
    except OSError as e:
        return _error(f"Cannot reach session {session_id}: {e}")
    return _text(f"Interrupt sent to {session_id}.")


@tool(
    "close",
    """Close a session: kill its pane and forget it.""",
    {
        "type": "object",
        "properties": {
            "id": {"type": "string"},
        },
        "required": ["id"],
    },
)
async def close_tool(args: dict[str, Any]) -> dict[str, Any]:
    """Kill a session's pane."""
    session_id = args.get("id", "")
    if not session_id:
        return _error("id is required")

    if await asyncio.to_thread(PaneRegistry().remove, session_id):
        return _text(f"Session {session_id} closed.")
    return _error(f"Session {session_id} not found or already closed.")


@tool(
    "panes",
    """List sessions whose panes are still alive.""",
    {},
)
async def panes_tool(args: dict[str, Any]) -> dict[str, Any]:
    records = await asyncio.to_thread(PaneRegistry().list)
    if not records:
        return _text("No active sessions.")
    return _text("\n".join(f"{r.session_id} ({r.kind}) - pane {r.pane_handle}" for r in records))


def _text(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}]}


def _error(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": f"Error: {text}"}], "is_error": True}
