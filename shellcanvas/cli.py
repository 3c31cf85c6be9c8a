"""CLI interface for shell-canvas.

Entry point: shell-canvas <subcommand> [args...]

`show` runs a session process in the current terminal (this is what a
spawned pane runs). Everything else is a controller: it spawns panes, or
talks to a running session over its socket.
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

from . import config


def _fail(message: str) -> None:
    print(message, file=sys.stderr)
    sys.exit(1)


def _run_client(coro, failure: str):
    """Run a client coroutine; connection problems and timeouts exit 1."""
    try:
        return asyncio.run(coro)
    except asyncio.TimeoutError:
        _fail(f"{failure}: Timeout waiting for response")
    except OSError as e:
        _fail(f"{failure}: {e}")


def _load_json_arg(value: str | None, what: str) -> dict | None:
    if not value:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        _fail(f"Error: invalid {what} JSON: {e}")
    if not isinstance(data, dict):
        _fail(f"Error: {what} must be a JSON object")
    return data


# --- Subcommands ---


def cmd_show(args):
    """Run a session in this terminal until it exits."""
    from .errors import SpawnFailureError
    from .logging_config import setup_process_logging
    from .session import run_session
    from .types import TERMINAL_KIND, TerminalConfig

    if args.kind != TERMINAL_KIND:
        _fail(f"Error: canvas kind '{args.kind}' is not supported (only '{TERMINAL_KIND}')")

    session_id = args.id or f"{args.kind}-1"
    setup_process_logging(f"session-{session_id}", console=False)

    raw = args.config
    if args.config_file:
        raw = Path(args.config_file).read_text()
    terminal_config = TerminalConfig.from_dict(_load_json_arg(raw, "config"), scenario=args.scenario)

    # Window title
    sys.stdout.write(f"\x1b]0;canvas: {args.kind}\x07")
    sys.stdout.flush()

    socket = Path(args.socket) if args.socket else None
    try:
        code = asyncio.run(run_session(session_id, terminal_config, scenario=args.scenario, socket=socket))
    except SpawnFailureError as e:
        _fail(f"Error: {e}")
    sys.exit(code)


def cmd_spawn(args):
    """Spawn a session (or a raw shell) in a tmux pane."""
    from .errors import SpawnFailureError
    from .spawn import spawn_session, spawn_terminal_pane, wait_for_socket

    session_id = args.id or f"{args.kind}-1"
    try:
        if args.tmux_shell:
            cfg = _load_json_arg(args.config, "config") or {}
            pane = spawn_terminal_pane(
                session_id,
                shell=cfg.get("shell"),
                cwd=cfg.get("cwd"),
                initial_command=cfg.get("initialCommand"),
                name=args.name,
            )
            print(f"Spawned tmux terminal '{session_id}' in pane {pane}")
            return

        pane = spawn_session(
            args.kind,
            session_id,
            config_json=args.config,
            scenario=args.scenario,
            force_new=args.new_pane,
            name=args.name,
        )
    except SpawnFailureError as e:
        _fail(f"Error: {e}")

    print(f"Spawned {args.kind} canvas '{session_id}' in pane {pane}")
    if not args.no_wait and not asyncio.run(wait_for_socket(session_id)):
        _fail(f"Warning: session '{session_id}' did not open its socket in time")


def cmd_env(args):
    """Show detected terminal environment."""
    from .panes import in_tmux

    inside = in_tmux()
    print("Terminal Environment:")
    print(f"  In tmux: {str(inside).lower()}")
    print(f"  Runtime dir: {config.runtime_dir()}")
    print(f"\nSummary: {'tmux' if inside else 'no tmux'}")


def cmd_update(args):
    """Send updated config to a running session."""
    from .ipc import send

    message = {"type": "update", "config": _load_json_arg(args.config, "config") or {}}
    _run_client(send(args.id, message), f"Failed to connect to canvas '{args.id}'")
    print(f"Sent update to canvas '{args.id}'")


def _query(args, message_type: str, reply_type: str, what: str):
    from .ipc import request

    reply = _run_client(
        request(
            args.id,
            {"type": message_type},
            lambda event: event.get("type") == reply_type,
            timeout=config.get_user_config()["request_timeout"],
        ),
        f"Failed to get {what} from canvas '{args.id}'",
    )
    print(json.dumps(reply.get("data") if reply else None))


def cmd_selection(args):
    """Get the current selection from a running canvas."""
    _query(args, "getSelection", "selection", "selection")


def cmd_content(args):
    """Get the current content from a running canvas."""
    _query(args, "getContent", "content", "content")


def _raw_pane(session_id: str) -> str:
    from .registry import PaneRegistry

    pane = PaneRegistry().lookup(session_id)
    if pane is None:
        _fail(f"Error: no live pane for '{session_id}'")
    return pane


def cmd_terminal_exec(args):
    """Execute a command in a running terminal session."""
    if args.raw:
        from .panes import TmuxMultiplexer
        from .spawn import terminal_exec

        if not terminal_exec(_raw_pane(args.id), args.command, TmuxMultiplexer()):
            _fail(f"Failed to execute command in terminal '{args.id}'")
        return

    from .ipc import execute_command

    def _progress(event):
        if event.get("type") == "commandStarted":
            print(f"Command started: {event.get('command')}")

    timeout = args.timeout if args.timeout is not None else config.get_user_config()["exec_timeout"]
    reply = _run_client(
        execute_command(args.id, args.command, timeout=timeout, on_message=_progress),
        f"Failed to execute command in terminal '{args.id}'",
    )
    if reply is None:
        return
    if reply.get("type") == "error":
        _fail(f"Error: {reply.get('message')}")
    print(f"Command completed with exit code: {reply.get('exitCode')}")


def cmd_terminal_output(args):
    """Print the last N lines of a terminal session's output."""
    if args.raw:
        from .panes import TmuxMultiplexer
        from .spawn import terminal_get_output

        print(terminal_get_output(_raw_pane(args.id), TmuxMultiplexer(), lines=args.lines), end="")
        return

    from .ipc import get_output

    reply = _run_client(
        get_output(args.id, args.lines, from_end=True, timeout=config.get_user_config()["request_timeout"]),
        f"Failed to get output from terminal '{args.id}'",
    )
    if reply:
        print("\n".join(line["content"] for line in reply.get("lines", [])))


def cmd_terminal_interrupt(args):
    """Send interrupt (Ctrl+C) to a running terminal session."""
    if args.raw:
        from .panes import TmuxMultiplexer
        from .spawn import terminal_interrupt

        if not terminal_interrupt(_raw_pane(args.id), TmuxMultiplexer()):
            _fail(f"Failed to interrupt terminal '{args.id}'")
    else:
        from .ipc import send

        _run_client(send(args.id, {"type": "interrupt"}), f"Failed to interrupt terminal '{args.id}'")
    print(f"Sent interrupt to terminal '{args.id}'")


def cmd_terminal_streaming(args):
    """Enable or disable output streaming for a terminal session."""
    from .ipc import send

    enabled = not args.disable
    _run_client(
        send(args.id, {"type": "setStreaming", "enabled": enabled}),
        f"Failed to set streaming for terminal '{args.id}'",
    )
    print(f"Streaming {'enabled' if enabled else 'disabled'} for terminal '{args.id}'")


def cmd_terminal_input(args):
    """Send raw input (no command framing) to a terminal session."""
    from .ipc import send

    data = args.data + ("\n" if args.newline else "")
    _run_client(send(args.id, {"type": "terminalInput", "data": data}), f"Failed to send input to '{args.id}'")


def cmd_panes(args):
    """List all active canvas panes."""
    from .registry import PaneRegistry

    panes = PaneRegistry().list()
    if not panes:
        print("No active canvas panes")
        return

    print("Active canvas panes:")
    now = time.time() * 1000
    for pane in panes:
        age = round((now - pane.created_at) / 1000)
        print(f"  {pane.session_id} ({pane.kind}) - pane {pane.pane_handle} - {age}s ago")


def cmd_close(args):
    """Close a canvas pane by ID."""
    from .registry import PaneRegistry

    if PaneRegistry().remove(args.id):
        print(f"Closed canvas pane '{args.id}'")
    else:
        _fail(f"Failed to close canvas pane '{args.id}' (not found or already closed)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shell-canvas",
        description="Shell sessions in tmux panes, driven over a unix socket",
    )
    parser.add_argument("--runtime-dir", help="Directory for sockets and the pane registry (default: /tmp)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    show_parser = subparsers.add_parser("show", help="Run a session in the current terminal")
    show_parser.add_argument("kind", nargs="?", default="terminal")
    show_parser.add_argument("--id", help="Session ID")
    show_parser.add_argument("--config", help="Session configuration (JSON)")
    show_parser.add_argument("--config-file", help="Read session configuration from a file")
    show_parser.add_argument("--socket", help="Unix socket path for IPC")
    show_parser.add_argument("--scenario", default="display", help="Scenario name (interactive, display)")
    show_parser.set_defaults(func=cmd_show)

    spawn_parser = subparsers.add_parser("spawn", help="Spawn a session in a tmux pane")
    spawn_parser.add_argument("kind", nargs="?", default="terminal")
    spawn_parser.add_argument("--id", help="Session ID")
    spawn_parser.add_argument("--config", help="Session configuration (JSON)")
    spawn_parser.add_argument("--scenario", help="Scenario name (interactive, display)")
    spawn_parser.add_argument("--new-pane", action="store_true", help="Always create a new pane")
    spawn_parser.add_argument("--name", help="Pane title (default: pane index)")
    spawn_parser.add_argument("--tmux-shell", action="store_true", help="Plain shell pane, no session process")
    spawn_parser.add_argument("--no-wait", action="store_true", help="Don't wait for the session socket")
    spawn_parser.set_defaults(func=cmd_spawn)

    env_parser = subparsers.add_parser("env", help="Show detected terminal environment")
    env_parser.set_defaults(func=cmd_env)

    update_parser = subparsers.add_parser("update", help="Send updated config to a running canvas")
    update_parser.add_argument("id")
    update_parser.add_argument("--config", help="New configuration (JSON)")
    update_parser.set_defaults(func=cmd_update)

    selection_parser = subparsers.add_parser("selection", help="Get the current selection from a canvas")
    selection_parser.add_argument("id")
    selection_parser.set_defaults(func=cmd_selection)

    content_parser = subparsers.add_parser("content", help="Get the current content from a canvas")
    content_parser.add_argument("id")
    content_parser.set_defaults(func=cmd_content)

    exec_parser = subparsers.add_parser("terminal-exec", help="Execute a command in a terminal session")
    exec_parser.add_argument("id")
    exec_parser.add_argument("command")
    exec_parser.add_argument("--timeout", type=float, help="Seconds to wait for completion (default: 5)")
    exec_parser.add_argument("--raw", action="store_true", help="Target a plain tmux shell pane")
    exec_parser.set_defaults(func=cmd_terminal_exec)

    output_parser = subparsers.add_parser("terminal-output", help="Get the last N lines of terminal output")
    output_parser.add_argument("id")
    output_parser.add_argument("--lines", type=int, default=50, help="Number of lines (default: 50)")
    output_parser.add_argument("--raw", action="store_true", help="Target a plain tmux shell pane")
    output_parser.set_defaults(func=cmd_terminal_output)

    interrupt_parser = subparsers.add_parser("terminal-interrupt", help="Send Ctrl+C to a terminal session")
    interrupt_parser.add_argument("id")
    interrupt_parser.add_argument("--raw", action="store_true", help="Target a plain tmux shell pane")
    interrupt_parser.set_defaults(func=cmd_terminal_interrupt)

    streaming_parser = subparsers.add_parser("terminal-streaming", help="Toggle output streaming")
    streaming_parser.add_argument("id")
    toggle = streaming_parser.add_mutually_exclusive_group()
    toggle.add_argument("--enable", action="store_true", help="Enable streaming (default)")
    toggle.add_argument("--disable", action="store_true", help="Disable streaming")
    streaming_parser.set_defaults(func=cmd_terminal_streaming)

    input_parser = subparsers.add_parser("terminal-input", help="Send raw input to a terminal session")
    input_parser.add_argument("id")
    input_parser.add_argument("data")
    input_parser.add_argument("--newline", action="store_true", help="Append a newline")
    input_parser.set_defaults(func=cmd_terminal_input)

    panes_parser = subparsers.add_parser("panes", help="List all active canvas panes")
    panes_parser.set_defaults(func=cmd_panes)

    close_parser = subparsers.add_parser("close", help="Close a canvas pane by ID")
    close_parser.add_argument("id")
    close_parser.set_defaults(func=cmd_close)

    return parser


def main(argv: list[str] | None = None):
    from .logging_config import setup_process_logging

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.runtime_dir:
        config.init(Path(args.runtime_dir))

    if args.command != "show":
        setup_process_logging("cli", level=logging.WARNING, file=False)

    args.func(args)


if __name__ == "__main__":
    main()
