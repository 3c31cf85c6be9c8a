"""Spawning sessions into tmux panes.

acquire_pane() is the pane acquisition policy:
  - force_new: always split off a new pane
  - otherwise: reuse the registry's default pane (C-c, grace period,
    `clear && <command>`), falling back to a new pane if reuse fails

The grace period between C-c and the new command is a heuristic. A process
that takes longer than that to die can still race with the new command.

Also here: raw tmux shell panes (no session process, real PTY) and the
helpers that drive them through tmux directly, plus wait_for_socket() for
controllers that need to talk to a freshly spawned session.
"""

import asyncio
import os
import shlex
import sys
import time

from watchfiles import Change, awatch

from .config import config_file, default_cwd, get_user_config, socket_path
from .errors import SpawnFailureError
from .logging_config import get_logger
from .panes import Multiplexer, in_tmux
from .registry import PaneRegistry
from .types import TERMINAL_KIND

logger = get_logger(__name__)

TERMINAL_INITIAL_COMMAND_DELAY = 0.2  # Seconds for a raw shell pane to initialize


def _title_for(mux: Multiplexer, pane: str, name: str | None) -> str:
    return name or mux.pane_index(pane)


def create_new_pane(
    command: str,
    session_id: str,
    kind: str,
    registry: PaneRegistry,
    name: str | None = None,
    cwd: str | None = None,
) -> str | None:
    """Split off a pane running command and register it. None if tmux failed."""
    pane = registry.mux.split_window(command, cwd=cwd, percent=int(get_user_config()["split_percent"]))
    if pane is None:
        logger.warning(f"tmux could not create a pane for {session_id}")
        return None
    registry.save(session_id, pane, kind)
    registry.mux.set_title(pane, _title_for(registry.mux, pane, name))
    return pane


def reuse_existing_pane(
    pane: str,
    command: str,
    mux: Multiplexer,
    grace_period: float | None = None,
) -> bool:
    """Interrupt whatever runs in pane, then clear it and run command."""
    if not mux.send_keys(pane, "C-c"):
        return False
    if grace_period is None:
        grace_period = float(get_user_config()["reuse_grace_period"])
    time.sleep(grace_period)
    return mux.send_keys(pane, f"clear && {command}", "Enter")


def acquire_pane(
    command: str,
    session_id: str,
    kind: str,
    force_new: bool = False,
    name: str | None = None,
    cwd: str | None = None,
    registry: PaneRegistry | None = None,
) -> str:
    """Get a pane running command, reusing the default pane when allowed.

    Raises SpawnFailureError if no pane could be created.
    """
    registry = registry or PaneRegistry()

    if not force_new:
        existing = registry.lookup()
        if existing:
            if reuse_existing_pane(existing, command, registry.mux):
                registry.save(session_id, existing, kind)
                registry.mux.set_title(existing, _title_for(registry.mux, existing, name))
                logger.info(f"Reused pane {existing} for {session_id}")
                return existing
            logger.info(f"Could not reuse pane {existing}, creating a new one")

    pane = create_new_pane(command, session_id, kind, registry, name=name, cwd=cwd)
    if pane is None:
        raise SpawnFailureError("Failed to spawn tmux pane")
    logger.info(f"Created pane {pane} for {session_id}")
    return pane


def build_show_command(
    kind: str,
    session_id: str,
    config_json: str | None = None,
    scenario: str | None = None,
) -> str:
    """Shell command that runs a session process for kind in a pane.

    The config is handed over through a file to avoid quoting it through
    tmux and the pane's shell.
    """
    args = [sys.executable, "-m", "shellcanvas.cli", "show", kind, "--id", session_id]
    if config_json:
        path = config_file(session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(config_json)
        args += ["--config-file", str(path)]
    args += ["--socket", str(socket_path(session_id))]
    if scenario:
        args += ["--scenario", scenario]
    return shlex.join(args)


def spawn_session(
    kind: str,
    session_id: str,
    config_json: str | None = None,
    scenario: str | None = None,
    force_new: bool = False,
    name: str | None = None,
    registry: PaneRegistry | None = None,
) -> str:
    """Start a session process in a tmux pane. Returns the pane handle."""
    if not in_tmux():
        raise SpawnFailureError("Canvas requires tmux. Please run inside a tmux session.")
    command = build_show_command(kind, session_id, config_json, scenario)
    return acquire_pane(command, session_id, kind, force_new=force_new, name=name, registry=registry)


def spawn_terminal_pane(
    session_id: str,
    shell: str | None = None,
    cwd: str | None = None,
    initial_command: str | None = None,
    name: str | None = None,
    registry: PaneRegistry | None = None,
) -> str:
    """Split off a pane running a plain shell (real PTY, no session process)."""
    if not in_tmux():
        raise SpawnFailureError("Terminal requires tmux. Please run inside a tmux session.")
    registry = registry or PaneRegistry()

    pane = create_new_pane(
        shell or os.environ.get("SHELL") or "/bin/zsh",
        session_id,
        TERMINAL_KIND,
        registry,
        name=name,
        cwd=cwd or default_cwd(),
    )
    if pane is None:
        raise SpawnFailureError("Failed to spawn tmux terminal pane")

    if initial_command:
        time.sleep(TERMINAL_INITIAL_COMMAND_DELAY)
        registry.mux.send_keys(pane, initial_command, "Enter")
    return pane


# --- Raw tmux terminal helpers ---


def terminal_exec(pane: str, command: str, mux: Multiplexer) -> bool:
    """Type a command into a raw shell pane and press Enter."""
    return mux.send_keys(pane, command, "Enter")


def terminal_get_output(pane: str, mux: Multiplexer, lines: int = 50) -> str:
    return mux.capture(pane, lines)


def terminal_interrupt(pane: str, mux: Multiplexer) -> bool:
    return mux.send_keys(pane, "C-c")


# --- Socket readiness ---


async def wait_for_socket(session_id: str, timeout: float | None = None) -> bool:
    """Wait for a session's IPC socket to appear. Returns False on timeout."""
    path = socket_path(session_id)
    if path.exists():
        return True
    if timeout is None:
        timeout = float(get_user_config()["socket_wait_timeout"])

    path.parent.mkdir(parents=True, exist_ok=True)
    stop_event = asyncio.Event()

    async def _watch() -> bool:
        # yield_on_timeout re-checks periodically in case the socket appeared
        # before the watch was set up
        async for _changes in awatch(
            path.parent,
            watch_filter=lambda change, p: change == Change.added and p == str(path),
            stop_event=stop_event,
            rust_timeout=200,
            yield_on_timeout=True,
            debounce=50,
            step=10,
        ):
            if path.exists():
                return True
        return path.exists()

    try:
        return await asyncio.wait_for(_watch(), timeout=timeout)
    except asyncio.TimeoutError:
        return path.exists()
    finally:
        stop_event.set()
