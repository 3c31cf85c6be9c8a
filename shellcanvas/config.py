"""Configuration and path helpers: safe to import from anywhere.

Every process that talks to a session must derive the same socket path from
the session id, so paths are computed from a shared runtime directory:

  {runtime_dir}/canvas-{id}.sock         session IPC socket
  {runtime_dir}/canvas-config-{id}.json  config handed to a spawned session
  {runtime_dir}/canvas-panes.json        pane registry
  {runtime_dir}/canvas-pane-id           legacy single-pane file

The runtime directory is /tmp unless init() or $SHELL_CANVAS_RUNTIME_DIR
says otherwise.
"""

import json
import os
from pathlib import Path
from typing import Any

DEFAULT_RUNTIME_DIR = Path("/tmp")
USER_CONFIG_FILE = Path(os.path.expanduser("~/.config/shell-canvas/config.json"))

_runtime_dir: Path | None = None


def init(runtime_dir: Path) -> None:
    """Pin the runtime directory for this process (tests, custom layouts)."""
    global _runtime_dir
    _runtime_dir = Path(runtime_dir)


def runtime_dir() -> Path:
    """Directory holding sockets and the pane registry."""
    if _runtime_dir is not None:
        return _runtime_dir
    env_dir = os.environ.get("SHELL_CANVAS_RUNTIME_DIR")
    if env_dir:
        return Path(env_dir)
    return DEFAULT_RUNTIME_DIR


def socket_path(session_id: str) -> Path:
    """IPC socket for a session. Deterministic so any process can dial it."""
    return runtime_dir() / f"canvas-{session_id}.sock"


def config_file(session_id: str) -> Path:
    """Temp file used to pass a JSON config to a spawned session process."""
    return runtime_dir() / f"canvas-config-{session_id}.json"


def panes_file() -> Path:
    return runtime_dir() / "canvas-panes.json"


def legacy_pane_file() -> Path:
    # Single pane id, kept only for migration from the one-pane layout
    return runtime_dir() / "canvas-pane-id"


def log_dir() -> Path:
    env_dir = os.environ.get("SHELL_CANVAS_LOG_DIR")
    if env_dir:
        return Path(env_dir)
    return Path(os.path.expanduser("~/.local/state/shell-canvas/logs"))


def default_shell() -> str:
    return os.environ.get("SHELL") or "/bin/bash"


def default_cwd() -> str:
    return os.environ.get("HOME") or "/"


# User config, cached with mtime check
_user_config_cache: dict[str, Any] | None = None
_user_config_mtime: float = 0.0

_USER_CONFIG_DEFAULTS: dict[str, Any] = {
    # Pane layout
    "split_percent": 67,  # New panes take 2/3 of the window width
    "reuse_grace_period": 0.15,  # Seconds between C-c and reissuing in a reused pane
    # Session behavior
    "initial_command_delay": 0.1,  # Seconds after ready before initial_command runs
    # Controller-side timeouts
    "socket_wait_timeout": 5.0,
    "request_timeout": 2.0,
    "exec_timeout": 5.0,
}


def get_user_config() -> dict[str, Any]:
    """Load user config, with mtime caching and defaults."""
    global _user_config_cache, _user_config_mtime
    try:
        mtime = USER_CONFIG_FILE.stat().st_mtime
    except OSError:
        mtime = 0.0
    if _user_config_cache is None or mtime != _user_config_mtime:
        config = dict(_USER_CONFIG_DEFAULTS)
        if USER_CONFIG_FILE.exists():
            try:
                loaded = json.loads(USER_CONFIG_FILE.read_text())
                if isinstance(loaded, dict):
                    config.update(loaded)
            except (OSError, json.JSONDecodeError):
                pass
        _user_config_cache = config
        _user_config_mtime = mtime
    return _user_config_cache
