"""tmux boundary: every pane operation is one synchronous tmux call.

Calls never raise: a failed or timed-out tmux invocation is reported as
False / None / "" and logged at debug level. Pane handles are tmux pane
ids such as "%3".

Anything that only needs these operations should accept a Multiplexer so
tests can substitute a fake.
"""

from __future__ import annotations

import os
import re
import subprocess
from typing import Protocol

from .logging_config import get_logger

logger = get_logger(__name__)

TMUX_TIMEOUT = 5  # Seconds per tmux invocation

# tmux key names recognized by send-keys (sent without -l flag)
TMUX_KEY_NAMES = frozenset(
    {
        "Enter",
        "Escape",
        "Space",
        "Tab",
        "BSpace",
        "DC",
        "IC",
        "Up",
        "Down",
        "Left",
        "Right",
        "Home",
        "End",
        "PPage",
        "NPage",
        *(f"F{n}" for n in range(1, 13)),
    }
)

# Ctrl/Alt combos: C-a through C-z, C-\\, M-a through M-z
_TMUX_KEY_COMBO_RE = re.compile(r"^[CM]-.{1,2}$")


def is_tmux_key(text: str) -> bool:
    """Check if text is a tmux key name (not literal text)."""
    if text in TMUX_KEY_NAMES:
        return True
    if _TMUX_KEY_COMBO_RE.match(text):
        return True
    return False


def in_tmux() -> bool:
    return bool(os.environ.get("TMUX"))


class Multiplexer(Protocol):
    """Operations the pane registry and spawner need from tmux."""

    def split_window(self, command: str, cwd: str | None = None, percent: int = 67) -> str | None: ...

    def verify(self, pane: str) -> bool: ...

    def pane_index(self, pane: str) -> str: ...

    def set_title(self, pane: str, title: str) -> bool: ...

    def send_keys(self, pane: str, *keys: str) -> bool: ...

    def capture(self, pane: str, lines: int = 50) -> str: ...

    def kill(self, pane: str) -> bool: ...


class TmuxMultiplexer:
    """Multiplexer backed by the tmux CLI."""

    def __init__(self, binary: str = "tmux"):
        self.binary = binary

    def _run(self, *args: str) -> subprocess.CompletedProcess[str] | None:
        try:
            return subprocess.run(
                [self.binary, *args],
                capture_output=True,
                timeout=TMUX_TIMEOUT,
                text=True,
            )
        except subprocess.TimeoutExpired:
            logger.warning("tmux %s timed out after %ds", args[0], TMUX_TIMEOUT)
            return None
        except OSError as e:
            logger.debug("tmux %s failed to run: %s", args[0], e)
            return None

    def _ok(self, *args: str) -> bool:
        result = self._run(*args)
        if result is None:
            return False
        if result.returncode != 0:
            logger.debug("tmux %s failed (exit %d): %s", args[0], result.returncode, result.stderr.strip())
            return False
        return True

    def split_window(self, command: str, cwd: str | None = None, percent: int = 67) -> str | None:
        """Split the current window side by side. Returns the new pane's handle."""
        args = ["split-window", "-h", "-p", str(percent)]
        if cwd:
            args += ["-c", cwd]
        args += ["-P", "-F", "#{pane_id}", command]
        result = self._run(*args)
        if result is None or result.returncode != 0:
            return None
        pane = result.stdout.strip()
        return pane or None

    def verify(self, pane: str) -> bool:
        """Liveness check: tmux must echo the same handle back."""
        result = self._run("display-message", "-t", pane, "-p", "#{pane_id}")
        return result is not None and result.returncode == 0 and result.stdout.strip() == pane

    def pane_index(self, pane: str) -> str:
        result = self._run("display-message", "-t", pane, "-p", "#{pane_index}")
        if result is None or result.returncode != 0:
            return "0"
        return result.stdout.strip() or "0"

    def set_title(self, pane: str, title: str) -> bool:
        return self._ok("select-pane", "-t", pane, "-T", title)

    def send_keys(self, pane: str, *keys: str) -> bool:
        """Send each argument in order: key names as keys, anything else literally."""
        for key in keys:
            if is_tmux_key(key):
                ok = self._ok("send-keys", "-t", pane, key)
            else:
                ok = self._ok("send-keys", "-t", pane, "-l", key)
            if not ok:
                return False
        return True

    def capture(self, pane: str, lines: int = 50) -> str:
        """Currently rendered text of a pane, including `lines` of history."""
        result = self._run("capture-pane", "-t", pane, "-p", "-S", f"-{lines}")
        if result is None or result.returncode != 0:
            return ""
        return result.stdout

    def kill(self, pane: str) -> bool:
        return self._ok("kill-pane", "-t", pane)
