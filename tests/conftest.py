"""Shared fixtures for shell-canvas tests."""

import shutil
import tempfile
from pathlib import Path

import pytest

import shellcanvas.config as config


# Snapshot the real registry file so we can detect accidental writes.
_REAL_PANES_FILE = config.DEFAULT_RUNTIME_DIR / "canvas-panes.json"
_REAL_PANES_EXISTED = _REAL_PANES_FILE.exists()
_REAL_PANES_SNAPSHOT: bytes | None = _REAL_PANES_FILE.read_bytes() if _REAL_PANES_EXISTED else None


@pytest.fixture(autouse=True)
def _guard_real_registry():
    """Fail the test if it accidentally wrote to the real pane registry."""
    yield
    now_exists = _REAL_PANES_FILE.exists()
    if not _REAL_PANES_EXISTED and now_exists:
        pytest.fail(f"Test created the real pane registry: {_REAL_PANES_FILE}")
    if _REAL_PANES_EXISTED and now_exists and _REAL_PANES_FILE.read_bytes() != _REAL_PANES_SNAPSHOT:
        pytest.fail(f"Test modified the real pane registry: {_REAL_PANES_FILE}")


@pytest.fixture(autouse=True)
def runtime_dir():
    """Point sockets and the registry at a fresh temp dir.

    Kept short (not tmp_path) because unix socket paths are limited to
    ~100 bytes.
    """
    d = Path(tempfile.mkdtemp(prefix="sc-"))
    old = config._runtime_dir
    config.init(d)
    yield d
    config._runtime_dir = old
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(autouse=True)
def _isolate_user_config(tmp_path, monkeypatch):
    """Never read ~/.config/shell-canvas/config.json during tests."""
    monkeypatch.setattr(config, "USER_CONFIG_FILE", tmp_path / "user-config.json")
    monkeypatch.setattr(config, "_user_config_cache", None)
    monkeypatch.setattr(config, "_user_config_mtime", 0.0)


class FakeMultiplexer:
    """In-memory stand-in for tmux. Panes are live while in `alive`."""

    def __init__(self, alive=()):
        self.alive: set[str] = set(alive)
        self.calls: list[tuple] = []
        self.titles: dict[str, str] = {}
        self.keys: dict[str, list[str]] = {}
        self.screens: dict[str, str] = {}
        self.send_fails: set[str] = set()
        self.split_fails = False
        self._next = 10

    def split_window(self, command, cwd=None, percent=67):
        self.calls.append(("split-window", command, cwd, percent))
        if self.split_fails:
            return None
        pane = f"%{self._next}"
        self._next += 1
        self.alive.add(pane)
        return pane

    def verify(self, pane):
        self.calls.append(("verify", pane))
        return pane in self.alive

    def pane_index(self, pane):
        return pane.lstrip("%")

    def set_title(self, pane, title):
        self.titles[pane] = title
        return pane in self.alive

    def send_keys(self, pane, *keys):
        self.calls.append(("send-keys", pane, keys))
        if pane in self.send_fails or pane not in self.alive:
            return False
        self.keys.setdefault(pane, []).extend(keys)
        return True

    def capture(self, pane, lines=50):
        self.calls.append(("capture", pane, lines))
        return self.screens.get(pane, "")

    def kill(self, pane):
        self.calls.append(("kill", pane))
        if pane in self.alive:
            self.alive.remove(pane)
            return True
        return False


@pytest.fixture
def mux():
    return FakeMultiplexer()
