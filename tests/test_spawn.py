"""Tests for pane acquisition and session spawning (shellcanvas/spawn.py)."""

import asyncio
import shlex

import pytest

import shellcanvas.config as config
from shellcanvas.config import config_file, socket_path
from shellcanvas.errors import SpawnFailureError
from shellcanvas.registry import MemoryRegistryStore, PaneRegistry
from shellcanvas.spawn import (
    acquire_pane,
    build_show_command,
    spawn_session,
    spawn_terminal_pane,
    terminal_exec,
    terminal_get_output,
    terminal_interrupt,
    wait_for_socket,
)


@pytest.fixture
def registry(mux):
    return PaneRegistry(store=MemoryRegistryStore(), multiplexer=mux)


@pytest.fixture
def sleeps(monkeypatch):
    """Record time.sleep calls instead of sleeping."""
    calls = []
    monkeypatch.setattr("shellcanvas.spawn.time.sleep", calls.append)
    return calls


@pytest.fixture
def in_tmux(monkeypatch):
    monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,1234,0")


class TestAcquirePane:
    def test_force_new_creates_pane(self, registry, mux, sleeps):
        mux.alive.add("%2")
        registry.save("cal", "%2", "calendar")

        pane = acquire_pane("run-it", "t1", "terminal", force_new=True, registry=registry)
        assert pane == "%10"
        assert ("split-window", "run-it", None, 67) in mux.calls
        assert registry.store.load().panes["t1"].pane_handle == "%10"
        assert mux.titles["%10"] == "10"

    def test_reuses_default_pane(self, registry, mux, sleeps):
        mux.alive.add("%2")
        registry.save("cal", "%2", "calendar")

        pane = acquire_pane("run-it", "doc", "document", registry=registry)
        assert pane == "%2"
        assert mux.keys["%2"] == ["C-c", "clear && run-it", "Enter"]
        assert sleeps == [0.15]
        assert not any(call[0] == "split-window" for call in mux.calls)
        assert registry.store.load().panes["doc"].pane_handle == "%2"
        assert mux.titles["%2"] == "2"

    def test_reuse_failure_falls_back_to_new_pane(self, registry, mux, sleeps):
        mux.alive.add("%2")
        mux.send_fails.add("%2")
        registry.save("cal", "%2", "calendar")

        pane = acquire_pane("run-it", "doc", "document", registry=registry)
        assert pane == "%10"
        data = registry.store.load()
        assert data.panes["doc"].pane_handle == "%10"
        assert data.default_pane == "%10"

    def test_dead_default_pane_not_reused(self, registry, mux, sleeps):
        registry.save("cal", "%2", "calendar")
        pane = acquire_pane("run-it", "doc", "document", registry=registry)
        assert pane == "%10"
        assert "%2" not in mux.keys

    def test_no_reusable_pane_creates(self, registry, mux, sleeps):
        assert acquire_pane("run-it", "t1", "terminal", registry=registry) == "%10"

    def test_explicit_title(self, registry, mux, sleeps):
        pane = acquire_pane("run-it", "t1", "terminal", name="build", registry=registry)
        assert mux.titles[pane] == "build"

    def test_explicit_title_on_reuse(self, registry, mux, sleeps):
        mux.alive.add("%2")
        registry.save("cal", "%2", "calendar")
        acquire_pane("run-it", "doc", "document", name="docs", registry=registry)
        assert mux.titles["%2"] == "docs"

    def test_split_failure_raises(self, registry, mux, sleeps):
        mux.split_fails = True
        with pytest.raises(SpawnFailureError):
            acquire_pane("run-it", "t1", "terminal", registry=registry)
        assert registry.store.load().panes == {}

    def test_grace_period_from_user_config(self, registry, mux, sleeps):
        config.USER_CONFIG_FILE.write_text('{"reuse_grace_period": 0.5}')
        mux.alive.add("%2")
        registry.save("cal", "%2", "calendar")
        acquire_pane("run-it", "doc", "document", registry=registry)
        assert sleeps == [0.5]


class TestSpawnSession:
    def test_requires_tmux(self, registry, monkeypatch):
        monkeypatch.delenv("TMUX", raising=False)
        with pytest.raises(SpawnFailureError, match="requires tmux"):
            spawn_session("terminal", "t1", registry=registry)

    def test_show_command(self, registry, mux, in_tmux, sleeps):
        pane = spawn_session("terminal", "t1", scenario="display", force_new=True, registry=registry)
        command = next(call[1] for call in mux.calls if call[0] == "split-window")
        args = shlex.split(command)
        assert args[1:6] == ["-m", "shellcanvas.cli", "show", "terminal", "--id"]
        assert args[6] == "t1"
        assert args[args.index("--socket") + 1] == str(socket_path("t1"))
        assert args[args.index("--scenario") + 1] == "display"
        assert registry.store.load().panes["t1"].kind == "terminal"
        assert pane == "%10"

    def test_config_passed_through_file(self):
        command = build_show_command("terminal", "t1", config_json='{"cwd": "/srv"}')
        args = shlex.split(command)
        assert args[args.index("--config-file") + 1] == str(config_file("t1"))
        assert config_file("t1").read_text() == '{"cwd": "/srv"}'

    def test_no_config_no_file(self):
        command = build_show_command("terminal", "t1")
        assert "--config-file" not in command
        assert not config_file("t1").exists()


class TestTerminalPane:
    def test_requires_tmux(self, registry, monkeypatch):
        monkeypatch.delenv("TMUX", raising=False)
        with pytest.raises(SpawnFailureError):
            spawn_terminal_pane("sh1", registry=registry)

    def test_spawns_shell_and_types_initial_command(self, registry, mux, in_tmux, sleeps):
        pane = spawn_terminal_pane("sh1", shell="/bin/bash", cwd="/srv", initial_command="htop", registry=registry)
        assert ("split-window", "/bin/bash", "/srv", 67) in mux.calls
        assert mux.keys[pane] == ["htop", "Enter"]
        assert sleeps == [0.2]
        data = registry.store.load()
        assert data.panes["sh1"].kind == "terminal"
        assert data.default_pane is None

    def test_split_failure(self, registry, mux, in_tmux):
        mux.split_fails = True
        with pytest.raises(SpawnFailureError):
            spawn_terminal_pane("sh1", registry=registry)

    def test_helpers(self, mux):
        mux.alive.add("%4")
        mux.screens["%4"] = "$ ls\nfile\n"
        assert terminal_exec("%4", "ls", mux)
        assert terminal_interrupt("%4", mux)
        assert mux.keys["%4"] == ["ls", "Enter", "C-c"]
        assert terminal_get_output("%4", mux, lines=20) == "$ ls\nfile\n"
        assert ("capture", "%4", 20) in mux.calls


class TestWaitForSocket:
    async def test_already_there(self):
        socket_path("w1").touch()
        assert await wait_for_socket("w1", timeout=0.5)

    async def test_appears_later(self):
        async def _create():
            await asyncio.sleep(0.2)
            socket_path("w2").touch()

        task = asyncio.create_task(_create())
        assert await wait_for_socket("w2", timeout=5)
        await task

    async def test_timeout(self):
        assert not await wait_for_socket("never", timeout=0.3)
