"""Tests for session and registry dataclasses."""

import json

from shellcanvas.types import (
    DEFAULT_MAX_BUFFER_LINES,
    OutputLine,
    PaneRecord,
    PaneRegistryData,
    TerminalConfig,
    now_ms,
)


class TestOutputLine:
    def test_wire_shape(self):
        line = OutputLine(content="hi", timestamp=123, source="stderr")
        assert line.to_dict() == {"content": "hi", "timestamp": 123, "source": "stderr"}

    def test_now_ms_is_integer_millis(self):
        t = now_ms()
        assert isinstance(t, int)
        assert t > 1_600_000_000_000


class TestTerminalConfig:
    def test_from_empty_dict(self, monkeypatch):
        monkeypatch.setenv("SHELL", "/bin/zsh")
        monkeypatch.setenv("HOME", "/home/me")
        cfg = TerminalConfig.from_dict(None)
        assert cfg.shell == "/bin/zsh"
        assert cfg.cwd == "/home/me"
        assert cfg.max_buffer_lines == DEFAULT_MAX_BUFFER_LINES
        assert not cfg.streaming_enabled
        assert cfg.env is None

    def test_camel_case_keys(self):
        cfg = TerminalConfig.from_dict(
            {
                "shell": "/bin/sh",
                "cwd": "/srv",
                "env": {"PORT": 8080},
                "maxBufferLines": 50,
                "title": "build",
                "initialCommand": "make",
            }
        )
        assert cfg.shell == "/bin/sh"
        assert cfg.cwd == "/srv"
        assert cfg.env == {"PORT": "8080"}
        assert cfg.max_buffer_lines == 50
        assert cfg.title == "build"
        assert cfg.initial_command == "make"

    def test_display_scenario_streams(self):
        assert TerminalConfig.from_dict({}, scenario="display").streaming_enabled
        assert not TerminalConfig.from_dict({}, scenario="interactive").streaming_enabled

    def test_explicit_value_beats_scenario(self):
        cfg = TerminalConfig.from_dict({"streamingEnabled": False}, scenario="display")
        assert not cfg.streaming_enabled


class TestPaneRegistryData:
    def test_record_round_trip_keys(self):
        rec = PaneRecord(session_id="t1", pane_handle="%3", kind="terminal", created_at=9)
        assert rec.to_dict() == {"id": "t1", "paneId": "%3", "kind": "terminal", "createdAt": 9}
        assert PaneRecord.from_dict(rec.to_dict()) == rec

    def test_default_pane_only_when_set(self):
        data = PaneRegistryData(panes={"t1": PaneRecord("t1", "%3", "terminal", 1)})
        assert "defaultPane" not in json.loads(data.to_json())
        data.default_pane = "%2"
        assert json.loads(data.to_json())["defaultPane"] == "%2"

    def test_from_dict_missing_fields(self):
        data = PaneRegistryData.from_dict({"panes": {"x": {"paneId": "%1"}, "junk": 5}})
        assert list(data.panes) == ["x"]
        assert data.panes["x"].session_id == "x"
        assert data.panes["x"].kind == "unknown"
        assert data.default_pane is None

    def test_load_nonexistent(self, tmp_path):
        assert PaneRegistryData.load(tmp_path / "none.json") == PaneRegistryData()
