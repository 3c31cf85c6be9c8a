"""Tests for error kinds and classification."""

import pytest

from shellcanvas.errors import (
    CanvasError,
    NotInitializedError,
    ProtocolDecodeError,
    SessionClosedError,
    SpawnFailureError,
    StaleCompletion,
    classify_exception,
)


class TestMessages:
    def test_default_messages(self):
        assert str(NotInitializedError()) == "Shell not initialized"
        assert str(SessionClosedError()) == "Session closed"

    def test_stale_completion_carries_token(self):
        err = StaleCompletion("abc-3", 130)
        assert err.token == "abc-3"
        assert err.exit_code == 130
        assert "abc-3" in str(err)

    @pytest.mark.parametrize(
        "cls", [NotInitializedError, SessionClosedError, SpawnFailureError, ProtocolDecodeError, StaleCompletion]
    )
    def test_all_are_canvas_errors(self, cls):
        assert issubclass(cls, CanvasError)


class TestClassify:
    def test_spawn_failure_is_fatal(self):
        info = classify_exception(SpawnFailureError("no such shell"))
        assert info.fatal
        assert info.category == "spawn_failure"
        assert info.text == "no such shell"

    @pytest.mark.parametrize(
        "error, category",
        [
            (NotInitializedError(), "not_initialized"),
            (SessionClosedError(), "session_closed"),
            (ProtocolDecodeError("bad line"), "protocol"),
            (BrokenPipeError(), "session_closed"),
            (PermissionError("denied"), "io"),
            (ValueError("odd"), "unknown"),
        ],
    )
    def test_non_fatal(self, error, category):
        info = classify_exception(error)
        assert not info.fatal
        assert info.category == category

    def test_empty_message_uses_type_name(self):
        assert classify_exception(ValueError()).text == "ValueError"
