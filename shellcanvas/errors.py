"""Error kinds for the session engine and their classification.

Most failures inside a session are reported to controllers as an `error`
event and the session keeps running. Only a shell that never launched is
fatal: with no process there is nothing left to control.
"""

from dataclasses import dataclass


class CanvasError(RuntimeError):
    """Base class for session engine errors."""


class NotInitializedError(CanvasError):
    """Operation attempted before the shell process exists."""

    def __init__(self, message: str = "Shell not initialized"):
        super().__init__(message)


class SessionClosedError(CanvasError):
    """Operation attempted after the shell process exited or was closed."""

    def __init__(self, message: str = "Session closed"):
        super().__init__(message)


class SpawnFailureError(CanvasError):
    """tmux could not create a pane, or the shell could not be launched."""


class ProtocolDecodeError(CanvasError):
    """An inbound IPC line was not a JSON object with a string `type`."""


class StaleCompletion(CanvasError):
    """A completion marker arrived for a command that is no longer current.

    Never surfaced to controllers; the detector logs and discards it.
    """

    def __init__(self, token: str, exit_code: int):
        super().__init__(f"Stale completion for {token} (exit {exit_code})")
        self.token = token
        self.exit_code = exit_code


@dataclass
class ErrorInfo:
    """Structured error classification."""

    fatal: bool  # Session process cannot continue
    category: str  # "not_initialized", "session_closed", "spawn_failure", "protocol", "io", "unknown"
    text: str  # Message for the error event / log


def classify_exception(error: BaseException) -> ErrorInfo:
    """Classify an exception raised while serving a session."""
    text = str(error) or type(error).__name__

    if isinstance(error, SpawnFailureError):
        return ErrorInfo(fatal=True, category="spawn_failure", text=text)
    if isinstance(error, NotInitializedError):
        return ErrorInfo(fatal=False, category="not_initialized", text=text)
    if isinstance(error, SessionClosedError):
        return ErrorInfo(fatal=False, category="session_closed", text=text)
    if isinstance(error, ProtocolDecodeError):
        return ErrorInfo(fatal=False, category="protocol", text=text)
    if isinstance(error, (BrokenPipeError, ConnectionResetError)):
        # Shell stdin went away under us; the exit callback follows
        return ErrorInfo(fatal=False, category="session_closed", text=text)
    if isinstance(error, OSError):
        return ErrorInfo(fatal=False, category="io", text=text)

    return ErrorInfo(fatal=False, category="unknown", text=text)
