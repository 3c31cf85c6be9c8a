"""Type definitions for sessions, output and panes.

Wire and on-disk shapes use camelCase keys so independently written
controllers can read them; the dataclasses use snake_case.
"""

from dataclasses import asdict, dataclass, field
import json
from pathlib import Path
import time
from typing import Any, Literal
from typing_extensions import Self

from .config import default_cwd, default_shell

Source = Literal["stdout", "stderr", "system"]

TERMINAL_KIND = "terminal"
DEFAULT_MAX_BUFFER_LINES = 10000


def now_ms() -> int:
    """Current time as integer epoch milliseconds (wire timestamp format)."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class OutputLine:
    """One line of session output. Immutable once appended."""

    content: str
    timestamp: int  # epoch ms
    source: Source

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.content, "timestamp": self.timestamp, "source": self.source}


@dataclass
class SessionState:
    """Shell state owned by the session driver."""

    is_running: bool = False
    pid: int | None = None
    last_exit_code: int | None = None
    cwd: str = ""
    terminated: bool = False


@dataclass
class ShellInfo:
    pid: int
    shell: str
    cwd: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TerminalConfig:
    """Configuration for one terminal session."""

    shell: str = field(default_factory=default_shell)
    cwd: str = field(default_factory=default_cwd)
    env: dict[str, str] | None = None
    max_buffer_lines: int = DEFAULT_MAX_BUFFER_LINES
    streaming_enabled: bool = False
    title: str | None = None
    initial_command: str | None = None

    @classmethod
    def from_dict(cls, data: dict | None, scenario: str | None = None) -> Self:
        """Create from a camelCase config dict, layered over scenario defaults."""
        merged: dict[str, Any] = dict(SCENARIO_DEFAULTS.get(scenario or "", {}))
        merged.update(data or {})
        env = merged.get("env")
        return cls(
            shell=merged.get("shell") or default_shell(),
            cwd=merged.get("cwd") or default_cwd(),
            env={str(k): str(v) for k, v in env.items()} if isinstance(env, dict) else None,
            max_buffer_lines=int(merged.get("maxBufferLines") or DEFAULT_MAX_BUFFER_LINES),
            streaming_enabled=bool(merged.get("streamingEnabled", False)),
            title=merged.get("title"),
            initial_command=merged.get("initialCommand"),
        )


# Scenario presets. "display": controller drives, user watches, so output is
# streamed by default. "interactive": controller and user share the session.
SCENARIO_DEFAULTS: dict[str, dict[str, Any]] = {
    "interactive": {"streamingEnabled": False},
    "display": {"streamingEnabled": True},
}


@dataclass
class PaneRecord:
    """A tmux pane hosting a session."""

    session_id: str
    pane_handle: str
    kind: str
    created_at: int = field(default_factory=now_ms)  # epoch ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "paneId": self.pane_handle,
            "kind": self.kind,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        return cls(
            session_id=data.get("id", ""),
            pane_handle=data.get("paneId", ""),
            kind=data.get("kind", "unknown"),
            created_at=data.get("createdAt", 0),
        )


@dataclass
class PaneRegistryData:
    """Durable pane registry: session id -> pane, plus the legacy default pane."""

    panes: dict[str, PaneRecord] = field(default_factory=dict)
    default_pane: str | None = None  # Most recent non-terminal pane

    def to_json(self) -> str:
        data: dict[str, Any] = {"panes": {sid: rec.to_dict() for sid, rec in self.panes.items()}}
        if self.default_pane:
            data["defaultPane"] = self.default_pane
        return json.dumps(data, indent=2)

    @classmethod
    def from_json(cls, data: str) -> Self:
        return cls.from_dict(json.loads(data))

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create from dict, handling missing fields gracefully."""
        panes = data.get("panes") or {}
        return cls(
            panes={sid: PaneRecord.from_dict({"id": sid, **rec}) for sid, rec in panes.items() if isinstance(rec, dict)},
            default_pane=data.get("defaultPane"),
        )

    @classmethod
    def load(cls, path: Path) -> Self:
        if path.exists():
            return cls.from_json(path.read_text())
        return cls()
