"""Command completion detection over a raw shell byte stream.

The shell gives no structured signal when a command ends, so every command
is sent wrapped with two sentinels that echo the exit status and a done
marker:

    <command>; echo "__CANVAS_EXIT_CODE__:<token>:$?"; echo "__CANVAS_CMD_DONE__:<token>"

<token> is unique per command (session nonce + sequence number). Only the
token that is currently armed can complete a command; a marker carrying any
other token belongs to an interrupted command and is discarded as stale.

Marker lines never reach the visible output. Output is forwarded chunk by
chunk with marker text cut away; a trailing fragment that might be the start
of a marker split across reads is held back until the next chunk decides it.
"""

import re
import uuid
from dataclasses import dataclass, field

from .errors import StaleCompletion
from .logging_config import get_logger

logger = get_logger(__name__)

EXIT_MARKER = "__CANVAS_EXIT_CODE__"
DONE_MARKER = "__CANVAS_CMD_DONE__"
MARKER_PREFIX = "__CANVAS_"

_COMPLETION_RE = re.compile(
    rf"{EXIT_MARKER}:(?P<token>[0-9a-f]+-\d+):(?P<code>\d+).*?{DONE_MARKER}:(?P=token)",
    re.DOTALL,
)

MAX_PENDING_CHARS = 1_000_000  # Cap on text retained while waiting for markers
_IDLE_TAIL_CHARS = 128  # Enough to hold a marker split across reads


@dataclass
class Completion:
    token: str
    exit_code: int


@dataclass
class FeedResult:
    visible: str  # Output with marker text removed
    completion: Completion | None = None
    stale: list[StaleCompletion] = field(default_factory=list)


def _strip_markers(line: str) -> str | None:
    """Cut marker text from a complete line. None if nothing is left."""
    idx = line.find(MARKER_PREFIX)
    if idx == -1:
        return line
    head = line[:idx]
    return head if head else None


def _split_partial(tail: str) -> tuple[str, str]:
    """Split an unterminated fragment into (emit now, hold for next chunk)."""
    idx = tail.find(MARKER_PREFIX)
    if idx != -1:
        return tail[:idx], tail[idx:]
    for k in range(min(len(tail), len(MARKER_PREFIX) - 1), 0, -1):
        if tail.endswith(MARKER_PREFIX[:k]):
            return tail[:-k], tail[-k:]
    return tail, ""


class CompletionDetector:
    """Stateful sentinel parser for one shell session."""

    def __init__(self, nonce: str | None = None):
        self._nonce = nonce or uuid.uuid4().hex[:8]
        self._seq = 0
        self._armed: str | None = None
        self._pending = ""
        self._carry: dict[str, str] = {}

    @property
    def armed(self) -> str | None:
        """Token of the command currently awaiting completion."""
        return self._armed

    def arm(self) -> str:
        """Issue a fresh token for the next command and make it current."""
        self._seq += 1
        self._armed = f"{self._nonce}-{self._seq}"
        self._pending = ""
        return self._armed

    def disarm(self) -> None:
        """Forget the current command (interrupt). Its marker becomes stale."""
        self._armed = None

    @staticmethod
    def wrap(command: str, token: str) -> str:
        """Build the stdin line for a command with its sentinels."""
        return f'{command}; echo "{EXIT_MARKER}:{token}:$?"; echo "{DONE_MARKER}:{token}"\n'

    def feed(self, text: str, source: str = "stdout") -> FeedResult:
        """Consume a decoded chunk; report visible output and any completion."""
        result = FeedResult(visible=self._visible(text, source))
        if source != "stdout":
            # Markers are echoed on stdout only
            return result

        self._pending += text
        while True:
            match = _COMPLETION_RE.search(self._pending)
            if match is None:
                break
            token = match.group("token")
            exit_code = int(match.group("code"))
            self._pending = self._pending[match.end() :]
            if token == self._armed:
                self._armed = None
                self._pending = ""
                result.completion = Completion(token=token, exit_code=exit_code)
                break
            stale = StaleCompletion(token, exit_code)
            logger.debug("Discarding %s", stale)
            result.stale.append(stale)

        self._trim_pending()
        return result

    def flush(self, source: str = "stdout") -> str:
        """Release text held back for a source (e.g. when the stream ends)."""
        held = self._carry.pop(source, "")
        if held.startswith(MARKER_PREFIX):
            return ""
        return held

    def _visible(self, text: str, source: str) -> str:
        data = self._carry.pop(source, "") + text
        lines = data.split("\n")
        tail = lines.pop()

        kept = [line for line in (_strip_markers(line) for line in lines) if line is not None]
        out = "".join(f"{line}\n" for line in kept)

        if tail:
            emit, hold = _split_partial(tail)
            out += emit
            if hold:
                self._carry[source] = hold
        return out

    def _trim_pending(self) -> None:
        if MARKER_PREFIX not in self._pending:
            # Nothing marker-like buffered; keep only a tail for split markers
            self._pending = self._pending[-_IDLE_TAIL_CHARS:]
        elif len(self._pending) > MAX_PENDING_CHARS:
            self._pending = self._pending[-MAX_PENDING_CHARS:]
