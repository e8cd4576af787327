"""sc stdout handling: line reassembly and the trigger table.

sc reports everything interesting as free text.  Each complete line is
matched against :data:`TRIGGERS` in order and only the first trigger whose
pattern is a substring of the line fires.  The order matters: sc prints
"HTTP response code indicated failure" as an ``Error:`` line right before the
more useful "Not authorized" line, so the generic error rule skips it.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable

from sclauncher.core.errors import (
    ConnectError,
    ConnectionFailed,
    GenericTunnelError,
    Unauthorized,
)

logger = logging.getLogger(__name__)

_TUNNEL_ID_RE = re.compile(r"Tunnel ID:\s*([a-z0-9]+)", re.IGNORECASE)
_PORT_RE = re.compile(r"port\s*([0-9]+)", re.IGNORECASE)

_SUPPRESSED_ERROR = "HTTP response code indicated failure"


class LineBuffer:
    """Accumulates stdout chunks and hands back complete lines only."""

    def __init__(self) -> None:
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: str) -> list[str]:
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return lines


@dataclass
class OutputState:
    """What the output has told us so far about one sc process."""

    tunnel_id: str | None = None
    port: int | None = None
    error: ConnectError | None = None

    def latch(self, error: ConnectError) -> None:
        # First terminal error wins
        if self.error is None:
            self.error = error


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

def _connecting(state: OutputState, line: str) -> None:
    logger.info("Creating tunnel with Sauce Labs")


def _tunnel_id(state: OutputState, line: str) -> None:
    match = _TUNNEL_ID_RE.search(line)
    if match:
        state.tunnel_id = match.group(1)
        logger.info("Tunnel ID: %s", state.tunnel_id)


def _listener_port(state: OutputState, line: str) -> None:
    match = _PORT_RE.search(line)
    if match:
        state.port = int(match.group(1))
        logger.debug("Selenium listener on port %d", state.port)


def _outdated(state: OutputState, line: str) -> None:
    logger.info("This version of Sauce Connect is outdated")


def _unauthorized(state: OutputState, line: str) -> None:
    if state.error is None:
        logger.warning("Invalid Sauce Connect Credentials")
    state.latch(Unauthorized(f"Invalid Sauce Connect Credentials. {line}", detail=line))


def _connection_failed(state: OutputState, line: str) -> None:
    logger.warning("Sauce Connect API failure")
    state.latch(ConnectionFailed(line, detail=line))


def _generic_error(state: OutputState, line: str) -> None:
    if _SUPPRESSED_ERROR in line:
        return
    state.latch(GenericTunnelError(line, detail=line))


def _goodbye(state: OutputState, line: str) -> None:
    logger.debug("sc said goodbye")


TRIGGERS: list[tuple[str, Callable[[OutputState, str], None]]] = [
    ("Please wait for 'you may start your tests' to start your tests", _connecting),
    ("Tunnel ID:", _tunnel_id),
    ("Selenium listener started on port", _listener_port),
    ("This version of Sauce Connect is outdated", _outdated),
    ("Not authorized", _unauthorized),
    ("Sauce Connect could not establish a connection", _connection_failed),
    ("Error: ", _generic_error),
    ("Error bringing", _generic_error),
    ('{"error":', _generic_error),
    ("Goodbye.", _goodbye),
]


def classify_line(state: OutputState, line: str) -> str | None:
    """Apply the first matching trigger to *state*.  Returns its pattern."""
    for pattern, action in TRIGGERS:
        if pattern in line:
            action(state, line)
            return pattern
    return None


class OutputClassifier:
    """Feeds raw stdout chunks through :class:`LineBuffer` and :data:`TRIGGERS`."""

    def __init__(self, state: OutputState | None = None, verbose: bool = False) -> None:
        self.state = state or OutputState()
        self.verbose = verbose
        self._buffer = LineBuffer()

    def feed(self, chunk: str) -> None:
        for line in self._buffer.feed(chunk):
            line = line.strip()
            if not line:
                continue
            if self.verbose:
                logger.info("sc: %s", line)
            else:
                logger.debug("sc: %s", line)
            classify_line(self.state, line)
