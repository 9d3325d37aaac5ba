"""Application-level exception types for Zelara."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zelara.link.connection import Candidate


class ZelaraError(Exception):
    """Base exception for Zelara."""


class LinkError(ZelaraError):
    """Base exception for the device link."""


class LinkConnectionError(LinkError):
    """Raised when every connection candidate failed."""

    def __init__(self, attempts: Sequence[tuple[Candidate, str]]) -> None:
        self.attempts = list(attempts)
        tried = "\n".join(f"{candidate}: {reason}" for candidate, reason in self.attempts)
        super().__init__(f"Could not connect to Desktop. Tried:\n{tried}")


class NotConnectedError(LinkError):
    """Raised when a task is issued without an open connection."""


class SendError(LinkError):
    """Raised when the transport rejects a write on an open connection."""


class RequestTimeoutError(LinkError):
    """Raised when no response arrived before the task deadline."""


class ProtocolError(LinkError):
    """Raised for not-ok responses and unparseable frames."""


class PersistenceError(ZelaraError):
    """Raised when the progress record cannot be read or written."""


class PairingError(ZelaraError):
    """Raised when a pairing payload is missing fields or malformed."""

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = list(problems)
        super().__init__("Invalid pairing payload: " + "; ".join(self.problems))
