from __future__ import annotations

from typing import Optional


class ChecklistError(Exception):
    """Base class for failures raised by the checklist service."""


class NotFound(ChecklistError):
    """A chat session or checklist does not exist (or has expired)."""


class ValidationFailure(ChecklistError):
    """Input or model output does not match the expected shape."""


class TransportFailure(ChecklistError):
    """The durable store, the remote API, or the hosted model is unreachable."""


class VersionConflict(ChecklistError):
    """A versioned session save was based on a stale copy."""

    def __init__(self, session_id: str, expected: Optional[int], actual: Optional[int] = None) -> None:
        # `actual` is unknown when the conflict was reported by the remote API
        current = f"version {actual}" if actual is not None else "a newer version"
        super().__init__(f"session {session_id} is at {current}, save was based on {expected}")
        self.session_id = session_id
        self.expected = expected
        self.actual = actual


__all__ = [
    "ChecklistError",
    "NotFound",
    "ValidationFailure",
    "TransportFailure",
    "VersionConflict",
]
