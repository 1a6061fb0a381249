from __future__ import annotations

from typing import Optional


class PPClientError(Exception):
    """Base class for everything ppclient raises on purpose."""


class ValidationError(PPClientError):
    """A user-entered field was rejected before anything hit the network."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class CooldownError(PPClientError):
    """The server refused a forced recalculation (`cant_force`)."""

    def __init__(self, remaining: Optional[int]) -> None:
        self.remaining = remaining
        if remaining is None:
            msg = "You can't force a recalculation yet, try again later."
        else:
            msg = f"You can't force a recalculation yet, try again in {remaining} seconds."
        super().__init__(msg)


class ComputationError(PPClientError):
    """The server answered with `status: "error"`."""

    def __init__(self, message: str = "Error while calculating PP.") -> None:
        super().__init__(message)


class TransportError(PPClientError):
    """Request failed: connection, timeout, HTTP status or unreadable body."""


class DuplicatePollError(PPClientError):
    def __init__(self, user: str) -> None:
        super().__init__(f"A recalculation for {user!r} is already being tracked")
        self.user = user
