from __future__ import annotations

from typing import Optional


class DashboardError(Exception):
    """Base class for every failure the dashboard data layer reports."""

    kind = "dashboard"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DashboardError):
    """Bad user input (e.g. an invalid date range). Surfaced inline, never sent to the server."""

    kind = "validation"


class RequestError(DashboardError):
    """Network or server failure while talking to the dashboard API."""

    kind = "request"

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    def __repr__(self) -> str:
        return f"RequestError(message={self.message!r}, status={self.status!r})"


class PreconditionError(DashboardError):
    """A required input was missing; raised before any network attempt."""

    kind = "precondition"
