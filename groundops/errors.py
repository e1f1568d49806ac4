"""
Error types raised by portal actions.

Background work (resync, change-feed merges) never raises these; only
user-initiated mutations do, since those are the calls with an expected outcome.
"""
from typing import Optional


class PortalError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationFailed(PortalError):
    status_code = 401


class PermissionDenied(PortalError):
    status_code = 403


class NotFound(PortalError):
    status_code = 404


class InvalidTransition(PortalError):
    status_code = 409


class Conflict(PortalError):
    status_code = 409


class ActionFailed(PortalError):
    """A remote mutation failed and the optimistic change was rolled back."""

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.kind = kind or "rejected"
        self.status_code = 502 if self.kind == "connectivity" else 409
