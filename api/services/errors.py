"""
Dispatch errors — one exception family for every rejected driver action.

Each error carries the HTTP status the API answers with; routers never
translate them by hand, main.py registers a single handler.
"""


class DispatchError(Exception):
    """Base class. ``status_code`` is the HTTP status returned to the client."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# ── Validation (caller can fix and retry) ──────────────────

class ValidationError(DispatchError):
    status_code = 400


class InvalidTransition(ValidationError):
    pass


class MissingReason(ValidationError):
    pass


class MissingChecklist(ValidationError):
    pass


class StopNotFound(ValidationError):
    status_code = 404


class RouteNotFound(ValidationError):
    status_code = 404


class DriverNotFound(ValidationError):
    status_code = 404


class PhotoNotFound(ValidationError):
    status_code = 404


class NotOwnedByDriver(ValidationError):
    status_code = 403


class AlreadyInTargetState(ValidationError):
    status_code = 409


class DriverHasOtherActiveRoute(ValidationError):
    status_code = 409


# ── Infrastructure ─────────────────────────────────────────

class DependencyError(DispatchError):
    """The primary write could not be persisted. Nothing was committed."""

    status_code = 503
