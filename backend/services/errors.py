"""
EV Dealer Hub - Service errors

Every workflow raises one of these. server.py maps them to
{"error": code, "detail": message} with the matching HTTP status.
"""


class ServiceError(Exception):
    """Base class: machine-readable code + human-readable message"""

    status_code = 500
    default_code = "internal_error"

    def __init__(self, message: str, code: str = None, status_code: int = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class Unauthorized(ServiceError):
    status_code = 401
    default_code = "unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    default_code = "forbidden"


class NotFound(ServiceError):
    status_code = 404
    default_code = "not_found"


class InvalidInput(ServiceError):
    status_code = 400
    default_code = "invalid_input"


class ConflictState(ServiceError):
    """
    Business-state conflict: nothing to pay, zero amount, terminal status,
    lost compare-and-set. Callers pick the HTTP status that drives the UI
    (the payout endpoints keep 404/400 for the two empty cases).
    """
    status_code = 409
    default_code = "conflict"


class UpstreamFailure(ServiceError):
    status_code = 502
    default_code = "upstream_failure"
