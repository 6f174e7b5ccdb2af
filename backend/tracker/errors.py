"""Error taxonomy shared by services, the HTTP layer and the API client.

Every error carries the HTTP status it maps to and a short summary that is
safe to show to users. Internal detail belongs in the log, not in the
summary.
"""


class TrackerError(Exception):
    status_code = 500
    summary = "internal error"

    def __init__(self, summary: str = None):
        super().__init__(summary or self.summary)
        if summary:
            self.summary = summary


class AuthenticationFailed(TrackerError):
    """Missing, expired or revoked credentials."""
    status_code = 401
    summary = "authentication required"


class AuthorizationDenied(TrackerError):
    """The policy layer rejected the operation."""
    status_code = 403
    summary = "permission denied"


class NotFound(TrackerError):
    """The row does not exist or is hidden from the caller."""
    status_code = 404
    summary = "not found"


class ConstraintViolation(TrackerError):
    """Uniqueness or enumerated-value violation.

    Duplicates map to 409; malformed values pass ``status_code=422``.
    """
    status_code = 409
    summary = "constraint violation"

    def __init__(self, summary: str = None, status_code: int = None):
        super().__init__(summary)
        if status_code is not None:
            self.status_code = status_code


class TransientIdentityError(TrackerError):
    """The identity service could not be reached; safe to retry."""
    status_code = 503
    summary = "identity service unavailable"


class AggregationFailure(TrackerError):
    """Subject progress could not be recomputed; the write was rolled back."""
    status_code = 500
    summary = "progress could not be saved, please retry"


def error_for_status(status_code: int, summary: str) -> TrackerError:
    """Rebuild a `TrackerError` from an HTTP response (used by the client)."""
    if status_code == 401:
        return AuthenticationFailed(summary)
    if status_code == 403:
        return AuthorizationDenied(summary)
    if status_code == 404:
        return NotFound(summary)
    if status_code in (409, 422):
        return ConstraintViolation(summary, status_code=status_code)
    if status_code == 503:
        return TransientIdentityError(summary)
    return TrackerError(summary)
