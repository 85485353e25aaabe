"""
auth/errors.py -- Error taxonomy for the auth core.

These exceptions are framework-agnostic: the store, the token issuer and the
flow controller raise them without knowing about HTTP. api/main.py registers
one exception handler that renders every AuthError into the standard
ErrorResponse envelope using status_code and code.

Every message is a single sentence that is safe to show to the caller.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for expected, client-visible failures."""

    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "Bad request."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed or missing input (400)."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request."


class Unauthorized(AuthError):
    """Missing, invalid or expired credential (401)."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class Forbidden(AuthError):
    """Valid credential but insufficient privilege or inactive account (403)."""

    status_code = 403
    code = "forbidden"
    default_message = "Access denied."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class Conflict(AuthError):
    """Uniqueness violation, e.g. an e-mail already held by a live account (409)."""

    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class DeliveryFailed(AuthError):
    """The outbound notification could not be delivered (502).

    Raised after persistence side effects have already happened; the caller is
    told to retry the delivery step (e.g. resend the code), not the whole flow.
    """

    status_code = 502
    code = "delivery_failed"
    default_message = "The e-mail could not be sent."
