"""
Error taxonomy for the chat core.

- AuthFailure: missing/invalid/not-yet-valid/expired credential.
  Fatal for a realtime connection, a 401 for HTTP.
- PersistenceFailure: the store could not write or read. Recovered per event.
- ValidationFailure: an inbound payload was rejected before fan-out.
"""


class ChatError(Exception):
    """Base class for errors raised by the chat core."""

    reason = "error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.reason)
        self.detail = detail or self.reason


class AuthFailure(ChatError):
    reason = "unauthorized"
    detail_message = "An error occurred while verifying the token."

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.detail_message)


class MissingToken(AuthFailure):
    reason = "unauthorized"
    detail_message = "Access denied. No token provided."


class InvalidToken(AuthFailure):
    reason = "unauthorized"
    detail_message = "Invalid token."


class TokenNotYetValid(AuthFailure):
    reason = "jwt_not_yet_valid"
    detail_message = "Token used before its valid date."


class TokenExpired(AuthFailure):
    reason = "jwt_expired"
    detail_message = "Token expired."


class UnknownUser(AuthFailure):
    """Token verified but the user no longer exists."""

    reason = "unauthorized"
    detail_message = "User not found."


class PersistenceFailure(ChatError):
    reason = "persistence_failure"


class ValidationFailure(ChatError):
    reason = "validation_error"
