"""
Error types shared by the exchange, credential and export layers.

Every error carries a short ``reason`` that is safe to show to API callers.
Driver messages and stack traces stay in the logs.
"""

from __future__ import annotations


class NudgeboxError(Exception):
    """Base class for failures reported to callers as ``{success: false}``."""

    status_code = 400
    default_reason = "Request failed."

    def __init__(self, reason: str | None = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class InvalidCredentials(NudgeboxError):
    """Wrong password or unknown identifier; the two are not distinguished."""

    default_reason = "Password doesn't match expected."


class AlreadyExists(NudgeboxError):
    default_reason = "Identifier already exists."


class AuthenticationFailure(NudgeboxError):
    """Ciphertext failed its integrity check, or the key is unusable."""

    default_reason = "Unable to decrypt data with the given secret."


class StoreUnavailable(NudgeboxError):
    """Transient backing-store failure. Callers may retry."""

    status_code = 503
    default_reason = "Storage temporarily unavailable, please retry."
    retryable = True


class NotFound(NudgeboxError):
    status_code = 404
    default_reason = "Not found."
