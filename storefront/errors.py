"""
Error taxonomy.  Routers raise these; app-level handlers in main.py render them
as ``{"success": false, "error": ...}`` with the matching status code.
"""
from __future__ import annotations


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(StorefrontError):
    """Missing or invalid request fields."""
    status_code = 400


class UpstreamError(StorefrontError):
    """A payment provider answered with an error or could not be reached."""
    status_code = 500


class InvalidSignature(StorefrontError):
    """Webhook MAC did not match.  Acknowledged to the provider, never surfaced as 4xx."""
    status_code = 400


class NotificationRejected(StorefrontError):
    """Webhook payload is malformed or lacks its correlation data."""
    status_code = 400
