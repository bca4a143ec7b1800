"""
assetverse/errors.py

Domain errors raised by the service layer.

Each error carries the HTTP status it maps to; main.py registers a single
handler that renders them as {"detail": ...}, the same shape FastAPI uses
for HTTPException.
"""

from __future__ import annotations


class AssetVerseError(Exception):
    """Base class for errors that are safe to show to the caller."""
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(AssetVerseError):
    """Missing or malformed input the schema layer cannot catch."""
    status_code = 400


class Unauthenticated(AssetVerseError):
    """No credentials were supplied."""
    status_code = 401


class PaymentRequired(AssetVerseError):
    """The payment provider has not confirmed the session as paid."""
    status_code = 402


class Forbidden(AssetVerseError):
    """Credentials are invalid or lack the required capability."""
    status_code = 403


class NotFound(AssetVerseError):
    status_code = 404


class Conflict(AssetVerseError):
    """Duplicate, already-processed, out of stock or over a plan limit."""
    status_code = 409


class UpstreamError(AssetVerseError):
    """The payment provider failed or returned something unusable."""
    status_code = 502
