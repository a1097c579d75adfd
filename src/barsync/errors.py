"""Error taxonomy shared by adapters, jobs and HTTP handlers."""

from __future__ import annotations

from typing import Any


class BarSyncError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code = 500
    error_code = "GENERAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(BarSyncError):
    """Missing credentials or URLs. Fatal for the request."""

    error_code = "CONFIGURATION_ERROR"


class InvalidInput(BarSyncError):
    """Missing or malformed request parameters. Never retried."""

    status_code = 400
    error_code = "INVALID_INPUT"


class InvalidAction(InvalidInput):
    error_code = "INVALID_ACTION"


class UpstreamError(BarSyncError):
    """External API returned non-2xx or an unparseable body."""

    status_code = 502
    error_code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        source: str,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.source = source
        self.status = status


class PersistenceError(BarSyncError):
    """Store write failed. Already committed batches are kept."""

    error_code = "PERSISTENCE_ERROR"
