"""Structured errors for devkb.

Every failure the service reports carries a stable error code, a
human-readable message, and optional details. The HTTP layer maps the
exception class to a status code; the CLI prints the message or, with
--json-errors, the JSON form.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes exposed to clients."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_ENTRY_TYPE = "INVALID_ENTRY_TYPE"
    EMPTY_QUERY = "EMPTY_QUERY"
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"
    STORAGE_ERROR = "STORAGE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class DevKBError(Exception):
    """Base exception for devkb.

    Attributes:
        code: Machine-readable error code.
        message: Message safe to show to a client.
        details: Optional extra context (never internal fault text).
    """

    status_code = 500

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class ValidationError(DevKBError):
    """Bad or missing input. Never retried."""

    status_code = 400

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ) -> None:
        super().__init__(code, message, details)


class NotFoundError(DevKBError):
    """Unknown entry id."""

    status_code = 404

    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        super().__init__(
            ErrorCode.ENTRY_NOT_FOUND,
            f"Entry not found: {entry_id}",
            {"id": entry_id},
        )


class InternalError(DevKBError):
    """Storage or other internal failure.

    The message is generic; the underlying exception is chained via
    ``__cause__`` and logged, never sent to clients.
    """

    status_code = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(ErrorCode.STORAGE_ERROR, message)


class ConfigurationError(DevKBError):
    """Raised when configuration is missing or invalid."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.CONFIGURATION_ERROR, message)


def format_error_json(code: str, message: str, details: dict | None = None) -> str:
    """Format an error that is not a DevKBError as JSON."""
    error: dict[str, dict[str, object]] = {"error": {"code": code, "message": message}}
    if details:
        error["error"]["details"] = details
    return json.dumps(error)
