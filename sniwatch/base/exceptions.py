"""Module exceptions: structured error taxonomy for sniwatch."""
#
# PURPOSE:
# Provides error codes and typed exceptions so failures at the pipeline's
# boundaries can be logged and searched consistently.
#
# ERROR CODE FORMAT:
# - STREAM_XXX: websocket transport errors
# - STORAGE_XXX: snapshot read/write errors
# - ASN_XXX: ASN table errors
# - API_XXX: appliance HTTP API errors
# - CONFIG_XXX: configuration errors
#
# USAGE:
#   from sniwatch.base.exceptions import StorageError, ErrorCode
#
#   raise StorageError(
#       ErrorCode.STORAGE_CORRUPT,
#       "Snapshot is not a JSON list",
#       details={"key": "domains_lines"}
#   )
#
# Only ConfigError is allowed to escape to the caller (at startup). Every other
# error is caught at the boundary that raised it and degraded to an empty or
# negative value.
#

import json
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    # Stream Errors
    STREAM_CONNECT_FAILED = "STREAM_001"
    STREAM_DROPPED = "STREAM_002"
    STREAM_PROTOCOL_ERROR = "STREAM_003"

    # Storage Errors
    STORAGE_READ_FAILED = "STORAGE_001"
    STORAGE_WRITE_FAILED = "STORAGE_002"
    STORAGE_CORRUPT = "STORAGE_003"

    # ASN Errors
    ASN_RECORD_INVALID = "ASN_001"

    # API Errors
    API_REQUEST_FAILED = "API_001"
    API_REJECTED = "API_002"

    # Config Errors
    CONFIG_INVALID = "CONFIG_001"


class SniWatchError(Exception):
    """
    Base exception class for sniwatch with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g., "STREAM_001")
        message: Human-readable error message
        details: Optional dictionary with additional context
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class StreamError(SniWatchError):
    """Raised when the log websocket cannot be opened or drops mid-stream."""


class StorageError(SniWatchError):
    """Raised inside the storage layer when a snapshot cannot be read or written."""


class AsnError(SniWatchError):
    """Raised when an ASN record cannot be built from its inputs."""


class ApiError(SniWatchError):
    """Raised when the appliance API rejects or fails a request."""


class ConfigError(SniWatchError):
    """Raised when an environment setting cannot be parsed."""


__all__ = [
    "ErrorCode",
    "SniWatchError",
    "StreamError",
    "StorageError",
    "AsnError",
    "ApiError",
    "ConfigError",
]
