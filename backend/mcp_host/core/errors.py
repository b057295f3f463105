# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Custom exceptions for the MCP host.

All exceptions inherit from HostError for consistent error handling.
ConfigurationError and ServerConnectionError abort the current operation;
DiscoveryError and ToolExecutionError are recovered locally and carried as data.
"""

import re
from typing import Optional


class HostError(Exception):
    """Base exception for all MCP host errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[dict] = None
    ):
        """
        Initialize host error.

        Args:
            message: Human-readable error message
            status_code: HTTP status code
            details: Additional error details
        """
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details
        }


class ConfigurationError(HostError):
    """Missing or invalid credentials, descriptor or configuration."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        """
        Initialize configuration error.

        Args:
            message: Configuration error message
            field: Request field or config key at fault
            details: Additional error details
        """
        super().__init__(message, status_code=400, details=details)
        self.field = field


class ServerConnectionError(HostError):
    """Transport to an MCP server could not be established."""

    def __init__(
        self,
        message: str,
        server: Optional[str] = None,
        attempts: int = 1,
        details: Optional[dict] = None
    ):
        """
        Initialize connection error.

        Args:
            message: Connection error message
            server: MCP server name
            attempts: Number of connect attempts made
            details: Additional error details
        """
        details = dict(details or {})
        details.setdefault("attempts", attempts)
        super().__init__(message, status_code=502, details=details)
        self.server = server
        self.attempts = attempts


class DiscoveryError(HostError):
    """Capability listing failed. Downgraded to a flagged DiscoveryResult."""

    def __init__(self, message: str, server: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=502, details=details)
        self.server = server


class ToolExecutionError(HostError):
    """A dispatched tool call failed. Carried as data, never escapes execute()."""

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        server: Optional[str] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, status_code=500, details=details)
        self.tool = tool
        self.server = server


class ProtocolError(HostError):
    """The model or a server returned a structurally invalid message."""

    def __init__(self, message: str, source: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, status_code=502, details=details)
        self.source = source


class ExecutionTimeoutError(HostError):
    """An execute() call exceeded its overall timeout."""

    def __init__(self, timeout: float, details: Optional[dict] = None):
        super().__init__(
            f"Execution timed out after {timeout:g}s",
            status_code=504,
            details=details
        )
        self.timeout = timeout


# Error Message Utilities

_SECRET_PATTERN = re.compile(r"\b(sk-[A-Za-z0-9_\-]{8,}|sk-ant-[A-Za-z0-9_\-]{8,})")


def sanitize_error_for_user(error: Exception, include_type: bool = True) -> str:
    """
    Sanitize error messages for user display.
    Removes credential-shaped tokens and caps the length.

    Args:
        error: The exception to sanitize
        include_type: Whether to include exception type

    Returns:
        User-friendly error message without stack trace
    """
    if isinstance(error, HostError):
        error_msg = error.message.strip()
    else:
        error_msg = str(error).strip()

    error_msg = _SECRET_PATTERN.sub("[REDACTED]", error_msg)

    # Limit message length
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."

    if include_type:
        return f"{error.__class__.__name__}: {error_msg}"

    return error_msg
