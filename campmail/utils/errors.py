"""Centralized error handling module."""

from enum import Enum
from typing import Any, Dict


## Error Categories


class ErrorCategory(Enum):
    """Categories of errors for better handling."""

    NETWORK = "network"
    PROTOCOL = "protocol"
    FILE_SYSTEM = "file_system"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


## Custom Exceptions


class CampMailError(Exception):
    """Base exception for all campmail errors."""

    category = ErrorCategory.UNKNOWN
    user_message = "An error occurred"

    def __init__(
        self, message: str | None = None, details: Dict[str, Any] | None = None
    ):
        """Initialise CampMailError with optional message and details."""
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error details to a dictionary."""
        return {
            "error_type": self.__class__.__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Network Errors


class NetworkError(CampMailError):
    """Base exception for network-related errors."""

    category = ErrorCategory.NETWORK
    user_message = "A network error occurred"


class SMTPError(NetworkError):
    """Exception for SMTP transport errors."""

    user_message = "Failed to send email"


class SMTPConnectionClosedError(SMTPError):
    """Exception when the server closes the connection mid-conversation."""

    user_message = "Connection closed by SMTP server"


class SMTPTimeoutError(SMTPError):
    """Exception when the server does not answer in time."""

    user_message = "Timed out waiting for SMTP server"


class StaleTransportError(SMTPError):
    """Exception when a plaintext transport is used after its TLS upgrade."""

    category = ErrorCategory.PROTOCOL
    user_message = "Transport was replaced by its TLS upgrade"


## File System Errors


class FileSystemError(CampMailError):
    """Base exception for file system-related errors."""

    category = ErrorCategory.FILE_SYSTEM
    user_message = "A file system error occurred"


## Configuration Errors


class ConfigurationError(CampMailError):
    """Base exception for configuration-related errors."""

    category = ErrorCategory.CONFIGURATION
    user_message = "A configuration error occurred"


class MissingConfigError(ConfigurationError):
    """Exception for missing configuration settings."""

    user_message = "Missing configuration settings"


class InvalidConfigError(ConfigurationError):
    """Exception for invalid configuration settings."""

    user_message = "Invalid configuration settings"


## Utility Functions


def format_error_message(error: BaseException) -> str:
    """Format an error message for a delivery result or display."""
    if isinstance(error, CampMailError):
        return error.message

    text = str(error)
    if not text:
        return error.__class__.__name__
    return f"{error.__class__.__name__}: {text}"
