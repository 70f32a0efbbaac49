"""
SafeChat - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used by the relay
server and the client session layer. Each error has a unique code that is
logged and, for errors caused by client input, sent back over the wire.

Author: SafeChat contributors
Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all SafeChat error codes."""

    # General Errors (E001-E099)
    E001_UNKNOWN_ERROR = "E001"
    E002_INVALID_ARGUMENT = "E002"
    E003_MISSING_FIELD = "E003"

    # Crypto Errors (E100-E199)
    E100_CRYPTO_ERROR = "E100"
    E101_ENCRYPTION_FAILED = "E101"
    E102_AUTHENTICATION_FAILED = "E102"
    E103_INVALID_KEY = "E103"
    E104_SESSION_CLOSED = "E104"

    # Network Errors (E200-E299)
    E200_NETWORK_ERROR = "E200"
    E202_JOIN_TIMEOUT = "E202"
    E203_CONNECTION_CLOSED = "E203"
    E206_INVALID_MESSAGE = "E206"
    E207_MESSAGE_TOO_LARGE = "E207"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"

    # Server Errors (E800-E899)
    E800_SERVER_ERROR = "E800"
    E802_SERVER_ALREADY_RUNNING = "E802"
    E804_INVALID_COMMAND = "E804"

    # Room Errors (E900-E999)
    E901_NOT_IN_ROOM = "E901"


class SafeChatError(Exception):
    """Base exception class for all SafeChat errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class ValidationError(SafeChatError):
    """Exception raised when a request is missing or carries malformed fields.

    Raised before any state is mutated, so rejecting the request leaves the
    registry untouched.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E002_INVALID_ARGUMENT,
        message: str = "Invalid request",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class CryptoError(SafeChatError):
    """Exception raised for cryptographic operation failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E100_CRYPTO_ERROR,
        message: str = "Cryptographic operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class EncryptionFailure(CryptoError):
    """Encryption failed; the message must not be sent in any form."""

    def __init__(
        self,
        message: str = "Encryption failed - message blocked",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E101_ENCRYPTION_FAILED, message, details)


class AuthenticationFailure(CryptoError):
    """Ciphertext failed integrity verification (tampered, corrupt or wrong key)."""

    def __init__(
        self,
        message: str = "Decryption failed - message may be tampered or corrupted",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E102_AUTHENTICATION_FAILED, message, details)


class SessionClosedError(CryptoError):
    """Operation attempted on a session manager that has been cleared."""

    def __init__(
        self,
        message: str = "Session has been cleared",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E104_SESSION_CLOSED, message, details)


class NetworkError(SafeChatError):
    """Exception raised for transport failures and protocol violations."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_NETWORK_ERROR,
        message: str = "Network operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class JoinTimeout(NetworkError):
    """The server did not answer a join request in time."""

    def __init__(
        self,
        message: str = "Join timeout",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E202_JOIN_TIMEOUT, message, details)


class ConfigError(SafeChatError):
    """Exception raised for configuration failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ServerError(SafeChatError):
    """Exception raised for server startup and shutdown failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E800_SERVER_ERROR,
        message: str = "Server operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
