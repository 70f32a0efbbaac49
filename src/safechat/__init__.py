"""
SafeChat - Zero-knowledge relay for ephemeral encrypted group chats

Clients encrypt every message end to end with per-peer keys derived from
X25519 key agreement. The relay only routes opaque ciphertext between the
members of short-lived, in-memory rooms.

Author: SafeChat contributors
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "SafeChat contributors"
__license__ = "MIT"

# Import core modules for easy access
from .config import Config
from .constants import APP_NAME, VERSION
from .errors import (
    AuthenticationFailure,
    ConfigError,
    CryptoError,
    EncryptionFailure,
    ErrorCode,
    JoinTimeout,
    NetworkError,
    SafeChatError,
    ServerError,
    SessionClosedError,
    ValidationError,
)
from .registry import MemberInfo, RoomRegistry
from .router import Delivery, RelayRouter
from .session import CryptoResult, EncryptedFragment, SessionManager

__all__ = [
    "APP_NAME",
    "VERSION",
    "AuthenticationFailure",
    "Config",
    "ConfigError",
    "CryptoError",
    "CryptoResult",
    "Delivery",
    "EncryptedFragment",
    "EncryptionFailure",
    "ErrorCode",
    "JoinTimeout",
    "MemberInfo",
    "NetworkError",
    "RelayRouter",
    "RoomRegistry",
    "SafeChatError",
    "ServerError",
    "SessionClosedError",
    "SessionManager",
    "ValidationError",
    "__author__",
    "__license__",
    "__version__",
]
