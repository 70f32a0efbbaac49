"""
SafeChat - Global Constants and Configuration Values

This module defines all constants used throughout the SafeChat relay and
client. All magic numbers and configuration defaults are centralized here.

Author: SafeChat contributors
Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "SafeChat"

# Network Constants
DEFAULT_SERVER_PORT = 3002
DEFAULT_HOST = "0.0.0.0"
LOCALHOST = "127.0.0.1"

# Transport Limits
MAX_FRAME_SIZE = 5 * 1024 * 1024  # 5 MB, large enough for shared files
DELIVERY_OVERHEAD = 2048  # room for the fields the relay adds to a chat_send
READ_CHUNK_SIZE = 64 * 1024
OUTBOUND_QUEUE_SIZE = 1000  # deliveries buffered per connection

# Client Timeouts (seconds)
JOIN_TIMEOUT = 10
CONNECT_TIMEOUT = 5

# Room Lifecycle
ROOM_SWEEP_INTERVAL = 60 * 60  # 1 hour
ROOM_RETENTION = 24 * 60 * 60  # 24 hours
MAX_DISPLAY_NAME_LENGTH = 64
MAX_ROOM_ID_LENGTH = 128
DEFAULT_DISPLAY_NAME_PREFIX = "User"

# Identifier Lengths (characters)
MEMBER_ID_LENGTH = 8
MESSAGE_ID_LENGTH = 21
ROOM_ID_LENGTH = 10

# Cryptography Constants
KEY_SIZE = 32  # X25519 public/secret key and derived shared key
NONCE_SIZE = 12  # 96 bits for ChaCha20-Poly1305
SESSION_KEY_INFO = b"safechat-shared-session-key-v1"

# Safety Number Format
SAFETY_NUMBER_PAIRS = 30  # digest bytes rendered as two-digit pairs
SAFETY_NUMBER_PAIRS_PER_GROUP = 5

# Configuration Files
DEFAULT_DATA_DIR = "~/.safechat"
CONFIG_FILENAME = "config.toml"
ENV_PREFIX = "SAFECHAT"

# Logging Configuration
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
