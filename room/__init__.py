"""Combat Client - Room Module

This module connects the combat core to an authoritative combat room.
The core only sees the ``RoomClient`` interface; transports plug in behind it.

Components:
- MessageProtocol: envelope, framing and payload schemas
- RoomClient: abstract room connection, Session and StateSnapshot
- LocalRoomServer / LocalRoomClient: in-process authoritative room
- SocketRoomClient: TCP transport
"""

__version__ = "1.0.0"

# Network configuration constants (define first to avoid circular imports)
DEFAULT_SERVER_HOST = "localhost"
DEFAULT_SERVER_PORT = 2567
MAX_PLAYERS = 4
CONNECTION_TIMEOUT = 10  # seconds
SEND_RETRY_LIMIT = 1  # retries on the final exit flush

from .errors import (
    RoomError,
    RoomConnectionError,
    RetryableError,
    ResponseParseError,
)
from .message_protocol import (
    MessageType,
    NetworkMessage,
    MessageProtocol,
    serialize_message,
    deserialize_message,
)
from .room_client import RoomClient, Session, StateSnapshot


__all__ = [
    "MessageType",
    "NetworkMessage",
    "MessageProtocol",
    "serialize_message",
    "deserialize_message",
    "RoomClient",
    "Session",
    "StateSnapshot",
    "RoomError",
    "RoomConnectionError",
    "RetryableError",
    "ResponseParseError",
    "DEFAULT_SERVER_HOST",
    "DEFAULT_SERVER_PORT",
    "MAX_PLAYERS",
    "CONNECTION_TIMEOUT",
    "SEND_RETRY_LIMIT",
]
