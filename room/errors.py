"""Errors raised across the room boundary."""


class RoomError(Exception):
    """Base class for room client failures."""


class RoomConnectionError(RoomError, ConnectionError):
    """Joining or creating the room failed; combat cannot start."""


class RetryableError(RoomError):
    """A send did not reach the room; the caller may try again."""


class ResponseParseError(RoomError, ValueError):
    """An inbound payload could not be understood at all."""
