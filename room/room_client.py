"""Combat Client - Room Client Interface

Contract between the combat core and whatever carries messages to the
authoritative room. Implementations must deliver ``on_state_change`` and
``on_message`` callbacks from any thread; the core marshals them onto its own
timeline before touching game state.
"""

import uuid
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import RetryableError, RoomConnectionError, RoomError, ResponseParseError
from .message_protocol import RawPayload, decode_state_push


__all__ = [
    "RoomClient",
    "Session",
    "StateSnapshot",
    "RoomError",
    "RoomConnectionError",
    "RetryableError",
    "ResponseParseError",
    "completed_future",
    "failed_future",
]


@dataclass(frozen=True)
class StateSnapshot:
    """Authoritative room state pushed by the server."""
    players: Dict[str, float] = field(default_factory=dict)   # name -> health ratio
    monster_health: Optional[float] = None

    @classmethod
    def from_payload(cls, raw: RawPayload) -> 'StateSnapshot':
        parsed = decode_state_push(raw)
        return cls(players=parsed["players"], monster_health=parsed["monster_health"])

    def to_dict(self) -> Dict[str, Any]:
        return {"players": dict(self.players), "monster_health": self.monster_health}


OnStateChange = Callable[[StateSnapshot, bool], None]
OnMessage = Callable[[Any], None]


class Session:
    """Opaque handle for one joined room.

    Keeps the last authoritative snapshot for diffing only; it never writes
    to local combatants.
    """

    def __init__(self, room_id: str, player_name: str, session_id: str = None):
        self.room_id = room_id
        self.player_name = player_name
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.roster: Dict[str, float] = {}
        self.monster_health: Optional[float] = None
        self.active = True
        self.snapshots_received = 0

    def apply_snapshot(self, snapshot: StateSnapshot) -> List[str]:
        """Record a snapshot; returns names that are no longer tracked."""
        gone = [name for name in self.roster if name not in snapshot.players]
        self.roster = dict(snapshot.players)
        if snapshot.monster_health is not None:
            self.monster_health = snapshot.monster_health
        self.snapshots_received += 1
        return gone

    def __repr__(self):
        return f"Session({self.room_id!r}, {self.player_name!r}, id={self.session_id})"


def completed_future(result=None) -> Future:
    fut: Future = Future()
    fut.set_result(result)
    return fut


def failed_future(exc: BaseException) -> Future:
    fut: Future = Future()
    fut.set_exception(exc)
    return fut


class RoomClient(ABC):
    """Bidirectional connection to an authoritative combat room."""

    @abstractmethod
    def join_or_create(self, player_name: str, player_health: float, room_id: str,
                       on_state_change: OnStateChange, on_message: OnMessage) -> Session:
        """Join ``room_id`` (creating it if needed).

        Raises RoomConnectionError when no session could be established.
        """

    @abstractmethod
    def send(self, session: Session, payload: str) -> Future:
        """Queue ``payload`` for the room.

        The returned future resolves on acknowledgment or fails with
        RetryableError.
        """

    @abstractmethod
    def leave(self, session: Session) -> None:
        """Leave the room. Anything not yet sent may be dropped."""
