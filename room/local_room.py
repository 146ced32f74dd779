"""Combat Client - Local Room

An in-process stand-in for the authoritative combat room. It keeps the
monster's health, collects one turn delta from every member, and once all
members have submitted it answers each of them with the merged player-to-player
effects and the monster's attack. State is pushed to every member whenever it
changes.

Callbacks are delivered synchronously on the caller's thread.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from . import MAX_PLAYERS
from .errors import RetryableError, RoomConnectionError, ResponseParseError
from .message_protocol import (
    decode_turn_delta,
    encode_payload,
    target_entries,
)
from .room_client import (
    OnMessage,
    OnStateChange,
    RoomClient,
    Session,
    StateSnapshot,
    completed_future,
    failed_future,
)

logger = logging.getLogger(__name__)

DEFAULT_MONSTER_HEALTH = 200.0
DEFAULT_ATTACK_DAMAGE = 8.0


class RoomState(Enum):
    WAITING = "waiting"          # collecting deltas
    RESOLVED = "resolved"        # monster defeated


@dataclass
class RoomMember:
    """A player joined to a local room."""
    name: str
    session_id: str
    health_ratio: float
    on_state_change: OnStateChange
    on_message: OnMessage
    joined_at: float = field(default_factory=time.time)
    submitted: Optional[Dict[str, Any]] = None
    first_state_sent: bool = False


class LocalRoom:
    """Authoritative state for one combat instance."""

    def __init__(self, room_id: str, monster_health: float = DEFAULT_MONSTER_HEALTH,
                 attack_damage: float = DEFAULT_ATTACK_DAMAGE,
                 attack_buff: Optional[Dict[str, Any]] = None,
                 rng: Optional[random.Random] = None):
        self.room_id = room_id
        self.monster_health = float(monster_health)
        self.attack_damage = float(attack_damage)
        self.attack_buff = attack_buff
        self.rng = rng or random.Random()
        self.members: Dict[str, RoomMember] = {}
        self.state = RoomState.WAITING
        self.turn = 1
        self.received: List[Dict[str, Any]] = []
        self._lock = threading.RLock()

    # --- Membership ---

    def join(self, name: str, health_ratio: float, session_id: str,
             on_state_change: OnStateChange, on_message: OnMessage) -> RoomMember:
        with self._lock:
            if name not in self.members and len(self.members) >= MAX_PLAYERS:
                raise RoomConnectionError(f"Room {self.room_id} is full")
            if self.state is RoomState.RESOLVED:
                raise RoomConnectionError(f"Combat in room {self.room_id} is already over")
            member = RoomMember(name, session_id, health_ratio, on_state_change, on_message)
            self.members[name] = member
            logger.info("%s joined room %s", name, self.room_id)
        self.broadcast_state()
        return member

    def leave(self, name: str):
        with self._lock:
            if self.members.pop(name, None) is None:
                return
            logger.info("%s left room %s", name, self.room_id)
            ready = self._all_submitted()
        if ready:
            self._resolve_turn()
        self.broadcast_state()

    # --- Turn exchange ---

    def submit(self, name: str, payload: str):
        try:
            delta = decode_turn_delta(payload)
        except ResponseParseError as e:
            logger.warning("Rejected delta from %s: %s", name, e)
            raise RetryableError(f"Room rejected delta: {e}") from e

        with self._lock:
            member = self.members.get(name)
            if member is None:
                raise RetryableError(f"{name} is not in room {self.room_id}")
            self.received.append(delta)
            self.monster_health = max(self.monster_health - delta["damage"], 0.0)
            if delta["player_health"] is not None:
                member.health_ratio = delta["player_health"]
            member.submitted = delta
            if self.monster_health <= 0:
                self.state = RoomState.RESOLVED
            ready = self._all_submitted()

        self.broadcast_state()
        if ready:
            self._resolve_turn()

    def _all_submitted(self) -> bool:
        return bool(self.members) and all(m.submitted is not None for m in self.members.values())

    def _resolve_turn(self):
        with self._lock:
            merged: Dict[str, Dict[str, Any]] = {}
            for member in self.members.values():
                for target, fx in (member.submitted or {}).get("targets", {}).items():
                    slot = merged.setdefault(target, {"healing": 0.0, "draw": 0, "buffs": []})
                    slot["healing"] += fx["healing"]
                    slot["draw"] += fx["draw"]
                    slot["buffs"].extend(fx["buffs"])
                member.submitted = None
            response = {
                "targets": target_entries(merged),
                "enemy_attack": self._enemy_attack(),
            }
            recipients = list(self.members.values())
            self.turn += 1

        payload = encode_payload(response)
        for member in recipients:
            member.on_message(payload)

    def _enemy_attack(self) -> Dict[str, Any]:
        if self.monster_health <= 0:
            return {"damage": 0.0, "buff": None}
        # +/- 25% spread around the base damage
        spread = self.attack_damage * 0.25
        damage = round(self.attack_damage + self.rng.uniform(-spread, spread), 1)
        return {"damage": damage, "buff": self.attack_buff}

    # --- State push ---

    def snapshot(self) -> StateSnapshot:
        with self._lock:
            return StateSnapshot(
                players={m.name: m.health_ratio for m in self.members.values()},
                monster_health=self.monster_health,
            )

    def broadcast_state(self):
        snap = self.snapshot()
        with self._lock:
            recipients = list(self.members.values())
        for member in recipients:
            first = not member.first_state_sent
            member.first_state_sent = True
            member.on_state_change(snap, first)


class LocalRoomServer:
    """Registry of local rooms keyed by room id."""

    def __init__(self, monster_health: float = DEFAULT_MONSTER_HEALTH,
                 attack_damage: float = DEFAULT_ATTACK_DAMAGE,
                 attack_buff: Optional[Dict[str, Any]] = None, seed: Optional[int] = None):
        self.monster_health = monster_health
        self.attack_damage = attack_damage
        self.attack_buff = attack_buff
        self.rooms: Dict[str, LocalRoom] = {}
        self.online = True
        self._rng = random.Random(seed)

    def room(self, room_id: str) -> LocalRoom:
        room = self.rooms.get(room_id)
        if room is None:
            room = self.rooms[room_id] = LocalRoom(
                room_id, self.monster_health, self.attack_damage, self.attack_buff,
                random.Random(self._rng.random()))
        return room


class LocalRoomClient(RoomClient):
    """``RoomClient`` backed by a ``LocalRoomServer``.

    ``fail_sends`` makes the next N sends fail with RetryableError.
    """

    def __init__(self, server: Optional[LocalRoomServer] = None):
        self.server = server or LocalRoomServer()
        self.fail_sends = 0
        self.sent: List[str] = []

    def join_or_create(self, player_name: str, player_health: float, room_id: str,
                       on_state_change: OnStateChange, on_message: OnMessage) -> Session:
        if not self.server.online:
            raise RoomConnectionError("Local room server is offline")
        session = Session(room_id, player_name)
        self.server.room(room_id).join(player_name, player_health, session.session_id,
                                       on_state_change, on_message)
        return session

    def send(self, session: Session, payload: str):
        if not session.active:
            return failed_future(RetryableError("Session has left the room"))
        if self.fail_sends > 0:
            self.fail_sends -= 1
            return failed_future(RetryableError("Simulated send failure"))
        try:
            self.server.room(session.room_id).submit(session.player_name, payload)
        except RetryableError as e:
            return failed_future(e)
        self.sent.append(payload)
        return completed_future(True)

    def leave(self, session: Session):
        if session.active:
            self.server.room(session.room_id).leave(session.player_name)
            session.active = False
