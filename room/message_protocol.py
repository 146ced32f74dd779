"""Combat Client - Room Message Protocol

This module defines the messages exchanged with an authoritative combat room:
the envelope and length-prefixed framing used on stream transports, and the
payload schemas for the outbound turn delta, the inbound turn response and the
asynchronous state push.
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import ResponseParseError

logger = logging.getLogger(__name__)


class MessageType(Enum):
    """Room message types."""

    # Session
    JOIN_ROOM = "join_room"
    JOINED = "joined"
    LEAVE_ROOM = "leave_room"
    HEARTBEAT = "heartbeat"

    # Turn exchange
    TURN_DELTA = "turn_delta"
    TURN_RESPONSE = "turn_response"
    ACK = "ack"

    # Server push
    STATE = "state"

    ERROR = "error"


@dataclass
class NetworkMessage:
    """A room message with metadata and payload."""

    type: MessageType
    sequence: int
    data: Dict[str, Any]
    timestamp: float = 0.0
    checksum: Optional[str] = None

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.time()
        if self.checksum is None:
            self.checksum = self._calculate_checksum()

    def _calculate_checksum(self) -> str:
        """SHA-256 of the message content, truncated."""
        content = {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
            "data": self.data
        }
        content_str = json.dumps(content, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(content_str.encode()).hexdigest()[:16]

    def is_valid(self) -> bool:
        return self.checksum == self._calculate_checksum()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
            "data": self.data,
            "checksum": self.checksum
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NetworkMessage':
        return cls(
            type=MessageType(data["type"]),
            sequence=data["sequence"],
            data=data["data"],
            timestamp=data["timestamp"],
            checksum=data.get("checksum")
        )


class MessageProtocol:
    """Creates sequenced messages for one connection."""

    def __init__(self):
        self.sequence_counter = 0

    def create_message(self, msg_type: MessageType, data: Dict[str, Any]) -> NetworkMessage:
        self.sequence_counter += 1
        return NetworkMessage(type=msg_type, sequence=self.sequence_counter, data=data)

    def create_join_message(self, player_name: str, player_health: float, room_id: str) -> NetworkMessage:
        return self.create_message(MessageType.JOIN_ROOM, {
            "player_name": player_name,
            "player_health": player_health,
            "room_id": room_id
        })

    def create_delta_message(self, payload: str) -> NetworkMessage:
        return self.create_message(MessageType.TURN_DELTA, {"payload": payload})

    def create_leave_message(self) -> NetworkMessage:
        return self.create_message(MessageType.LEAVE_ROOM, {})

    def create_heartbeat_message(self) -> NetworkMessage:
        return self.create_message(MessageType.HEARTBEAT, {"alive": True})


HEADER_SIZE = 4


def serialize_message(message: NetworkMessage) -> bytes:
    """Serialize a message to a 4-byte big-endian length prefix plus JSON."""
    try:
        json_str = json.dumps(message.to_dict(), separators=(',', ':'))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize message: {e}") from e
    message_bytes = json_str.encode('utf-8')
    return len(message_bytes).to_bytes(HEADER_SIZE, byteorder='big') + message_bytes


def deserialize_message(data: bytes) -> NetworkMessage:
    """Deserialize one framed message; raises ValueError on bad input."""
    if len(data) < HEADER_SIZE:
        raise ValueError("Invalid message: too short for length header")

    length = int.from_bytes(data[:HEADER_SIZE], byteorder='big')
    if len(data) < HEADER_SIZE + length:
        raise ValueError("Invalid message: incomplete data")

    try:
        message_dict = json.loads(data[HEADER_SIZE:HEADER_SIZE + length].decode('utf-8'))
        message = NetworkMessage.from_dict(message_dict)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to deserialize message: invalid JSON - {e}") from e
    except (KeyError, TypeError, UnicodeDecodeError) as e:
        raise ValueError(f"Failed to deserialize message: {e}") from e

    if not message.is_valid():
        raise ValueError("Invalid message: checksum mismatch")
    return message


def split_frames(buffer: bytes):
    """Split complete frames off the front of a receive buffer.

    Returns ``(frames, remainder)``.
    """
    frames = []
    while len(buffer) >= HEADER_SIZE:
        length = int.from_bytes(buffer[:HEADER_SIZE], byteorder='big')
        if len(buffer) < HEADER_SIZE + length:
            break
        frames.append(buffer[:HEADER_SIZE + length])
        buffer = buffer[HEADER_SIZE + length:]
    return frames, buffer


# ---------------- Payload schemas ----------------
#
# Turn delta (client -> room):
#   {"damage": float, "player_health": float (0..1, omitted if unknown),
#    "targets": [{"target": str, "healing": float, "draw": int,
#                 "buffs": [{"name", "stat", "modifier", "uses"}]}]}
#
# Turn response (room -> client):
#   {"targets": [<same entries>], "enemy_attack": {"damage": float, "buff": <buff>|null}}
#
# State push (room -> client):
#   {"players": {name: health_ratio}, "monster_health": float}

RawPayload = Union[str, bytes, Dict[str, Any]]


def _as_object(raw: RawPayload, what: str) -> Dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ResponseParseError(f"{what}: not UTF-8 ({e})") from e
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ResponseParseError(f"{what}: invalid JSON - {e}") from e
    if not isinstance(raw, dict):
        raise ResponseParseError(f"{what}: expected an object, got {type(raw).__name__}")
    return raw


def _number(value, default=0.0) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number, got {value!r}")
    return float(value)


def decode_buff(data) -> Dict[str, Any]:
    if not isinstance(data, dict) or not isinstance(data.get("name"), str):
        raise TypeError(f"bad buff descriptor: {data!r}")
    return {
        "name": data["name"],
        "stat": str(data.get("stat", "defense")),
        "modifier": _number(data.get("modifier"), 1.0),
        "uses": int(_number(data.get("uses"), 1)),
    }


def decode_target_entry(entry) -> Optional[Dict[str, Any]]:
    """Normalize one per-target entry; returns None when it is unusable."""
    if not isinstance(entry, dict) or not isinstance(entry.get("target"), str):
        logger.warning("Ignoring malformed target entry: %r", entry)
        return None
    try:
        buffs = entry.get("buffs") or []
        if not isinstance(buffs, list):
            raise TypeError("buffs must be a list")
        return {
            "target": entry["target"],
            "healing": _number(entry.get("healing")),
            "draw": int(_number(entry.get("draw"))),
            "buffs": [decode_buff(b) for b in buffs],
        }
    except (TypeError, ValueError) as e:
        logger.warning("Ignoring malformed entry for %s: %s", entry.get("target"), e)
        return None


def merge_target_entries(entries) -> Dict[str, Dict[str, Any]]:
    """Fold a list of target entries into name -> summed effects."""
    merged: Dict[str, Dict[str, Any]] = {}
    if not isinstance(entries, list):
        return merged
    for entry in entries:
        norm = decode_target_entry(entry)
        if norm is None:
            continue
        slot = merged.setdefault(norm["target"], {"healing": 0.0, "draw": 0, "buffs": []})
        slot["healing"] += norm["healing"]
        slot["draw"] += norm["draw"]
        slot["buffs"].extend(norm["buffs"])
    return merged


def decode_turn_delta(raw: RawPayload) -> Dict[str, Any]:
    """Parse a turn delta as the room sees it."""
    obj = _as_object(raw, "turn delta")
    try:
        damage = _number(obj.get("damage"))
        health = obj.get("player_health")
        health = None if health is None else _number(health)
    except TypeError as e:
        raise ResponseParseError(f"turn delta: {e}") from e
    return {
        "damage": damage,
        "player_health": health,
        "targets": merge_target_entries(obj.get("targets", [])),
    }


def decode_turn_response(raw: RawPayload) -> Dict[str, Any]:
    """Parse a turn response; only a wholly unusable payload raises."""
    obj = _as_object(raw, "turn response")
    attack = obj.get("enemy_attack") or {}
    if not isinstance(attack, dict):
        raise ResponseParseError(f"turn response: bad enemy_attack {attack!r}")
    try:
        damage = _number(attack.get("damage"))
    except TypeError as e:
        raise ResponseParseError(f"turn response: {e}") from e
    buff = attack.get("buff")
    if buff is not None:
        try:
            buff = decode_buff(buff)
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed enemy attack buff: %s", e)
            buff = None
    return {
        "targets": merge_target_entries(obj.get("targets", [])),
        "enemy_attack": {"damage": damage, "buff": buff},
    }


def decode_state_push(raw: RawPayload) -> Dict[str, Any]:
    """Parse a state push into ``{"players": {...}, "monster_health": float|None}``."""
    obj = _as_object(raw, "state push")
    players: Dict[str, float] = {}
    roster = obj.get("players") or {}
    if isinstance(roster, dict):
        for name, ratio in roster.items():
            try:
                players[str(name)] = _number(ratio)
            except TypeError:
                logger.warning("Ignoring roster entry %r=%r", name, ratio)
    monster = obj.get("monster_health")
    try:
        monster = None if monster is None else _number(monster)
    except TypeError as e:
        raise ResponseParseError(f"state push: {e}") from e
    return {"players": players, "monster_health": monster}


def encode_payload(record: Dict[str, Any]) -> str:
    """Canonical JSON text for a payload record."""
    return json.dumps(record, sort_keys=True, separators=(',', ':'))


def target_entries(merged: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {"target": name, "healing": fx["healing"], "draw": fx["draw"], "buffs": list(fx["buffs"])}
        for name, fx in merged.items()
    ]
