"""Per-turn aggregation of locally caused effects.

A ``Delta`` collects everything the local player did during one turn (damage
to the enemy, heals, draws and buffs aimed at other players, the player's own
health ratio) into the single record sent to the room at end of turn. It also
holds the room's response for that turn until the next turn starts.

The object does not know about phases; the combat controller decides when
writes are legal.
"""

from typing import Any, Dict, List, Optional

from room.message_protocol import (
    RawPayload,
    decode_turn_response,
    encode_payload,
)

from .combatant import Buff, EnemyAttack


class TargetEffects:
    """Pending effects for one named target."""

    __slots__ = ("healing", "draw", "buffs")

    def __init__(self):
        self.healing = 0.0
        self.draw = 0
        self.buffs: List[Buff] = []

    def to_dict(self, name: str) -> Dict[str, Any]:
        return {
            "target": name,
            "healing": self.healing,
            "draw": self.draw,
            "buffs": [b.to_dict() for b in self.buffs],
        }


class DeltaResponse:
    """Query view over one parsed turn response."""

    def __init__(self, parsed: Dict[str, Any]):
        self._targets = parsed["targets"]
        self._attack = parsed["enemy_attack"]

    def healing_for(self, name: str) -> float:
        return self._targets.get(name, {}).get("healing", 0.0)

    def draws_for(self, name: str) -> int:
        return self._targets.get(name, {}).get("draw", 0)

    def buffs_for(self, name: str) -> List[Buff]:
        return [Buff.from_dict(b) for b in self._targets.get(name, {}).get("buffs", [])]

    def enemy_attack(self) -> EnemyAttack:
        buff = self._attack.get("buff")
        return EnemyAttack(
            damage=self._attack.get("damage", 0.0),
            buff=Buff.from_dict(buff) if buff else None,
        )


_EMPTY_RESPONSE = DeltaResponse({"targets": {}, "enemy_attack": {"damage": 0.0, "buff": None}})


class Delta:
    """Outbound effects for the current turn plus the room's response to it."""

    def __init__(self):
        self._damage = 0.0
        self._player_health: Optional[float] = None
        self._targets: Dict[str, TargetEffects] = {}
        self._response: Optional[DeltaResponse] = None
        self._last_flushed: Optional[Dict[str, Any]] = None

    # --- Outbound accumulation ---

    def add_damage(self, amount: float):
        # Summed as-is; clamping belongs to the combatant
        self._damage += amount

    def _slot(self, target: str) -> TargetEffects:
        slot = self._targets.get(target)
        if slot is None:
            slot = self._targets[target] = TargetEffects()
        return slot

    def report_healing(self, target: str, amount: float):
        self._slot(target).healing += amount

    def report_draw(self, target: str, count: int):
        self._slot(target).draw += int(count)

    def report_buff(self, target: str, buff: Buff):
        self._slot(target).buffs.append(Buff(buff.name, buff.stat, buff.modifier, buff.uses))

    def set_player_health_ratio(self, ratio: float):
        self._player_health = min(max(float(ratio), 0.0), 1.0)

    @property
    def damage(self) -> float:
        return self._damage

    @property
    def player_health_ratio(self) -> Optional[float]:
        return self._player_health

    @property
    def is_empty(self) -> bool:
        return not self._damage and not self._targets and self._player_health is None

    def serialize(self) -> Dict[str, Any]:
        """Canonical outbound record; stable across calls without writes."""
        record: Dict[str, Any] = {
            "damage": self._damage,
            "targets": [fx.to_dict(name) for name, fx in self._targets.items()],
        }
        if self._player_health is not None:
            record["player_health"] = self._player_health
        return record

    def to_json(self) -> str:
        return encode_payload(self.serialize())

    def mark_flushed(self) -> Dict[str, Any]:
        """Remember what was sent, then clear the outbound fields."""
        self._last_flushed = self.serialize()
        self.clear_outbound()
        return self._last_flushed

    @property
    def last_flushed(self) -> Optional[Dict[str, Any]]:
        return self._last_flushed

    @property
    def has_unsent_changes(self) -> bool:
        """False only when the record matches what the last flush already carried."""
        if self._last_flushed is None:
            return True
        if self._damage or self._targets:
            return True
        return self._player_health != self._last_flushed.get("player_health")

    def sent_buffs_for(self, name: str) -> List[Dict[str, Any]]:
        """Buff descriptors this client sent for ``name`` in its last flush."""
        if not self._last_flushed:
            return []
        return [b for entry in self._last_flushed["targets"] if entry["target"] == name
                for b in entry["buffs"]]

    def clear_outbound(self):
        """Drop outbound fields; the ingested response stays."""
        self._damage = 0.0
        self._player_health = None
        self._targets = {}

    def reset(self):
        """Start-of-turn reset: empty outbound record and no response."""
        self.clear_outbound()
        self._response = None
        self._last_flushed = None

    # --- Inbound response ---

    def ingest_response(self, raw: RawPayload) -> DeltaResponse:
        """Parse and keep a room response; raises ResponseParseError if unusable."""
        self._response = DeltaResponse(decode_turn_response(raw))
        return self._response

    @property
    def response(self) -> DeltaResponse:
        return self._response or _EMPTY_RESPONSE

    @property
    def has_response(self) -> bool:
        return self._response is not None

    def healing_for(self, name: str) -> float:
        return self.response.healing_for(name)

    def draws_for(self, name: str) -> int:
        return self.response.draws_for(name)

    def buffs_for(self, name: str) -> List[Buff]:
        return self.response.buffs_for(name)

    def enemy_attack(self) -> EnemyAttack:
        return self.response.enemy_attack()
