from __future__ import annotations

import random
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .card_engine import Card

DEFENSE = "defense"
ATTACK = "attack"


# ---------------- Buffs ----------------
@dataclass
class Buff:
    """Timed stat modifier; ``uses`` counts the turns it has left."""
    name: str
    stat: str = DEFENSE
    modifier: float = 1.0
    uses: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "stat": self.stat,
            "modifier": self.modifier,
            "uses": self.uses,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Buff':
        return cls(
            name=str(data["name"]),
            stat=str(data.get("stat", DEFENSE)),
            modifier=float(data.get("modifier", 1.0)),
            uses=int(data.get("uses", 1)),
        )


class BuffHandler:
    """Active buffs on one combatant."""

    def __init__(self):
        self.buffs: List[Buff] = []

    def receive(self, buff: Buff) -> Buff:
        # Each combatant owns its own counter
        owned = replace(buff)
        if owned.uses > 0:
            self.buffs.append(owned)
        return owned

    def decrement_usages(self) -> List[Buff]:
        """Spend one use of every buff; returns the buffs that ran out."""
        expired = []
        for buff in self.buffs:
            buff.uses -= 1
            if buff.uses <= 0:
                expired.append(buff)
        self.buffs = [b for b in self.buffs if b.uses > 0]
        return expired

    def multiplier(self, stat: str) -> float:
        value = 1.0
        for buff in self.buffs:
            if buff.stat == stat:
                value *= buff.modifier
        return value

    def clear(self):
        self.buffs.clear()

    def __len__(self):
        return len(self.buffs)

    def __iter__(self):
        return iter(list(self.buffs))


# ---------------- Combatants ----------------
class Combatant:
    """Shared health / memory / buff state for players and enemies."""

    def __init__(self, name: str, max_health: float, max_memory: int = 0):
        self.name = name
        self.max_health = float(max_health)
        self._health = float(max_health)
        self.max_memory = max_memory
        self._memory = max_memory
        self.buff_handler = BuffHandler()

    @property
    def health(self) -> float:
        return self._health

    @health.setter
    def health(self, value: float):
        self._health = min(max(float(value), 0.0), self.max_health)

    @property
    def memory(self) -> int:
        return self._memory

    @memory.setter
    def memory(self, value: int):
        self._memory = min(max(int(value), 0), self.max_memory)

    @property
    def is_alive(self) -> bool:
        return self._health > 0

    @property
    def health_ratio(self) -> float:
        if self.max_health <= 0:
            return 0.0
        return self._health / self.max_health

    @property
    def buffs(self) -> List[Buff]:
        return list(self.buff_handler.buffs)

    def change_health(self, diff: float) -> float:
        """Apply a raw health change; returns the change actually applied."""
        before = self._health
        self.health = before + diff
        return self._health - before

    def take_damage(self, amount: float) -> float:
        """Damage scaled by defense buffs; returns the health lost."""
        if amount <= 0:
            return 0.0
        defense = self.buff_handler.multiplier(DEFENSE)
        if defense > 0:
            amount = amount / defense
        return -self.change_health(-amount)

    def outgoing_damage(self, amount: float) -> float:
        return amount * self.buff_handler.multiplier(ATTACK)

    def receive_buff(self, buff: Buff) -> Buff:
        return self.buff_handler.receive(buff)

    def end_combat(self):
        self.buff_handler.clear()

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r}, health={self._health:g}/{self.max_health:g})"


class Player(Combatant):
    """Local player: combatant plus deck, hand and discard pile."""

    def __init__(self, name: str, max_health: float, max_memory: int,
                 deck: Optional[List[Card]] = None, rng: Optional[random.Random] = None):
        super().__init__(name, max_health, max_memory)
        self.deck: List[Card] = list(deck or [])
        self.hand: List[Card] = []
        self.discard_pile: List[Card] = []
        self.victory = False
        self._rng = rng or random.Random()

    def draw(self, n: int = 1) -> List[Card]:
        drawn: List[Card] = []
        for _ in range(max(n, 0)):
            if not self.deck:
                self._reshuffle_discard()
            if not self.deck:
                break
            card = self.deck.pop()
            self.hand.append(card)
            drawn.append(card)
        return drawn

    def _reshuffle_discard(self):
        if not self.discard_pile:
            return
        self.deck = self.discard_pile
        self.discard_pile = []
        self._rng.shuffle(self.deck)

    def discard(self, card: Card) -> bool:
        if card not in self.hand:
            return False
        self.hand.remove(card)
        self.discard_pile.append(card)
        return True

    def discard_hand(self) -> List[Card]:
        discarded = list(self.hand)
        self.discard_pile.extend(discarded)
        self.hand.clear()
        return discarded

    def restore_memory(self) -> int:
        """Refill memory to max; returns the difference applied."""
        diff = self.max_memory - self.memory
        self.memory = self.max_memory
        return diff

    def end_combat(self, enemy: Optional['Enemy'] = None):
        super().end_combat()
        self.victory = enemy is not None and not enemy.is_alive and self.is_alive
        self.deck.extend(self.hand)
        self.deck.extend(self.discard_pile)
        self.hand.clear()
        self.discard_pile.clear()


@dataclass
class EnemyAttack:
    """Server-computed enemy attack for one turn."""
    damage: float = 0.0
    buff: Optional[Buff] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "damage": self.damage,
            "buff": self.buff.to_dict() if self.buff else None,
        }


class Enemy(Combatant):

    def execute_attack(self, player: Player, attack: EnemyAttack) -> float:
        """Apply a server-computed attack to the player; returns health lost."""
        lost = player.take_damage(attack.damage)
        if attack.buff is not None:
            player.receive_buff(attack.buff)
        return lost
