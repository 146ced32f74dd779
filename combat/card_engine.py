from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from .combatant import ATTACK, DEFENSE, Buff

if TYPE_CHECKING:
    from .combatant import Combatant


@dataclass(frozen=True)
class Card:
    """Read-only card template; playing it never mutates the card."""
    id: int
    name: str
    level: int = 1
    memory_cost: int = 0
    detail: str = ""
    flavor: str = ""


class Side:
    ENEMY = "enemy"
    ALLY = "ally"   # the explicitly selected player (may be the local player)


# --- Effect records produced by card behaviors ---

@dataclass(frozen=True)
class Damage:
    amount: float
    side: str = Side.ENEMY


@dataclass(frozen=True)
class Heal:
    amount: float
    side: str = Side.ALLY


@dataclass(frozen=True)
class Draw:
    count: int
    side: str = Side.ALLY


@dataclass(frozen=True)
class ApplyBuff:
    buff: Buff
    side: str = Side.ALLY


@dataclass(frozen=True)
class CardOutcome:
    effects: Tuple[object, ...] = ()
    memory_delta: int = 0


CardBehavior = Callable[['Combatant', 'Combatant', int], CardOutcome]


# --- Behaviors (pure: actor, enemy, memory) -> outcome ---

def _no_effect(actor, enemy, memory):
    return CardOutcome()


def _strike(actor, enemy, memory):
    return CardOutcome((Damage(actor.outgoing_damage(12)),))


def _overclock(actor, enemy, memory):
    boost = Buff(name="1.5x Attack", stat=ATTACK, modifier=1.5, uses=2)
    return CardOutcome((ApplyBuff(boost, Side.ALLY),))


def _patch(actor, enemy, memory):
    return CardOutcome((Heal(15),))


def _fetch(actor, enemy, memory):
    return CardOutcome((Draw(2),))


def _decrease_defense(actor, enemy, memory):
    weaken = Buff(name="0.75x Defense", stat=DEFENSE, modifier=0.75, uses=2)
    return CardOutcome((ApplyBuff(weaken, Side.ENEMY),))


def _firewall(actor, enemy, memory):
    # Second use covers the enemy attack that lands after the end-of-turn decrement
    shield = Buff(name="2x Defense", stat=DEFENSE, modifier=2.0, uses=2)
    return CardOutcome((ApplyBuff(shield, Side.ALLY),))


STARTER_CARDS: Dict[int, Card] = {
    1: Card(1, "Strike", 1, 2, "Deal 12 damage to the enemy.",
            "Brute force is still a force."),
    2: Card(2, "Overclock", 1, 3, "The selected player deals 1.5x damage for two turns.",
            "Warranty void if opened."),
    3: Card(3, "Patch", 1, 3, "Restore 15 health to the selected player.",
            "Hotfixes ship on Fridays."),
    4: Card(4, "Decrease Defense", 1, 4, "Makes the enemy more vulnerable to damage",
            "Even the strongest barriers have weaknesses."),
    5: Card(5, "Fetch", 1, 2, "The selected player draws two cards.",
            "git pull --rebase"),
    6: Card(6, "Firewall", 2, 4, "The selected player takes half damage next turn.",
            "Default deny."),
}

CARD_BEHAVIORS: Dict[int, CardBehavior] = {
    1: _strike,
    2: _overclock,
    3: _patch,
    4: _decrease_defense,
    5: _fetch,
    6: _firewall,
}


def behavior_for(card: Card) -> CardBehavior:
    return CARD_BEHAVIORS.get(card.id, _no_effect)


def can_afford(card: Card, memory: int) -> bool:
    return memory >= card.memory_cost


def resolve_card(card: Card, actor: 'Combatant', enemy: 'Combatant') -> Optional[CardOutcome]:
    """Return the card's outcome with its cost applied, or None when the actor
    cannot pay for it. Behaviors may add a refund through ``memory_delta``."""
    if not can_afford(card, actor.memory):
        return None
    outcome = behavior_for(card)(actor, enemy, actor.memory)
    return CardOutcome(outcome.effects, outcome.memory_delta - card.memory_cost)


# Copies of each starter card in the default deck
_DEFAULT_COUNTS = {1: 6, 2: 2, 3: 3, 4: 2, 5: 2, 6: 2}


def build_starter_deck(rng: Optional[random.Random] = None,
                       counts: Optional[Dict[int, int]] = None) -> List[Card]:
    deck: List[Card] = []
    for card_id, n in (counts or _DEFAULT_COUNTS).items():
        deck.extend([STARTER_CARDS[card_id]] * n)
    (rng or random.Random()).shuffle(deck)
    return deck
