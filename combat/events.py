from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    from .card_engine import Card

logger = logging.getLogger(__name__)


class Channel(Enum):
    """Named notification channels published by the combat controller."""
    CARDS_DRAWN = "cards_drawn"
    CARD_PLAYED = "card_played"
    PLAYER_HEALTH_CHANGED = "player_health_changed"
    ENEMY_HEALTH_CHANGED = "enemy_health_changed"
    RESOURCE_CHANGED = "resource_changed"
    CARD_DISCARDED = "card_discarded"


# --- Payloads ---

@dataclass(frozen=True)
class DrawEvent:
    cards: List['Card'] = field(default_factory=list)

    @property
    def num_cards(self) -> int:
        return len(self.cards)


@dataclass(frozen=True)
class CardPlayedEvent:
    card: 'Card'
    target: str


@dataclass(frozen=True)
class HealthEvent:
    diff: float
    health: float
    max_health: float


@dataclass(frozen=True)
class MemoryEvent:
    diff: int
    memory: int


@dataclass(frozen=True)
class CardDiscardedEvent:
    card: 'Card'


class EventBus:
    """Synchronous fan-out of game events to subscribers.

    Subscribers run in subscription order. A subscriber that raises is logged
    and skipped; the remaining subscribers still receive the payload. The bus
    keeps no history, so late subscribers miss earlier events.
    """

    def __init__(self):
        self._subs: Dict[Channel, List[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, channel: Channel, cb: Callable[[Any], None]) -> None:
        subs = self._subs[channel]
        if cb not in subs:
            subs.append(cb)

    def unsubscribe(self, channel: Channel, cb: Callable[[Any], None]) -> None:
        subs = self._subs.get(channel)
        if subs and cb in subs:
            subs.remove(cb)

    def publish(self, channel: Channel, payload: Any = None) -> int:
        """Deliver payload to every subscriber; returns how many succeeded."""
        delivered = 0
        for cb in list(self._subs.get(channel, [])):
            try:
                cb(payload)
                delivered += 1
            except Exception as ex:
                logger.warning("[EVENT][%s][ERR] %s", channel.value, ex)
        return delivered

    def subscribers(self, channel: Channel) -> List[Callable[[Any], None]]:
        return list(self._subs.get(channel, []))

    # --- Channel helpers ---

    def subscribe_cards_drawn(self, cb: Callable[[DrawEvent], None]):
        self.subscribe(Channel.CARDS_DRAWN, cb)

    def subscribe_card_played(self, cb: Callable[[CardPlayedEvent], None]):
        self.subscribe(Channel.CARD_PLAYED, cb)

    def subscribe_player_health(self, cb: Callable[[HealthEvent], None]):
        self.subscribe(Channel.PLAYER_HEALTH_CHANGED, cb)

    def subscribe_enemy_health(self, cb: Callable[[HealthEvent], None]):
        self.subscribe(Channel.ENEMY_HEALTH_CHANGED, cb)

    def subscribe_resource(self, cb: Callable[[MemoryEvent], None]):
        self.subscribe(Channel.RESOURCE_CHANGED, cb)

    def subscribe_card_discarded(self, cb: Callable[[CardDiscardedEvent], None]):
        self.subscribe(Channel.CARD_DISCARDED, cb)

    # --- Utility: clear all subscriptions (for test/reset) ---
    def clear(self):
        self._subs.clear()
