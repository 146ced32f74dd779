"""Virus Combat - Event Bus Tests

Subscription bookkeeping, delivery order and subscriber failure isolation.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from combat.card_engine import STARTER_CARDS
from combat.events import Channel, DrawEvent, EventBus, HealthEvent


class TestEventBus(unittest.TestCase):

    def setUp(self):
        self.bus = EventBus()
        self.received = []

    def test_delivers_in_subscription_order(self):
        self.bus.subscribe(Channel.CARD_PLAYED, lambda p: self.received.append(("a", p)))
        self.bus.subscribe(Channel.CARD_PLAYED, lambda p: self.received.append(("b", p)))

        delivered = self.bus.publish(Channel.CARD_PLAYED, 42)

        self.assertEqual(delivered, 2)
        self.assertEqual(self.received, [("a", 42), ("b", 42)])

    def test_subscribe_is_idempotent(self):
        handler = self.received.append
        self.bus.subscribe(Channel.CARDS_DRAWN, handler)
        self.bus.subscribe(Channel.CARDS_DRAWN, handler)

        self.bus.publish(Channel.CARDS_DRAWN, "x")

        self.assertEqual(self.received, ["x"])
        self.assertEqual(len(self.bus.subscribers(Channel.CARDS_DRAWN)), 1)

    def test_unsubscribe_unknown_handler_is_noop(self):
        self.bus.unsubscribe(Channel.CARDS_DRAWN, self.received.append)
        handler = self.received.append
        self.bus.subscribe(Channel.CARDS_DRAWN, handler)
        self.bus.unsubscribe(Channel.CARDS_DRAWN, handler)
        self.bus.unsubscribe(Channel.CARDS_DRAWN, handler)

        self.assertEqual(self.bus.publish(Channel.CARDS_DRAWN, "x"), 0)
        self.assertEqual(self.received, [])

    def test_failing_subscriber_does_not_block_others(self):
        def broken(_payload):
            raise RuntimeError("boom")

        self.bus.subscribe(Channel.PLAYER_HEALTH_CHANGED, broken)
        self.bus.subscribe(Channel.PLAYER_HEALTH_CHANGED, self.received.append)

        with self.assertLogs("combat.events", level="WARNING") as logs:
            delivered = self.bus.publish(Channel.PLAYER_HEALTH_CHANGED, HealthEvent(-5, 95, 100))

        self.assertEqual(delivered, 1)
        self.assertEqual(len(self.received), 1)
        self.assertIn("player_health_changed", logs.output[0])

    def test_channels_are_independent(self):
        self.bus.subscribe_enemy_health(self.received.append)
        self.bus.publish(Channel.PLAYER_HEALTH_CHANGED, "player")
        self.bus.publish(Channel.ENEMY_HEALTH_CHANGED, "enemy")
        self.assertEqual(self.received, ["enemy"])

    def test_late_subscriber_misses_earlier_events(self):
        self.bus.publish(Channel.RESOURCE_CHANGED, "early")
        self.bus.subscribe_resource(self.received.append)
        self.bus.publish(Channel.RESOURCE_CHANGED, "late")
        self.assertEqual(self.received, ["late"])

    def test_unsubscribe_during_publish_keeps_current_delivery(self):
        def first(payload):
            self.received.append("first")
            self.bus.unsubscribe(Channel.CARD_DISCARDED, second)

        def second(payload):
            self.received.append("second")

        self.bus.subscribe(Channel.CARD_DISCARDED, first)
        self.bus.subscribe(Channel.CARD_DISCARDED, second)
        self.bus.publish(Channel.CARD_DISCARDED, None)
        self.bus.publish(Channel.CARD_DISCARDED, None)

        self.assertEqual(self.received, ["first", "second", "first"])

    def test_draw_event_counts_cards(self):
        event = DrawEvent([STARTER_CARDS[1], STARTER_CARDS[2]])
        self.assertEqual(event.num_cards, 2)

    def test_clear_drops_all_subscriptions(self):
        self.bus.subscribe_cards_drawn(self.received.append)
        self.bus.clear()
        self.assertEqual(self.bus.publish(Channel.CARDS_DRAWN, "x"), 0)


if __name__ == '__main__':
    unittest.main()
