"""Virus Combat - Local Room Tests

Membership, turn resolution and state pushes of the in-process room.
"""

import json
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from room import MAX_PLAYERS
from room.errors import RetryableError, RoomConnectionError
from room.local_room import LocalRoomClient, LocalRoomServer, RoomState
from room.message_protocol import encode_payload


class Recorder:
    """Collects callbacks for one joined player."""

    def __init__(self):
        self.states = []
        self.messages = []

    def on_state(self, snapshot, first):
        self.states.append((snapshot, first))

    def on_message(self, payload):
        self.messages.append(json.loads(payload))


class TestLocalRoom(unittest.TestCase):

    def setUp(self):
        self.server = LocalRoomServer(monster_health=100, attack_damage=8, seed=1)
        self.client = LocalRoomClient(self.server)
        self.ada = Recorder()
        self.bob = Recorder()

    def join(self, name, recorder, health=1.0):
        return self.client.join_or_create(name, health, "Helsinki_Center",
                                          recorder.on_state, recorder.on_message)

    def test_join_pushes_first_state(self):
        self.join("Ada", self.ada)
        snapshot, first = self.ada.states[0]
        self.assertTrue(first)
        self.assertEqual(snapshot.players, {"Ada": 1.0})
        self.assertEqual(snapshot.monster_health, 100)

    def test_second_join_notifies_both(self):
        self.join("Ada", self.ada)
        self.join("Bob", self.bob, 0.5)
        snapshot, first = self.ada.states[-1]
        self.assertFalse(first)
        self.assertEqual(snapshot.players, {"Ada": 1.0, "Bob": 0.5})

    def test_offline_server_refuses_join(self):
        self.server.online = False
        with self.assertRaises(RoomConnectionError):
            self.join("Ada", self.ada)

    def test_full_room_refuses_join(self):
        for i in range(MAX_PLAYERS):
            self.join(f"P{i}", Recorder())
        with self.assertRaises(RoomConnectionError):
            self.join("Late", self.ada)

    def test_damage_applies_on_submit(self):
        session = self.join("Ada", self.ada)
        self.join("Bob", self.bob)
        self.client.send(session, encode_payload({"damage": 30, "player_health": 0.9, "targets": []})).result()
        snapshot, _ = self.ada.states[-1]
        self.assertEqual(snapshot.monster_health, 70)
        self.assertEqual(snapshot.players["Ada"], 0.9)
        # Bob has not submitted yet
        self.assertEqual(self.ada.messages, [])

    def test_turn_resolves_when_everyone_submitted(self):
        ada = self.join("Ada", self.ada)
        bob = self.join("Bob", self.bob)
        self.client.send(ada, encode_payload({"damage": 0, "targets": [
            {"target": "Bob", "healing": 15, "draw": 0, "buffs": []}]}))
        self.client.send(bob, encode_payload({"damage": 0, "targets": [
            {"target": "Ada", "healing": 0, "draw": 2, "buffs": []}]}))

        self.assertEqual(len(self.ada.messages), 1)
        self.assertEqual(self.ada.messages, self.bob.messages)
        response = self.ada.messages[0]
        by_name = {t["target"]: t for t in response["targets"]}
        self.assertEqual(by_name["Bob"]["healing"], 15)
        self.assertEqual(by_name["Ada"]["draw"], 2)
        self.assertGreaterEqual(response["enemy_attack"]["damage"], 6)
        self.assertLessEqual(response["enemy_attack"]["damage"], 10)

    def test_dead_monster_does_not_attack(self):
        session = self.join("Ada", self.ada)
        self.client.send(session, encode_payload({"damage": 500, "targets": []}))
        room = self.server.room("Helsinki_Center")
        self.assertIs(room.state, RoomState.RESOLVED)
        self.assertEqual(self.ada.messages[0]["enemy_attack"]["damage"], 0.0)
        with self.assertRaises(RoomConnectionError):
            self.join("Bob", self.bob)

    def test_leaving_member_unblocks_resolution(self):
        ada = self.join("Ada", self.ada)
        bob = self.join("Bob", self.bob)
        self.client.send(ada, encode_payload({"damage": 1, "targets": []}))
        self.client.leave(bob)
        self.assertEqual(len(self.ada.messages), 1)
        self.assertFalse(bob.active)
        self.assertEqual(self.ada.states[-1][0].players, {"Ada": 1.0})

    def test_bad_payload_fails_the_send(self):
        session = self.join("Ada", self.ada)
        future = self.client.send(session, "{broken")
        self.assertIsInstance(future.exception(), RetryableError)

    def test_injected_failures(self):
        session = self.join("Ada", self.ada)
        self.client.fail_sends = 1
        self.assertIsInstance(self.client.send(session, '{"damage":1}').exception(), RetryableError)
        self.assertIsNone(self.client.send(session, '{"damage":1}').exception())
        self.assertEqual(self.client.sent, ['{"damage":1}'])

    def test_send_after_leave_fails(self):
        session = self.join("Ada", self.ada)
        self.client.leave(session)
        self.assertIsInstance(self.client.send(session, '{"damage":1}').exception(), RetryableError)


if __name__ == '__main__':
    unittest.main()
