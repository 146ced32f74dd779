"""Virus Combat - Socket Room Client Tests

The TCP client is driven against a scripted in-memory socket.
"""

import os
import queue
import socket
import sys
import threading
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from room.errors import RetryableError, RoomConnectionError
from room.message_protocol import (
    MessageProtocol,
    MessageType,
    deserialize_message,
    serialize_message,
    split_frames,
)
from room.socket_client import ClientState, SocketRoomClient


class ScriptedSocket:
    """Socket stand-in that answers like a room server."""

    def __init__(self, refuse_join=False, ack_deltas=True):
        self.refuse_join = refuse_join
        self.ack_deltas = ack_deltas
        self.protocol = MessageProtocol()
        self.inbound = queue.Queue()
        self.received = []
        self.closed = False
        self.fail_sends = False
        self.connect_error = None

    # socket API used by the client
    def settimeout(self, timeout):
        pass

    def connect(self, address):
        if self.connect_error:
            raise self.connect_error
        self.address = address

    def sendall(self, data):
        if self.fail_sends:
            raise BrokenPipeError("pipe closed")
        frames, _ = split_frames(data)
        for frame in frames:
            message = deserialize_message(frame)
            self.received.append(message)
            self._answer(message)

    def recv(self, size):
        if self.closed:
            return b""
        try:
            data = self.inbound.get(timeout=0.02)
        except queue.Empty:
            raise socket.timeout()
        return data

    def close(self):
        self.closed = True

    # scripted server side
    def push(self, msg_type, data):
        self.inbound.put(serialize_message(self.protocol.create_message(msg_type, data)))

    def _answer(self, message):
        if message.type is MessageType.JOIN_ROOM:
            if self.refuse_join:
                self.push(MessageType.ERROR, {"error_message": "room full"})
                return
            self.push(MessageType.JOINED, {"session_id": "abc123"})
            self.push(MessageType.STATE, {"players": {message.data["player_name"]: 1.0},
                                          "monster_health": 200})
        elif message.type is MessageType.TURN_DELTA and self.ack_deltas:
            self.push(MessageType.ACK, {"ack": message.sequence})


class TestSocketRoomClient(unittest.TestCase):

    def setUp(self):
        self.sock = ScriptedSocket()
        patcher = patch('room.socket_client.socket.socket', return_value=self.sock)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = SocketRoomClient("localhost", 2567, timeout=1.0)
        self.addCleanup(self.client._cleanup_connection)
        self.states = []
        self.messages = []
        self.state_seen = threading.Event()
        self.message_seen = threading.Event()

    def on_state(self, snapshot, first):
        self.states.append((snapshot, first))
        self.state_seen.set()

    def on_message(self, payload):
        self.messages.append(payload)
        self.message_seen.set()

    def join(self):
        return self.client.join_or_create("Ada", 1.0, "Helsinki_Center",
                                          self.on_state, self.on_message)

    def test_join_returns_session(self):
        session = self.join()
        self.assertEqual(session.session_id, "abc123")
        self.assertEqual(session.room_id, "Helsinki_Center")
        self.assertEqual(self.client.state, ClientState.IN_ROOM)
        self.assertEqual(self.sock.address, ("localhost", 2567))
        self.assertEqual(self.sock.received[0].data["player_name"], "Ada")

    def test_first_state_push_is_flagged(self):
        self.join()
        self.assertTrue(self.state_seen.wait(1.0))
        snapshot, first = self.states[0]
        self.assertTrue(first)
        self.assertEqual(snapshot.monster_health, 200)

    def test_connect_failure_raises_connection_error(self):
        self.sock.connect_error = ConnectionRefusedError("refused")
        with self.assertRaises(RoomConnectionError):
            self.join()
        self.assertEqual(self.client.state, ClientState.DISCONNECTED)

    def test_refused_join_raises_connection_error(self):
        self.sock.refuse_join = True
        with self.assertRaises(RoomConnectionError) as ctx:
            self.join()
        self.assertIn("room full", str(ctx.exception))

    def test_send_resolves_on_ack(self):
        session = self.join()
        self.assertTrue(self.client.send(session, '{"damage":12}').result(timeout=1.0))
        self.assertEqual(self.sock.received[-1].data, {"payload": '{"damage":12}'})

    def test_send_failure_is_retryable(self):
        session = self.join()
        self.sock.fail_sends = True
        future = self.client.send(session, '{"damage":12}')
        self.assertIsInstance(future.exception(timeout=1.0), RetryableError)

    def test_send_without_session_is_retryable(self):
        session = self.join()
        self.client.leave(session)
        self.assertIsInstance(self.client.send(session, "{}").exception(), RetryableError)

    def test_turn_response_reaches_callback(self):
        self.join()
        self.sock.push(MessageType.TURN_RESPONSE, {"payload": '{"targets":[]}'})
        self.assertTrue(self.message_seen.wait(1.0))
        self.assertEqual(self.messages, ['{"targets":[]}'])

    def test_leave_fails_unacknowledged_sends(self):
        session = self.join()
        self.sock.ack_deltas = False
        pending = self.client.send(session, "{}")
        self.client.leave(session)
        self.assertIsInstance(pending.exception(timeout=1.0), RetryableError)
        self.assertEqual(self.sock.received[-1].type, MessageType.LEAVE_ROOM)
        self.assertTrue(self.sock.closed)
        self.assertFalse(session.active)
        self.assertEqual(self.client.state, ClientState.DISCONNECTED)


if __name__ == '__main__':
    unittest.main()
