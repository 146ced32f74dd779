"""Combat Client - Socket Room Client

TCP transport for the room interface. Every message is a framed
``NetworkMessage`` (see ``message_protocol``). The exchange is:

    client: JOIN_ROOM {player_name, player_health, room_id}
    server: JOINED {session_id}        or ERROR {error_message}
    client: TURN_DELTA {payload}       server: ACK {ack: <sequence>}
    server: TURN_RESPONSE {payload}    server: STATE {players, monster_health}
    client: LEAVE_ROOM {}

Incoming messages are read on a background thread; callbacks run there too.
"""

import logging
import socket
import threading
from concurrent.futures import Future
from enum import Enum
from typing import Dict, Optional

from . import CONNECTION_TIMEOUT, DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT
from .errors import RetryableError, RoomConnectionError, ResponseParseError
from .message_protocol import (
    MessageProtocol,
    MessageType,
    NetworkMessage,
    deserialize_message,
    serialize_message,
    split_frames,
)
from .room_client import (
    OnMessage,
    OnStateChange,
    RoomClient,
    Session,
    StateSnapshot,
    failed_future,
)

logger = logging.getLogger(__name__)


class ClientState(Enum):
    """Socket connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IN_ROOM = "in_room"
    ERROR = "error"


class SocketRoomClient(RoomClient):
    """Room client speaking length-prefixed JSON over TCP."""

    def __init__(self, host: str = DEFAULT_SERVER_HOST, port: int = DEFAULT_SERVER_PORT,
                 timeout: float = CONNECTION_TIMEOUT):
        self.host = host
        self.port = port
        self.timeout = timeout

        self.state = ClientState.DISCONNECTED
        self.socket: Optional[socket.socket] = None
        self.protocol = MessageProtocol()

        # Threading
        self.receive_thread: Optional[threading.Thread] = None
        self.running = False
        self._send_lock = threading.Lock()
        self._pending: Dict[int, Future] = {}
        self._pending_lock = threading.Lock()

        # Join handshake
        self._joined = threading.Event()
        self._join_reply: Optional[NetworkMessage] = None

        self._on_state_change: Optional[OnStateChange] = None
        self._on_message: Optional[OnMessage] = None
        self._first_state = True

        self.message_handlers = {
            MessageType.JOINED: self._handle_joined,
            MessageType.ACK: self._handle_ack,
            MessageType.TURN_RESPONSE: self._handle_turn_response,
            MessageType.STATE: self._handle_state,
            MessageType.ERROR: self._handle_error,
            MessageType.HEARTBEAT: lambda message: None,
        }

    # ---------- RoomClient ----------

    def join_or_create(self, player_name: str, player_health: float, room_id: str,
                       on_state_change: OnStateChange, on_message: OnMessage) -> Session:
        if self.state is not ClientState.DISCONNECTED:
            raise RoomConnectionError(f"Client already {self.state.value}")

        self._on_state_change = on_state_change
        self._on_message = on_message
        self._first_state = True
        self._joined.clear()
        self._join_reply = None
        self.state = ClientState.CONNECTING

        try:
            self.socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self.socket.settimeout(self.timeout)
            self.socket.connect((self.host, self.port))
        except OSError as e:
            self._cleanup_connection()
            raise RoomConnectionError(f"Failed to connect to {self.host}:{self.port}: {e}") from e

        self.running = True
        self.receive_thread = threading.Thread(target=self._receive_loop, daemon=True)
        self.receive_thread.start()

        try:
            self._send_direct(self.protocol.create_join_message(player_name, player_health, room_id))
        except OSError as e:
            self._cleanup_connection()
            raise RoomConnectionError(f"Failed to join room {room_id}: {e}") from e

        if not self._joined.wait(self.timeout):
            self._cleanup_connection()
            raise RoomConnectionError(f"No answer from room {room_id}")

        reply = self._join_reply
        if reply is None or reply.type is not MessageType.JOINED:
            error = reply.data.get("error_message", "join refused") if reply else "connection lost"
            self._cleanup_connection()
            raise RoomConnectionError(f"Room {room_id} refused join: {error}")

        self.state = ClientState.IN_ROOM
        return Session(room_id, player_name, reply.data.get("session_id"))

    def send(self, session: Session, payload: str) -> Future:
        if self.state is not ClientState.IN_ROOM or not session.active:
            return failed_future(RetryableError("Not connected to a room"))

        message = self.protocol.create_delta_message(payload)
        pending: Future = Future()
        with self._pending_lock:
            self._pending[message.sequence] = pending
        try:
            self._send_direct(message)
        except OSError as e:
            with self._pending_lock:
                self._pending.pop(message.sequence, None)
            pending.set_exception(RetryableError(f"Failed to send delta: {e}"))
        return pending

    def leave(self, session: Session):
        if self.state is ClientState.IN_ROOM:
            try:
                self._send_direct(self.protocol.create_leave_message())
            except OSError as e:
                logger.warning("Leave message not sent: %s", e)
        session.active = False
        self._cleanup_connection()

    # ---------- Socket I/O ----------

    def _send_direct(self, message: NetworkMessage):
        if not self.socket:
            raise OSError("socket closed")
        data = serialize_message(message)
        with self._send_lock:
            self.socket.sendall(data)

    def _receive_loop(self):
        """Main receive loop running in separate thread."""
        buffer = b""
        sock = self.socket
        while self.running and sock:
            try:
                data = sock.recv(4096)
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    logger.warning("Receive error: %s", e)
                break
            if not data:
                break

            frames, buffer = split_frames(buffer + data)
            for frame in frames:
                try:
                    message = deserialize_message(frame)
                except ValueError as e:
                    logger.warning("Dropped bad frame: %s", e)
                    continue
                self._handle_received_message(message)

        if self.running:
            self._handle_connection_lost()

    def _handle_received_message(self, message: NetworkMessage):
        handler = self.message_handlers.get(message.type)
        if handler is None:
            logger.debug("Unhandled message type %s", message.type.value)
            return
        handler(message)

    def _handle_joined(self, message: NetworkMessage):
        self._join_reply = message
        self._joined.set()

    def _handle_ack(self, message: NetworkMessage):
        with self._pending_lock:
            pending = self._pending.pop(message.data.get("ack"), None)
        if pending is not None and not pending.done():
            pending.set_result(True)

    def _handle_turn_response(self, message: NetworkMessage):
        if self._on_message:
            self._on_message(message.data.get("payload"))

    def _handle_state(self, message: NetworkMessage):
        try:
            snapshot = StateSnapshot.from_payload(message.data)
        except ResponseParseError as e:
            logger.warning("Dropped state push: %s", e)
            return
        first, self._first_state = self._first_state, False
        if self._on_state_change:
            self._on_state_change(snapshot, first)

    def _handle_error(self, message: NetworkMessage):
        error_msg = message.data.get("error_message", "Unknown error")
        if not self._joined.is_set():
            self._join_reply = message
            self._joined.set()
            return
        with self._pending_lock:
            pending = self._pending.pop(message.data.get("ack"), None)
        if pending is not None and not pending.done():
            pending.set_exception(RetryableError(f"Server error: {error_msg}"))
        else:
            logger.warning("Server error: %s", error_msg)

    def _handle_connection_lost(self):
        logger.warning("Connection to %s:%s lost", self.host, self.port)
        self.state = ClientState.ERROR
        self._fail_pending("Connection lost")
        if not self._joined.is_set():
            self._joined.set()

    def _fail_pending(self, reason: str):
        with self._pending_lock:
            pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(RetryableError(reason))

    def _cleanup_connection(self):
        """Clean up connection resources."""
        self.running = False
        if self.socket:
            try:
                self.socket.close()
            except OSError:
                pass
            self.socket = None
        if (self.receive_thread and self.receive_thread.is_alive()
                and self.receive_thread is not threading.current_thread()):
            self.receive_thread.join(timeout=2.0)
        self.receive_thread = None
        self._fail_pending("Connection closed")
        self.state = ClientState.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        return self.state is ClientState.IN_ROOM
