"""Combat Client - Combat Controller

Owns one player's side of a networked encounter. The controller runs the
turn state machine (start, action, end, wait for server), records the local
player's effects into the turn ``Delta``, sends it to the room, and applies
what the room sends back.

Two asynchronous sources feed the controller: the turn timer and the room
client callbacks. Neither touches game state directly; both post to a
thread-safe inbox that ``step()`` drains on the controller's own thread. A Qt
timer calls ``step()`` periodically once combat has begun; tests call it
directly.
"""

import logging
import queue
from concurrent.futures import Future, TimeoutError as FuturesTimeoutError
from typing import Dict, List, Optional

from PySide6.QtCore import QObject, QTimer, Signal

from room import SEND_RETRY_LIMIT
from room.errors import ResponseParseError, RoomConnectionError, RoomError
from room.room_client import RoomClient, Session, StateSnapshot

from .card_engine import ApplyBuff, Card, Damage, Draw, Heal, Side, resolve_card
from .combatant import Buff, Enemy, Player
from .config import CombatConfig
from .delta import Delta, DeltaResponse
from .events import (
    CardDiscardedEvent,
    CardPlayedEvent,
    Channel,
    DrawEvent,
    EventBus,
    HealthEvent,
    MemoryEvent,
)
from .turn_structure import ACTION_PHASES, InvalidTransition, Phase, can_transition
from .turn_timer import TurnTimer

logger = logging.getLogger(__name__)

# Inbox message kinds
_TIMER_EXPIRED = "timer_expired"
_ROOM_MESSAGE = "room_message"
_STATE_CHANGE = "state_change"

# combat_ended reasons
PLAYER_DEFEATED = "player_defeated"
ENEMY_DEFEATED = "enemy_defeated"
FLED = "fled"
PROTOCOL_ERROR = "protocol_error"


class CombatController(QObject):
    """Turn state machine for the local player's side of a combat room."""

    phase_changed = Signal(object)      # Phase
    combat_ended = Signal(str)          # reason
    fatal_error = Signal(str)
    warning = Signal(str)
    action_rejected = Signal(str)
    roster_changed = Signal(dict)       # name -> health ratio

    def __init__(self, player: Player, enemy: Enemy, room_client: RoomClient,
                 room_id: Optional[str] = None, config: Optional[CombatConfig] = None,
                 events: Optional[EventBus] = None, timer: Optional[TurnTimer] = None,
                 parent=None):
        super().__init__(parent)
        self.config = config or CombatConfig()
        self.player = player
        self.enemy = enemy
        self.room_client = room_client
        self.room_id = room_id or enemy.name
        self.events = events or EventBus()
        self.delta = Delta()

        self.timer = timer or TurnTimer(self.config.turn_duration, self)
        self.timer.expired.connect(self._on_timer_expired)

        self.session: Optional[Session] = None
        self.phase = Phase.IDLE
        self.phase_history: List[Phase] = [Phase.IDLE]
        self.turn = 0
        self.flush_count = 0
        self.end_reason: Optional[str] = None

        self._inbox: "queue.Queue[tuple]" = queue.Queue()
        self._stepping = False

        # Simulation step; the periodic health check lives here
        self._tick = QTimer(self)
        self._tick.setInterval(self.config.step_interval_ms)
        self._tick.timeout.connect(self.step)

    # ---------- Lifecycle ----------

    def begin(self) -> bool:
        """Join the room and start the first turn.

        Returns False when no session could be established; the controller
        then stays in IDLE and ``fatal_error`` has been emitted.
        """
        if self.phase is not Phase.IDLE:
            logger.warning("begin() called in phase %s", self.phase.value)
            return False
        logger.info("Player: %s  Room: %s", self.player.name, self.room_id)
        try:
            self.session = self.room_client.join_or_create(
                self.player.name, self.player.health_ratio, self.room_id,
                self._on_state_change, self._on_room_message)
        except RoomConnectionError as e:
            logger.error("Could not join room %s: %s", self.room_id, e)
            self.fatal_error.emit(f"Could not join room {self.room_id}: {e}")
            return False

        self._tick.start()
        # State pushed during the join may already end combat
        self.step()
        if self.phase is Phase.IDLE:
            self._start_phase()
        return True

    def step(self):
        """Drain the inbox on the controller thread, then check for combat end."""
        if self._stepping:
            return
        self._stepping = True
        try:
            while True:
                try:
                    kind, payload = self._inbox.get_nowait()
                except queue.Empty:
                    break
                if self.phase is Phase.COMBAT_ENDED:
                    continue
                self._dispatch(kind, payload)
                self._check_combat_end()
            self._check_combat_end()
        finally:
            self._stepping = False

    def flee(self):
        """Run away: ends combat from any phase."""
        if self.phase is Phase.COMBAT_ENDED:
            return
        self._end_combat(FLED)

    @property
    def in_combat(self) -> bool:
        return self.phase not in (Phase.IDLE, Phase.COMBAT_ENDED)

    @property
    def actions_allowed(self) -> bool:
        return self.phase in ACTION_PHASES

    # ---------- Async sources (any thread) ----------

    def _post(self, kind: str, payload=None):
        self._inbox.put((kind, payload))

    def _on_timer_expired(self):
        self._post(_TIMER_EXPIRED)

    def _on_room_message(self, message):
        self._post(_ROOM_MESSAGE, message)

    def _on_state_change(self, snapshot: StateSnapshot, is_first_state: bool = False):
        self._post(_STATE_CHANGE, snapshot)

    def _dispatch(self, kind: str, payload):
        if kind == _TIMER_EXPIRED:
            if self.phase is Phase.ACTION_ACTIVE:
                self._end_phase()
            else:
                logger.debug("Stale timer expiry ignored in %s", self.phase.value)
        elif kind == _ROOM_MESSAGE:
            if self.phase is Phase.WAITING_FOR_SERVER:
                self._handle_response(payload)
            else:
                logger.warning("Ignoring room message outside WaitingForServer (%s)", self.phase.value)
        elif kind == _STATE_CHANGE:
            self._reconcile_state(payload)

    # ---------- Phases ----------

    def _transition(self, target: Phase):
        if not can_transition(self.phase, target):
            raise InvalidTransition(self.phase, target)
        logger.debug("Phase %s -> %s", self.phase.value, target.value)
        self.phase = target
        self.phase_history.append(target)
        self.phase_changed.emit(target)

    def _start_phase(self):
        self._transition(Phase.STARTING)
        self.turn += 1
        self.delta.reset()
        self._reset_memory()
        self._draw_local(self.config.starting_hand_size)
        self.timer.start(self.config.turn_duration)
        self._transition(Phase.ACTION_ACTIVE)

    def _reset_memory(self):
        diff = self.player.restore_memory()
        self.events.publish(Channel.RESOURCE_CHANGED, MemoryEvent(diff, self.player.memory))

    def _end_phase(self):
        self._transition(Phase.ENDING_LOCAL)

        for card in self.player.discard_hand():
            self.events.publish(Channel.CARD_DISCARDED, CardDiscardedEvent(card))

        self.player.buff_handler.decrement_usages()
        self.enemy.buff_handler.decrement_usages()

        self.delta.set_player_health_ratio(self.player.health_ratio)
        self._flush_turn()
        self._transition(Phase.WAITING_FOR_SERVER)

    def _flush_turn(self):
        """Send this turn's delta without waiting for the acknowledgment."""
        payload = self.delta.to_json()
        self.flush_count += 1
        try:
            pending = self.room_client.send(self.session, payload)
        except RoomError as e:
            logger.warning("Turn %d delta not sent: %s", self.turn, e)
        else:
            pending.add_done_callback(self._log_send_result)
        self.delta.mark_flushed()

    def _log_send_result(self, pending: Future):
        # Runs on whichever thread settled the future; logging only
        exc = pending.exception()
        if exc is not None:
            logger.warning("Turn delta send failed: %s", exc)

    def _handle_response(self, raw):
        logger.debug("Message received: %s", raw)
        try:
            response = self.delta.ingest_response(raw)
        except ResponseParseError as e:
            logger.error("Unusable room response: %s", e)
            self.warning.emit(f"Unusable room response: {e}")
            self._end_combat(PROTOCOL_ERROR)
            return

        self._apply_player_to_player_moves(response)

        lost = self.enemy.execute_attack(self.player, response.enemy_attack())
        if lost:
            self._publish_player_health(-lost)

        if self._check_combat_end():
            return
        self._start_phase()

    def _apply_player_to_player_moves(self, response: DeltaResponse):
        name = self.player.name
        healing = response.healing_for(name)
        if healing:
            self._change_player_health(healing)
        draws = response.draws_for(name)
        if draws:
            self._draw_local(draws)
        for buff in response.buffs_for(name):
            self.player.receive_buff(buff)

        # Our own enemy debuffs were applied when played; skip their echo
        own = self.delta.sent_buffs_for(self.enemy.name)
        for buff in response.buffs_for(self.enemy.name):
            descriptor = buff.to_dict()
            if descriptor in own:
                own.remove(descriptor)
                continue
            self.enemy.receive_buff(buff)

    def _reconcile_state(self, snapshot: StateSnapshot):
        if self.session is None:
            return
        for name in self.session.apply_snapshot(snapshot):
            logger.info("%s is no longer in the room", name)

        if snapshot.monster_health is not None:
            # Authoritative overwrite, never a diff against local health
            before = self.enemy.health
            self.enemy.health = snapshot.monster_health
            diff = self.enemy.health - before
            if diff:
                self._publish_enemy_health(diff)
        logger.debug("State updated, monster health %s", snapshot.monster_health)
        self.roster_changed.emit(self.roster())

    def roster(self) -> Dict[str, float]:
        """Name -> health ratio for everyone in the room.

        The local entry uses the local health; remote entries lag a turn.
        """
        players = dict(self.session.roster) if self.session else {}
        players[self.player.name] = self.player.health_ratio
        return players

    # ---------- Combat end ----------

    def _check_combat_end(self) -> bool:
        if self.phase is Phase.COMBAT_ENDED:
            return True
        if not self.player.is_alive:
            self._end_combat(PLAYER_DEFEATED)
            return True
        if not self.enemy.is_alive:
            self._end_combat(ENEMY_DEFEATED)
            return True
        return False

    def _end_combat(self, reason: str):
        if self.phase is Phase.COMBAT_ENDED:
            return
        self._transition(Phase.COMBAT_ENDED)
        self.end_reason = reason
        logger.info("Combat ended: %s", reason)
        self.timer.stop()
        self._tick.stop()

        self.enemy.end_combat()
        self.player.end_combat(self.enemy)

        if self.session is not None:
            self.delta.set_player_health_ratio(self.player.health_ratio)
            if self.delta.has_unsent_changes:
                self._final_flush()
            else:
                # Already flushed this turn; an empty resend would count as next turn's delta
                logger.debug("Nothing new since turn %d flush; final send skipped", self.turn)
            self._leave()
        self.combat_ended.emit(reason)

    def _final_flush(self) -> bool:
        """Send the last delta and wait for it; one retry, then give up with a warning.

        Leaving the room drops unsent messages, so this blocks.
        """
        payload = self.delta.to_json()
        self.flush_count += 1
        attempts = 1 + SEND_RETRY_LIMIT
        for attempt in range(1, attempts + 1):
            try:
                self.room_client.send(self.session, payload).result(timeout=self.config.flush_timeout)
            except (RoomError, FuturesTimeoutError) as e:
                logger.warning("Final delta attempt %d/%d failed: %s", attempt, attempts, e)
                continue
            self.delta.mark_flushed()
            return True
        msg = f"Final turn delta was not delivered after {attempts} attempts"
        logger.warning(msg)
        self.warning.emit(msg)
        self.delta.mark_flushed()
        return False

    def _leave(self):
        try:
            self.room_client.leave(self.session)
        except RoomError as e:
            logger.warning("Error leaving room %s: %s", self.room_id, e)
        finally:
            self.session.active = False

    # ---------- Player actions (ActionActive only) ----------

    def _reject(self, action: str) -> bool:
        msg = f"{action} rejected during {self.phase.value}"
        logger.warning(msg)
        self.action_rejected.emit(msg)
        return False

    def play_card(self, card: Card, target: Optional[str] = None) -> bool:
        """Play a card from hand; ``target`` is the selected player (default: self)."""
        if not self.actions_allowed:
            return self._reject(f"Playing {card.name}")
        if card not in self.player.hand:
            return self._reject(f"Playing {card.name} (not in hand)")
        outcome = resolve_card(card, self.player, self.enemy)
        if outcome is None:
            msg = f"Not enough memory for {card.name} ({self.player.memory}/{card.memory_cost})"
            logger.warning(msg)
            self.action_rejected.emit(msg)
            return False

        target = target or self.player.name
        self._change_memory(outcome.memory_delta)
        for effect in outcome.effects:
            self._apply_effect(effect, target)
        self.player.discard(card)
        self.events.publish(Channel.CARD_PLAYED, CardPlayedEvent(card, target))
        self._check_combat_end()
        return True

    def discard_card(self, card: Card) -> bool:
        if not self.actions_allowed:
            return self._reject(f"Discarding {card.name}")
        if not self.player.discard(card):
            return self._reject(f"Discarding {card.name} (not in hand)")
        self.events.publish(Channel.CARD_DISCARDED, CardDiscardedEvent(card))
        return True

    def change_health(self, target: str, diff: float) -> bool:
        """Heal (or hurt) the selected player."""
        if not self.actions_allowed:
            return self._reject("Health change")
        self._change_health(target, diff)
        self._check_combat_end()
        return True

    def change_enemy_health(self, diff: float, include_in_delta: bool = True) -> bool:
        if not self.actions_allowed:
            return self._reject("Enemy health change")
        applied = self.enemy.change_health(diff)
        if include_in_delta:
            self.delta.add_damage(-applied)
        if applied:
            self._publish_enemy_health(applied)
        self._check_combat_end()
        return True

    def draw_cards(self, target: str, count: int) -> bool:
        if not self.actions_allowed:
            return self._reject("Drawing cards")
        self._draw_for(target, count)
        return True

    def buff_target(self, target: str, buff: Buff) -> bool:
        if not self.actions_allowed:
            return self._reject(f"Buff {buff.name}")
        self._buff_for(target, buff)
        return True

    def debuff_enemy(self, buff: Buff) -> bool:
        if not self.actions_allowed:
            return self._reject(f"Debuff {buff.name}")
        self._debuff_enemy(buff)
        return True

    # ---------- Effect application ----------

    def _apply_effect(self, effect, target: str):
        if isinstance(effect, Damage):
            if effect.side == Side.ENEMY:
                self._damage_enemy(effect.amount)
            else:
                self._change_health(target, -effect.amount)
        elif isinstance(effect, Heal):
            if effect.side == Side.ENEMY:
                applied = self.enemy.change_health(effect.amount)
                self.delta.add_damage(-applied)
                if applied:
                    self._publish_enemy_health(applied)
            else:
                self._change_health(target, effect.amount)
        elif isinstance(effect, Draw):
            self._draw_for(target, effect.count)
        elif isinstance(effect, ApplyBuff):
            if effect.side == Side.ENEMY:
                self._debuff_enemy(effect.buff)
            else:
                self._buff_for(target, effect.buff)
        else:
            logger.warning("Unknown card effect %r", effect)

    def _is_local(self, target: str) -> bool:
        return target == self.player.name

    def _damage_enemy(self, amount: float):
        lost = self.enemy.take_damage(amount)
        self.delta.add_damage(lost)
        if lost:
            self._publish_enemy_health(-lost)

    def _change_health(self, target: str, diff: float):
        if self._is_local(target):
            self._change_player_health(diff)
        else:
            self.delta.report_healing(target, diff)

    def _draw_for(self, target: str, count: int):
        if self._is_local(target):
            self._draw_local(count)
        else:
            self.delta.report_draw(target, count)

    def _buff_for(self, target: str, buff: Buff):
        if self._is_local(target):
            self.player.receive_buff(buff)
        else:
            self.delta.report_buff(target, buff)

    def _debuff_enemy(self, buff: Buff):
        self.enemy.receive_buff(buff)
        self.delta.report_buff(self.enemy.name, buff)

    def _change_player_health(self, diff: float):
        applied = self.player.change_health(diff)
        if applied:
            self._publish_player_health(applied)

    def _change_memory(self, diff: int):
        before = self.player.memory
        self.player.memory = before + diff
        self.events.publish(Channel.RESOURCE_CHANGED,
                            MemoryEvent(self.player.memory - before, self.player.memory))

    def _draw_local(self, count: int):
        cards = self.player.draw(count)
        self.events.publish(Channel.CARDS_DRAWN, DrawEvent(cards))

    def _publish_player_health(self, diff: float):
        self.events.publish(Channel.PLAYER_HEALTH_CHANGED,
                            HealthEvent(diff, self.player.health, self.player.max_health))

    def _publish_enemy_health(self, diff: float):
        self.events.publish(Channel.ENEMY_HEALTH_CHANGED,
                            HealthEvent(diff, self.enemy.health, self.enemy.max_health))
