"""Virus Combat Client - Main Entry Point.

Headless driver for one combat encounter. Joins a room (the in-process
local room by default, or a TCP room server with ``--connect``), plays the
local player's hand automatically each turn and exits when combat ends.
"""

import argparse
import logging
import random
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from combat import __version__
from combat.card_engine import build_starter_deck, can_afford
from combat.combat_controller import CombatController
from combat.combatant import Enemy, Player
from combat.config import CombatConfig
from combat.events import Channel, EventBus
from combat.turn_structure import Phase, display_name
from room import DEFAULT_SERVER_PORT
from room.local_room import LocalRoomClient, LocalRoomServer
from room.socket_client import SocketRoomClient

logger = logging.getLogger("combat.main")


def parse_args(argv=None):
    ap = argparse.ArgumentParser(
        description="Virus Combat - headless client for one combat encounter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES:
  %(prog)s                                # Local room, default settings
  %(prog)s --player Ada --turn-seconds 2  # Short turns
  %(prog)s --connect localhost:2567       # Join a room server over TCP

ENVIRONMENT:
  COMBAT_TURN_SECONDS, COMBAT_HAND_SIZE, COMBAT_FLUSH_TIMEOUT override the
  defaults; command-line options override the environment.
"""
    )
    ap.add_argument('--player', default="Player",
                    help='Local player name')
    ap.add_argument('--room', default=None,
                    help='Room id (defaults to the enemy name)')
    ap.add_argument('--turn-seconds', type=float, default=None,
                    help='Action phase length in seconds')
    ap.add_argument('--hand-size', type=int, default=None,
                    help='Cards dealt at the start of each turn')
    ap.add_argument('--turns', type=int, default=0,
                    help='Flee after this many turns (0 = fight to the end)')
    ap.add_argument('--seed', type=int, default=None,
                    help='Deck shuffle seed')
    ap.add_argument('--connect', metavar='HOST[:PORT]', default=None,
                    help='Join a TCP room server instead of the local room')
    ap.add_argument('--no-log', action='store_true',
                    help='Disable logging')
    ap.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    return ap.parse_args(argv)


def parse_address(address: str):
    host, _, port = address.partition(":")
    return host or "localhost", int(port) if port else DEFAULT_SERVER_PORT


def create_encounter(config: CombatConfig, room_client, player_name: str = "Player",
                     room_id=None, events=None) -> CombatController:
    """Build the combatants and a controller for one encounter."""
    rng = random.Random(config.seed)
    player = Player(player_name, config.player_max_health, config.player_max_memory,
                    deck=build_starter_deck(rng), rng=rng)
    enemy = Enemy(config.enemy_name, config.enemy_max_health)
    return CombatController(player, enemy, room_client, room_id=room_id,
                            config=config, events=events or EventBus())


class AutoPilot:
    """Plays the most expensive affordable card until memory runs out, then ends the turn."""

    def __init__(self, controller: CombatController, max_turns: int = 0):
        self.controller = controller
        self.max_turns = max_turns
        controller.phase_changed.connect(self._on_phase)

    def _on_phase(self, phase):
        logger.info("Turn %d: %s", self.controller.turn, display_name(phase))
        if phase is Phase.ACTION_ACTIVE:
            # Let the state machine finish its transition first
            QTimer.singleShot(0, self.play_turn)

    def play_turn(self):
        ctrl = self.controller
        if not ctrl.actions_allowed:
            return
        if self.max_turns and ctrl.turn > self.max_turns:
            ctrl.flee()
            return
        player = ctrl.player
        while ctrl.actions_allowed:
            playable = [c for c in player.hand if can_afford(c, player.memory)]
            if not playable:
                break
            card = max(playable, key=lambda c: c.memory_cost)
            ctrl.play_card(card, player.name)
        if ctrl.actions_allowed:
            ctrl.timer.force_expire()
            ctrl.step()


def _log_health(label):
    def handler(event):
        logger.info("%s health %+g -> %g/%g", label, event.diff, event.health, event.max_health)
    return handler


def main(argv=None):
    args = parse_args(argv)
    if not args.no_log:
        logging.basicConfig(level=logging.INFO,
                            format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = CombatConfig.from_env(turn_duration=args.turn_seconds,
                                       starting_hand_size=args.hand_size,
                                       seed=args.seed)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    app = QCoreApplication.instance() or QCoreApplication(sys.argv if argv is None else [sys.argv[0]])

    if args.connect:
        host, port = parse_address(args.connect)
        room_client = SocketRoomClient(host, port)
    else:
        room_client = LocalRoomClient(LocalRoomServer(monster_health=config.enemy_max_health,
                                                      seed=config.seed))

    events = EventBus()
    events.subscribe(Channel.PLAYER_HEALTH_CHANGED, _log_health("Player"))
    events.subscribe(Channel.ENEMY_HEALTH_CHANGED, _log_health("Enemy"))
    controller = create_encounter(config, room_client, args.player, args.room, events)
    AutoPilot(controller, args.turns)

    result = {}

    def on_ended(reason):
        result["reason"] = reason
        logger.info("Combat over: %s (victory=%s)", reason, controller.player.victory)
        app.quit()

    controller.combat_ended.connect(on_ended)
    controller.fatal_error.connect(lambda msg: logger.error(msg))

    if not controller.begin():
        return 1
    if "reason" not in result:
        app.exec()
    return 0


if __name__ == "__main__":
    sys.exit(main())
