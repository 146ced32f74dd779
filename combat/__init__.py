"""Virus Combat Client - Combat Core.

Client-side turn state machine for one player's side of a networked
card combat against a shared enemy."""

from pathlib import Path

# Load version from VERSION file
def _load_version():
    """Load version from VERSION file."""
    version_file = Path(__file__).parent.parent / "VERSION"
    try:
        with open(version_file, 'r', encoding='utf-8') as f:
            return f.read().strip()
    except FileNotFoundError:
        return "0.1.0-dev"  # Fallback version

__version__ = _load_version()
__author__ = "Randy"
__description__ = "Virus Combat Client - Beta Version"
__status__ = "Beta"
__license__ = "MIT"

# Core imports
from .config import CombatConfig
from .events import Channel, EventBus
from .combatant import Buff, Combatant, Enemy, EnemyAttack, Player
from .card_engine import Card, STARTER_CARDS, build_starter_deck, resolve_card
from .delta import Delta, DeltaResponse
from .turn_structure import Phase, InvalidTransition
from .turn_timer import TurnTimer
from .combat_controller import CombatController

__all__ = [
    "CombatConfig",
    "Channel",
    "EventBus",
    "Buff",
    "Combatant",
    "Enemy",
    "EnemyAttack",
    "Player",
    "Card",
    "STARTER_CARDS",
    "build_starter_deck",
    "resolve_card",
    "Delta",
    "DeltaResponse",
    "Phase",
    "InvalidTransition",
    "TurnTimer",
    "CombatController",
]
