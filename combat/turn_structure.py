from enum import Enum
from typing import Dict, FrozenSet, List


class Phase(Enum):
    """Client turn lifecycle."""
    IDLE = "idle"                       # no session yet
    STARTING = "starting"
    ACTION_ACTIVE = "action_active"
    ENDING_LOCAL = "ending_local"
    WAITING_FOR_SERVER = "waiting_for_server"
    COMBAT_ENDED = "combat_ended"


# Turn cycle in order; WAITING_FOR_SERVER loops back to STARTING
TURN_CYCLE: List[Phase] = [
    Phase.STARTING,
    Phase.ACTION_ACTIVE,
    Phase.ENDING_LOCAL,
    Phase.WAITING_FOR_SERVER,
]

_DISPLAY_NAMES = {
    Phase.IDLE: "Connecting",
    Phase.STARTING: "Start",
    Phase.ACTION_ACTIVE: "Action",
    Phase.ENDING_LOCAL: "End",
    Phase.WAITING_FOR_SERVER: "Waiting for server",
    Phase.COMBAT_ENDED: "Combat over",
}

LEGAL_TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
    Phase.IDLE: frozenset({Phase.STARTING, Phase.COMBAT_ENDED}),
    Phase.STARTING: frozenset({Phase.ACTION_ACTIVE, Phase.COMBAT_ENDED}),
    Phase.ACTION_ACTIVE: frozenset({Phase.ENDING_LOCAL, Phase.COMBAT_ENDED}),
    Phase.ENDING_LOCAL: frozenset({Phase.WAITING_FOR_SERVER, Phase.COMBAT_ENDED}),
    Phase.WAITING_FOR_SERVER: frozenset({Phase.STARTING, Phase.COMBAT_ENDED}),
    Phase.COMBAT_ENDED: frozenset(),
}

# Phases in which player actions are recorded
ACTION_PHASES = frozenset({Phase.ACTION_ACTIVE})


class InvalidTransition(RuntimeError):
    def __init__(self, current: Phase, target: Phase):
        super().__init__(f"Illegal phase transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def can_transition(current: Phase, target: Phase) -> bool:
    return target in LEGAL_TRANSITIONS.get(current, frozenset())


def next_phase_after(phase: Phase):
    """Next phase in the turn cycle, or None outside of it."""
    try:
        idx = TURN_CYCLE.index(phase)
    except ValueError:
        return None
    return TURN_CYCLE[(idx + 1) % len(TURN_CYCLE)]


def display_name(phase: Phase) -> str:
    return _DISPLAY_NAMES.get(phase, phase.value)


def is_terminal(phase: Phase) -> bool:
    return not LEGAL_TRANSITIONS.get(phase)
