"""Combat Client - Configuration

Default tuning constants for a single encounter and the ``CombatConfig``
dataclass the controller is built from. Values can be overridden from the
environment (``from_env``) or from the command line (see ``main.py``).
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

# Turn flow
DEFAULT_TURN_DURATION = 30.0  # seconds
DEFAULT_STARTING_HAND_SIZE = 5
DEFAULT_STEP_INTERVAL_MS = 50

# Combatants
DEFAULT_PLAYER_MAX_HEALTH = 100
DEFAULT_PLAYER_MAX_MEMORY = 10
DEFAULT_ENEMY_NAME = "Helsinki_Center"
DEFAULT_ENEMY_MAX_HEALTH = 200

# Exit flush
DEFAULT_FLUSH_TIMEOUT = 5.0  # seconds

_ENV_OVERRIDES = {
    "COMBAT_TURN_SECONDS": ("turn_duration", float),
    "COMBAT_HAND_SIZE": ("starting_hand_size", int),
    "COMBAT_FLUSH_TIMEOUT": ("flush_timeout", float),
}


@dataclass
class CombatConfig:
    """Settings for one combat encounter."""

    turn_duration: float = DEFAULT_TURN_DURATION
    starting_hand_size: int = DEFAULT_STARTING_HAND_SIZE
    player_max_health: int = DEFAULT_PLAYER_MAX_HEALTH
    player_max_memory: int = DEFAULT_PLAYER_MAX_MEMORY
    enemy_name: str = DEFAULT_ENEMY_NAME
    enemy_max_health: int = DEFAULT_ENEMY_MAX_HEALTH
    flush_timeout: float = DEFAULT_FLUSH_TIMEOUT
    step_interval_ms: int = DEFAULT_STEP_INTERVAL_MS
    seed: Optional[int] = None

    def __post_init__(self):
        if self.turn_duration <= 0:
            raise ValueError(f"turn_duration must be positive, got {self.turn_duration}")
        if self.starting_hand_size < 0:
            raise ValueError(f"starting_hand_size must be >= 0, got {self.starting_hand_size}")
        if self.flush_timeout <= 0:
            raise ValueError(f"flush_timeout must be positive, got {self.flush_timeout}")

    @property
    def turn_duration_ms(self) -> int:
        return int(self.turn_duration * 1000)

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "CombatConfig":
        """Build a config from defaults, then environment, then keyword overrides."""
        environ = os.environ if environ is None else environ
        values = {}
        for var, (field_name, convert) in _ENV_OVERRIDES.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = convert(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {var}: {raw!r}") from None
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **overrides) -> "CombatConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
