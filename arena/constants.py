"""Tuning constants shared by the arena engine and its command layer."""

from __future__ import annotations

# Stat value assumed whenever a bot's story does not carry it.
DEFAULT_STAT = 50.0

# Hit points for bots without an endurance stat; otherwise 80 + endurance * 0.4.
DEFAULT_MAX_HP = 100
BASE_MAX_HP = 80
MAX_HP_PER_ENDURANCE = 0.4

DEFAULT_MAX_ROUNDS = 5

# Phase timeouts used when the registry is built without a configuration.
DEFAULT_PHASE_TIMEOUT = 24 * 60 * 60

# Bot defaults for the configurable timeouts, in seconds.
DEFAULT_CHALLENGE_TIMEOUT = 120
DEFAULT_ROUND_TIMEOUT = 30
DEFAULT_SWEEP_INTERVAL = 30

# Crowd energy gauge.
CROWD_ENERGY_MAX = 100
ARENA_EVENT_THRESHOLD = 100
CHEER_ENERGY = 5
BLOODLUST_ENERGY = 10
SURGE_ENERGY = 15

# Display-only bonus per cheering spectator.
CHEER_DAMAGE_BONUS = 5
CHEER_DAMAGE_BONUS_CAP = 50

# Conditions that turn a win into an epic victory.
EPIC_ROUND_THRESHOLD = 5
EPIC_CROWD_ENERGY = 100
EPIC_LOW_HP = 10

MAX_BATTLE_HISTORY = 100

__all__ = [
    "DEFAULT_STAT",
    "DEFAULT_MAX_HP",
    "BASE_MAX_HP",
    "MAX_HP_PER_ENDURANCE",
    "DEFAULT_MAX_ROUNDS",
    "DEFAULT_PHASE_TIMEOUT",
    "DEFAULT_CHALLENGE_TIMEOUT",
    "DEFAULT_ROUND_TIMEOUT",
    "DEFAULT_SWEEP_INTERVAL",
    "CROWD_ENERGY_MAX",
    "ARENA_EVENT_THRESHOLD",
    "CHEER_ENERGY",
    "BLOODLUST_ENERGY",
    "SURGE_ENERGY",
    "CHEER_DAMAGE_BONUS",
    "CHEER_DAMAGE_BONUS_CAP",
    "EPIC_ROUND_THRESHOLD",
    "EPIC_CROWD_ENERGY",
    "EPIC_LOW_HP",
    "MAX_BATTLE_HISTORY",
]
