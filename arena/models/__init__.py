"""Domain models for arena battles."""

from ._validation import ModelValidationError, load_model
from .battle import (
    Battle,
    BattleStateError,
    BotProfile,
    Buff,
    BuffKind,
    CrowdBias,
    Engagement,
    Fighter,
    Lineup,
    OpenChallenge,
    Phase,
    RoundResult,
    Side,
    Spectator,
    Stance,
    Story,
    StoryAbility,
    compute_max_hp,
)

__all__ = [
    "Battle",
    "BattleStateError",
    "BotProfile",
    "Buff",
    "BuffKind",
    "CrowdBias",
    "Engagement",
    "Fighter",
    "Lineup",
    "ModelValidationError",
    "OpenChallenge",
    "Phase",
    "RoundResult",
    "Side",
    "Spectator",
    "Stance",
    "Story",
    "StoryAbility",
    "compute_max_hp",
    "load_model",
]
