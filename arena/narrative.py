"""Prose and artwork for resolved rounds.

Both collaborators are optional and purely cosmetic.  Whatever they return (or
fail to return) never feeds back into the battle; on failure the deterministic
fallbacks below are used instead.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from .combat import CombatResolution
from .models import Battle, Fighter, Side

log = logging.getLogger(__name__)

ROUND_NARRATIVE_LIMIT = 500
VICTORY_NARRATIVE_LIMIT = 800


class NarrativeService(Protocol):
    async def round_narrative(
        self, battle: Battle, resolution: CombatResolution
    ) -> Optional[str]: ...

    async def victory_narrative(
        self, battle: Battle, winner: Fighter, loser: Fighter, epic: bool
    ) -> Optional[str]: ...


class IllustrationService(Protocol):
    async def illustrate(
        self, prompt: str, references: Sequence[str]
    ) -> Optional[bytes]: ...


def truncate_narrative(text: str, limit: int) -> str:
    """Trim ``text`` to ``limit`` characters, preferring a sentence boundary."""

    if len(text) <= limit:
        return text.strip()
    truncated = text[:limit]
    boundary = max(truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?"))
    if boundary > limit * 0.5:
        return text[: boundary + 1].strip()
    return f"{truncated.strip()}..."


def _attack_line(name: str, verb: str, damage: int, critical: bool, crit_phrase: str) -> str:
    return f"{name} {verb} {damage} damage{crit_phrase if critical else '.'}"


def fallback_round_narrative(battle: Battle, resolution: CombatResolution) -> str:
    """Template prose built only from the resolution.

    The counter-attack line is left out when the first strike ended the fight.
    """

    blue = battle.blue_fighter
    if blue is None:
        return "The battle continues..."
    engagement = battle.engagement()
    first = resolution.first
    second = first.opposite
    red_first = first is Side.RED

    lines = [
        _attack_line(
            engagement.fighter(first).name,
            "strikes first, dealing" if red_first else "acts first, landing",
            resolution.damage_by(first),
            resolution.critical_by(first),
            " with a critical hit!" if red_first else " with a critical strike!",
        )
    ]
    if resolution.damage_by(second) > 0:
        lines.append(
            _attack_line(
                engagement.fighter(second).name,
                "counters for" if red_first else "responds with",
                resolution.damage_by(second),
                resolution.critical_by(second),
                ", a critical blow!" if red_first else ", a devastating hit!",
            )
        )
    return "\n".join(lines)


def fallback_victory_narrative(winner: Fighter, loser: Fighter) -> str:
    return (
        f"In the end, **{winner.name}** stood victorious over the fallen {loser.name}. "
        "The arena falls silent as the crowd processes what they've witnessed..."
    )


def critical_hit_narrative(
    attacker: Fighter, defender: Fighter, ability_name: str, damage: int
) -> str:
    return (
        f"**CRITICAL HIT!** {attacker.name}'s {ability_name} deals {damage} "
        f"devastating damage to {defender.name}!"
    )


def _faction(fighter: Fighter) -> str:
    story = fighter.profile.story
    return (story.faction if story is not None else None) or "Unknown"


def round_summary(battle: Battle, resolution: CombatResolution) -> str:
    """Plain-text brief handed to narrative services."""

    engagement = battle.engagement()
    lines = [f"ROUND {battle.round_number} of {battle.max_rounds}"]
    for side in (resolution.first, resolution.first.opposite):
        fighter = engagement.fighter(side)
        opponent = engagement.fighter(side.opposite)
        critical = " (CRITICAL)" if resolution.critical_by(side) else ""
        lines.append(
            f"{fighter.name} [{_faction(fighter)}] used {resolution.action_of(side)} "
            f"on {opponent.name} [{_faction(opponent)}] for "
            f"{resolution.damage_by(side)} damage{critical}"
        )
    lines.append(f"CROWD ENERGY: {battle.crowd_energy}%")
    return "\n".join(lines)


def victory_image_prompt(winner: Fighter, loser: Fighter, epic: bool) -> str:
    mood = "an epic, awe-struck" if epic else "a triumphant"
    return (
        f"{winner.name} ({_faction(winner)}) standing over the defeated {loser.name} "
        f"({_faction(loser)}) in a roaring robot arena, {mood} scene"
    )


async def narrate_round(
    service: Optional[NarrativeService],
    battle: Battle,
    resolution: CombatResolution,
) -> str:
    fallback = fallback_round_narrative(battle, resolution)
    if service is None:
        return fallback
    try:
        text = await service.round_narrative(battle, resolution)
    except Exception:
        log.exception("Round narrative failed for battle %s", battle.battle_id)
        return fallback
    if not text or not text.strip():
        log.warning("Empty round narrative for battle %s, using fallback", battle.battle_id)
        return fallback
    return truncate_narrative(text, ROUND_NARRATIVE_LIMIT)


async def narrate_victory(
    service: Optional[NarrativeService],
    battle: Battle,
    winner: Fighter,
    loser: Fighter,
    epic: bool,
) -> str:
    fallback = fallback_victory_narrative(winner, loser)
    if service is None:
        return fallback
    try:
        text = await service.victory_narrative(battle, winner, loser, epic)
    except Exception:
        log.exception("Victory narrative failed for battle %s", battle.battle_id)
        return fallback
    if not text or not text.strip():
        log.warning("Empty victory narrative for battle %s, using fallback", battle.battle_id)
        return fallback
    return truncate_narrative(text, VICTORY_NARRATIVE_LIMIT)


async def illustrate(
    service: Optional[IllustrationService],
    prompt: str,
    references: Sequence[str] = (),
) -> Optional[bytes]:
    if service is None:
        return None
    try:
        return await service.illustrate(prompt, list(references))
    except Exception:
        log.exception("Illustration request failed")
        return None


__all__ = [
    "IllustrationService",
    "NarrativeService",
    "ROUND_NARRATIVE_LIMIT",
    "VICTORY_NARRATIVE_LIMIT",
    "critical_hit_narrative",
    "fallback_round_narrative",
    "fallback_victory_narrative",
    "illustrate",
    "narrate_round",
    "narrate_victory",
    "round_summary",
    "truncate_narrative",
    "victory_image_prompt",
]
