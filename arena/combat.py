"""Combat resolution.

Everything here is pure: the resolver reads fighters and crowd state, draws from
the supplied random source, and returns a :class:`CombatResolution`.  Applying it
to the battle is the state machine's job.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional, Tuple

from .models import Battle, BuffKind, Fighter, Side, Stance
from .randomness import RandomSource, pick
from .spectators import crowd_bonuses

log = logging.getLogger(__name__)

BASE_DAMAGE_MULTIPLIER = 0.6
SPEED_BONUS_MULTIPLIER = 1.1
CROWD_BONUS_PER_POINT = 0.002
CRIT_MULTIPLIER = 1.5
LUCK_CRIT_MULTIPLIER = 0.5
DECEPTIVE_CRIT_BONUS = 20.0
BLOCK_PER_ENDURANCE = 0.4
DEFENSIVE_BLOCK_MULTIPLIER = 1.3
SPEED_JITTER = 5.0
MIN_DAMAGE = 1

STANCE_ADVANTAGE = 1.2
STANCE_DISADVANTAGE = 0.8
STANCE_NEUTRAL = 1.0

STORY_ABILITY_POWER = 1.1


class DamageKind(str, Enum):
    PHYSICAL = "physical"
    MAGICAL = "magical"


class AbilityKind(str, Enum):
    ATTACK = "attack"
    DEFENSIVE = "defensive"


@dataclass(frozen=True, slots=True)
class Ability:
    name: str
    kind: AbilityKind
    damage_kind: DamageKind
    power: float
    effect: str = ""

    @property
    def is_defensive(self) -> bool:
        return self.kind is AbilityKind.DEFENSIVE


DEFAULT_ABILITIES: Tuple[Ability, ...] = (
    Ability("Strike", AbilityKind.ATTACK, DamageKind.PHYSICAL, 1.0, "A basic attack"),
    Ability(
        "Defend",
        AbilityKind.DEFENSIVE,
        DamageKind.PHYSICAL,
        0.5,
        "Reduce incoming damage by 30%",
    ),
    Ability(
        "Power Attack", AbilityKind.ATTACK, DamageKind.PHYSICAL, 1.3, "A powerful strike"
    ),
)


class DamageResult(NamedTuple):
    damage: int
    critical: bool
    blocked: float


class CombatResolution(NamedTuple):
    """Outcome of one exchange, before it is applied to the battle."""

    red_damage: int
    blue_damage: int
    red_critical: bool
    blue_critical: bool
    first: Side
    red_action: str
    blue_action: str
    events: Tuple[str, ...]

    @property
    def critical_hit(self) -> bool:
        return self.red_critical or self.blue_critical

    def damage_by(self, side: Side) -> int:
        return self.red_damage if side is Side.RED else self.blue_damage

    def critical_by(self, side: Side) -> bool:
        return self.red_critical if side is Side.RED else self.blue_critical

    def action_of(self, side: Side) -> str:
        return self.red_action if side is Side.RED else self.blue_action


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def stance_multiplier(attacker: Optional[Stance], defender: Optional[Stance]) -> float:
    if attacker is None or defender is None or attacker is defender:
        return STANCE_NEUTRAL
    if attacker.beats is defender:
        return STANCE_ADVANTAGE
    if defender.beats is attacker:
        return STANCE_DISADVANTAGE
    return STANCE_NEUTRAL


def fighter_abilities(fighter: Fighter) -> Tuple[Ability, ...]:
    story = fighter.profile.story
    if story is None or not story.abilities:
        return DEFAULT_ABILITIES
    return tuple(
        Ability(
            entry.name,
            AbilityKind.ATTACK,
            DamageKind.MAGICAL,
            STORY_ABILITY_POWER,
            entry.effect,
        )
        for entry in story.abilities
    )


def find_ability(fighter: Fighter, name: Optional[str]) -> Ability:
    """Return the named ability, falling back to ``Strike`` for stale names."""

    if name:
        for ability in fighter_abilities(fighter):
            if ability.name == name:
                return ability
    return DEFAULT_ABILITIES[0]


def random_ability(fighter: Fighter, rng: RandomSource) -> Ability:
    return pick(rng, fighter_abilities(fighter))


def calculate_damage(
    attacker: Fighter,
    defender: Fighter,
    ability: Ability,
    crowd_bonus: float,
    rng: RandomSource,
    *,
    defender_ability: Optional[Ability] = None,
) -> DamageResult:
    """Damage dealt by ``attacker`` to ``defender`` with ``ability``.

    Draws exactly once from ``rng`` for the critical-hit roll.
    """

    if ability.damage_kind is DamageKind.PHYSICAL:
        base = attacker.stat("strength")
    else:
        base = attacker.stat("intellect")

    damage = base * BASE_DAMAGE_MULTIPLIER
    damage *= ability.power
    if attacker.stat("agility") > defender.stat("agility"):
        damage *= SPEED_BONUS_MULTIPLIER
    damage *= stance_multiplier(attacker.stance, defender.stance)
    damage *= 1 + crowd_bonus * CROWD_BONUS_PER_POINT
    damage *= 1 + attacker.modifier_total(BuffKind.DAMAGE) / 100

    crit_chance = attacker.stat("luck") * LUCK_CRIT_MULTIPLIER
    if attacker.stance is Stance.DECEPTIVE:
        crit_chance += DECEPTIVE_CRIT_BONUS
    critical = rng.random() * 100 < crit_chance
    if critical:
        damage *= CRIT_MULTIPLIER

    blocked = (
        defender.stat("endurance")
        * BLOCK_PER_ENDURANCE
        * (1 + defender.modifier_total(BuffKind.DEFENSE) / 100)
    )
    if defender_ability is not None and defender_ability.is_defensive:
        blocked *= DEFENSIVE_BLOCK_MULTIPLIER

    final = max(MIN_DAMAGE, round_half_up(damage - blocked))
    return DamageResult(final, critical, blocked)


def attack_order(red: Fighter, blue: Fighter, rng: RandomSource) -> Side:
    """Side that strikes first this round; ties go to red."""

    red_speed = red.stat("agility") + rng.random() * SPEED_JITTER
    blue_speed = blue.stat("agility") + rng.random() * SPEED_JITTER
    return Side.RED if red_speed >= blue_speed else Side.BLUE


def describe_hit(fighter: Fighter, ability: Ability, hit: DamageResult) -> str:
    text = f"{fighter.name} used {ability.name} for {hit.damage} damage"
    if hit.critical:
        text += " (CRITICAL!)"
    return text


def resolve_combat(battle: Battle, rng: RandomSource) -> CombatResolution:
    """Resolve the pending exchange of an engaged battle.

    Random draws happen in a fixed order: red speed jitter, blue speed jitter,
    red critical roll, blue critical roll.
    """

    engagement = battle.engagement()
    red, blue = engagement.red, engagement.blue
    abilities = {
        Side.RED: find_ability(red, red.selected_action),
        Side.BLUE: find_ability(blue, blue.selected_action),
    }

    first = attack_order(red, blue, rng)
    bonus = crowd_bonuses(battle)
    hits = {
        Side.RED: calculate_damage(
            red, blue, abilities[Side.RED], bonus.red, rng,
            defender_ability=abilities[Side.BLUE],
        ),
        Side.BLUE: calculate_damage(
            blue, red, abilities[Side.BLUE], bonus.blue, rng,
            defender_ability=abilities[Side.RED],
        ),
    }

    second = first.opposite
    events = [describe_hit(engagement.fighter(first), abilities[first], hits[first])]
    if engagement.fighter(second).hp - hits[first].damage <= 0:
        skipped = hits[second]
        hits[second] = DamageResult(0, False, skipped.blocked)
    else:
        events.append(
            describe_hit(engagement.fighter(second), abilities[second], hits[second])
        )

    log.debug(
        "Battle %s resolved: %s first, red %d, blue %d",
        battle.battle_id,
        first.value,
        hits[Side.RED].damage,
        hits[Side.BLUE].damage,
    )
    return CombatResolution(
        red_damage=hits[Side.RED].damage,
        blue_damage=hits[Side.BLUE].damage,
        red_critical=hits[Side.RED].critical,
        blue_critical=hits[Side.BLUE].critical,
        first=first,
        red_action=abilities[Side.RED].name,
        blue_action=abilities[Side.BLUE].name,
        events=tuple(events),
    )


__all__ = [
    "Ability",
    "AbilityKind",
    "CombatResolution",
    "DEFAULT_ABILITIES",
    "DamageKind",
    "DamageResult",
    "attack_order",
    "calculate_damage",
    "describe_hit",
    "find_ability",
    "fighter_abilities",
    "random_ability",
    "resolve_combat",
    "round_half_up",
    "stance_multiplier",
]
