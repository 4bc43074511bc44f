"""Crowd engine: spectator actions, crowd energy and arena events."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, Optional

from .constants import (
    ARENA_EVENT_THRESHOLD,
    BLOODLUST_ENERGY,
    CHEER_DAMAGE_BONUS,
    CHEER_DAMAGE_BONUS_CAP,
    CHEER_ENERGY,
    CROWD_ENERGY_MAX,
    SURGE_ENERGY,
)
from .models import Battle, Buff, BuffKind, CrowdBias, Phase, Side
from .randomness import RandomSource, pick

log = logging.getLogger(__name__)

BLOODLUST_DAMAGE_BONUS = 10.0
BLOODLUST_DEFENSE_PENALTY = 10.0
POWER_SURGE_BONUS = 20.0
EVENT_BUFF_ROUNDS = 2
CHAOS_MIN_MAGNITUDE = 15
CHAOS_MAGNITUDE_SPREAD = 20
HAZARD_BASE_DAMAGE = 15
HAZARD_MIN_DAMAGE = 5
HAZARD_ENDURANCE_FACTOR = 0.1
CROWD_CRITICAL_ENERGY = 80

BUFF_KINDS = (BuffKind.DAMAGE, BuffKind.DEFENSE, BuffKind.CRIT, BuffKind.SPEED)


class CrowdAction(str, Enum):
    CHEER_RED = "cheer_red"
    CHEER_BLUE = "cheer_blue"
    BLOODLUST = "bloodlust"
    SURGE = "surge"

    @classmethod
    def from_value(cls, value: "CrowdAction | str") -> Optional["CrowdAction"]:
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return None


class ArenaEventKind(str, Enum):
    POWER_SURGE = "power_surge"
    CHAOS_FIELD = "chaos_field"
    ARENA_HAZARD = "arena_hazard"


EVENT_KINDS = (
    ArenaEventKind.POWER_SURGE,
    ArenaEventKind.CHAOS_FIELD,
    ArenaEventKind.ARENA_HAZARD,
)


@dataclass(frozen=True, slots=True)
class ArenaEvent:
    kind: ArenaEventKind
    description: str
    red_effect: Optional[Buff] = None
    blue_effect: Optional[Buff] = None
    red_damage: int = 0
    blue_damage: int = 0


class CrowdActionResult(NamedTuple):
    success: bool
    message: str
    event: Optional[ArenaEvent] = None


class CrowdBonus(NamedTuple):
    """Crowd-energy share each side feeds into the damage formula."""

    red: float
    blue: float

    def for_side(self, side: Side) -> float:
        return self.red if side is Side.RED else self.blue


def recompute_crowd_bias(battle: Battle) -> CrowdBias:
    red = sum(1 for s in battle.spectators.values() if s.cheered_for is Side.RED)
    blue = sum(1 for s in battle.spectators.values() if s.cheered_for is Side.BLUE)
    if red > blue:
        battle.crowd_bias = CrowdBias.RED
    elif blue > red:
        battle.crowd_bias = CrowdBias.BLUE
    else:
        battle.crowd_bias = CrowdBias.NEUTRAL
    return battle.crowd_bias


def add_crowd_energy(
    battle: Battle, amount: int, rng: RandomSource
) -> Optional[ArenaEvent]:
    """Feed the gauge; a full gauge discharges into an arena event."""

    battle.crowd_energy = max(0, min(CROWD_ENERGY_MAX, battle.crowd_energy + amount))
    if battle.crowd_energy < ARENA_EVENT_THRESHOLD:
        return None
    event = trigger_arena_event(battle, rng)
    battle.crowd_energy = 0
    return event


def apply_bloodlust(battle: Battle) -> None:
    for fighter in battle.fighters:
        fighter.buffs.append(
            Buff(BuffKind.DAMAGE, BLOODLUST_DAMAGE_BONUS, 1, "bloodlust")
        )
        fighter.debuffs.append(
            Buff(BuffKind.DEFENSE, -BLOODLUST_DEFENSE_PENALTY, 1, "bloodlust")
        )


def apply_crowd_action(
    battle: Battle,
    spectator_id: Any,
    action: CrowdAction,
    rng: RandomSource,
    *,
    now: Optional[float] = None,
) -> CrowdActionResult:
    spectator = battle.spectators.get(str(spectator_id))
    if spectator is None:
        return CrowdActionResult(False, "You are not a spectator in this battle.")
    if battle.phase is Phase.FINISHED:
        return CrowdActionResult(False, "This battle is already over.")

    red = battle.red_fighter
    blue = battle.blue_fighter
    if action is CrowdAction.CHEER_RED:
        spectator.cheered_for = Side.RED
        recompute_crowd_bias(battle)
        message = (
            f"🔴 You're cheering for {red.name}. "
            f"(+{CHEER_DAMAGE_BONUS}% damage next round)"
        )
        energy = CHEER_ENERGY
    elif action is CrowdAction.CHEER_BLUE:
        if blue is None:
            return CrowdActionResult(False, "No blue fighter to cheer for.")
        spectator.cheered_for = Side.BLUE
        recompute_crowd_bias(battle)
        message = (
            f"🔵 You're cheering for {blue.name}. "
            f"(+{CHEER_DAMAGE_BONUS}% damage next round)"
        )
        energy = CHEER_ENERGY
    elif action is CrowdAction.BLOODLUST:
        apply_bloodlust(battle)
        message = (
            f"💀 **BLOODLUST!** Both fighters get +{BLOODLUST_DAMAGE_BONUS:g}% damage, "
            f"-{BLOODLUST_DEFENSE_PENALTY:g}% defense!"
        )
        energy = BLOODLUST_ENERGY
    elif action is CrowdAction.SURGE:
        message = f"⚡ **SURGE!** +{SURGE_ENERGY} crowd energy!"
        energy = SURGE_ENERGY
    else:
        return CrowdActionResult(False, "Unknown action.")

    spectator.last_action_at = time.time() if now is None else now
    event = add_crowd_energy(battle, energy, rng)
    log.info(
        "Crowd action %s by %s in battle %s: energy now %d%%",
        action.value,
        spectator.spectator_id,
        battle.battle_id,
        battle.crowd_energy,
    )
    return CrowdActionResult(True, message, event)


def trigger_arena_event(battle: Battle, rng: RandomSource) -> ArenaEvent:
    kind = pick(rng, EVENT_KINDS)
    log.info("Arena event %s triggered in battle %s", kind.value, battle.battle_id)
    if kind is ArenaEventKind.POWER_SURGE:
        return _power_surge(battle, rng)
    if kind is ArenaEventKind.CHAOS_FIELD:
        return _chaos_field(battle, rng)
    return _arena_hazard(battle)


def _power_surge(battle: Battle, rng: RandomSource) -> ArenaEvent:
    side = Side.RED if rng.random() < 0.5 else Side.BLUE
    buff = Buff(BuffKind.DAMAGE, POWER_SURGE_BONUS, EVENT_BUFF_ROUNDS, "power_surge")
    target = battle.red_fighter if side is Side.RED else battle.blue_fighter
    if target is None:
        # The surge fizzles on an empty corner.
        return ArenaEvent(
            ArenaEventKind.POWER_SURGE,
            f"⚡ **POWER SURGE!** Energy crackles through {battle.red_fighter.name}!",
        )
    target.buffs.append(buff)
    return ArenaEvent(
        ArenaEventKind.POWER_SURGE,
        f"⚡ **POWER SURGE!** Energy crackles through {target.name}, boosting their power!",
        red_effect=buff if side is Side.RED else None,
        blue_effect=buff if side is Side.BLUE else None,
    )


def _chaos_buff(rng: RandomSource) -> Buff:
    kind = pick(rng, BUFF_KINDS)
    magnitude = CHAOS_MIN_MAGNITUDE + math.floor(rng.random() * CHAOS_MAGNITUDE_SPREAD)
    return Buff(kind, float(magnitude), EVENT_BUFF_ROUNDS, "chaos_field")


def _chaos_field(battle: Battle, rng: RandomSource) -> ArenaEvent:
    red_buff = _chaos_buff(rng)
    blue_buff = _chaos_buff(rng)
    battle.red_fighter.buffs.append(red_buff)
    blue = battle.blue_fighter
    if blue is not None:
        blue.buffs.append(blue_buff)
    return ArenaEvent(
        ArenaEventKind.CHAOS_FIELD,
        "🌀 **CHAOS FIELD!** Reality warps around the fighters, granting unpredictable bonuses!",
        red_effect=red_buff,
        blue_effect=blue_buff if blue is not None else None,
    )


def hazard_damage(endurance: float) -> int:
    return max(
        HAZARD_MIN_DAMAGE,
        HAZARD_BASE_DAMAGE - math.floor(endurance * HAZARD_ENDURANCE_FACTOR),
    )


def _arena_hazard(battle: Battle) -> ArenaEvent:
    red = battle.red_fighter
    blue = battle.blue_fighter
    red_damage = hazard_damage(red.stat("endurance"))
    red.set_hp(max(1, red.hp - red_damage))
    blue_damage = 0
    if blue is not None:
        blue_damage = hazard_damage(blue.stat("endurance"))
        blue.set_hp(max(1, blue.hp - blue_damage))
    opponent = blue.name if blue is not None else "opponent"
    return ArenaEvent(
        ArenaEventKind.ARENA_HAZARD,
        f"⚠️ **ARENA HAZARD!** Energy spikes erupt from the floor! {red.name} takes "
        f"{red_damage} damage, {opponent} takes {blue_damage} damage!",
        red_damage=red_damage,
        blue_damage=blue_damage,
    )


def crowd_bonuses(battle: Battle) -> CrowdBonus:
    energy = float(battle.crowd_energy)
    if battle.crowd_bias is CrowdBias.RED:
        return CrowdBonus(energy * 0.7, energy * 0.3)
    if battle.crowd_bias is CrowdBias.BLUE:
        return CrowdBonus(energy * 0.3, energy * 0.7)
    return CrowdBonus(energy * 0.5, energy * 0.5)


def cheer_damage_bonus(battle: Battle, side: Side) -> int:
    """Display bonus: +5% per cheering spectator, capped at +50%."""

    cheers = sum(1 for s in battle.spectators.values() if s.cheered_for is side)
    return min(CHEER_DAMAGE_BONUS_CAP, cheers * CHEER_DAMAGE_BONUS)


def crowd_status_message(battle: Battle) -> str:
    filled = battle.crowd_energy // 10
    energy_bar = "█" * filled + "░" * (10 - filled)
    red_cheers = sum(1 for s in battle.spectators.values() if s.cheered_for is Side.RED)
    blue_cheers = sum(1 for s in battle.spectators.values() if s.cheered_for is Side.BLUE)

    lines = [
        f"👥 **SPECTATORS** ({len(battle.spectators)} watching)",
        "",
        f"CROWD ENERGY: {energy_bar} {battle.crowd_energy}%",
        "",
    ]
    if red_cheers or blue_cheers:
        lines.append(f"🔴 {red_cheers} cheering red | 🔵 {blue_cheers} cheering blue")
    if battle.crowd_energy >= CROWD_CRITICAL_ENERGY:
        lines.extend(["", "⚡ **CROWD ENERGY CRITICAL!** Arena event imminent."])
    return "\n".join(lines)


__all__ = [
    "ArenaEvent",
    "ArenaEventKind",
    "CrowdAction",
    "CrowdActionResult",
    "CrowdBonus",
    "add_crowd_energy",
    "apply_bloodlust",
    "apply_crowd_action",
    "cheer_damage_bonus",
    "crowd_bonuses",
    "crowd_status_message",
    "hazard_damage",
    "recompute_crowd_bias",
    "trigger_arena_event",
]
