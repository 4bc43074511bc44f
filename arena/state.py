"""Battle state machine.

Phases advance ``challenge -> prebattle -> combat -> finished``.  Every
transition checks its guard and reports a rule violation through an
:class:`ActionResult` instead of raising; nothing is mutated on failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, NamedTuple, Optional

from .constants import EPIC_CROWD_ENERGY, EPIC_LOW_HP, EPIC_ROUND_THRESHOLD
from .models import (
    Battle,
    BattleStateError,
    Engagement,
    Fighter,
    Phase,
    RoundResult,
    Side,
    Stance,
)
from .registry import BattleRegistry

if TYPE_CHECKING:
    from .combat import CombatResolution

log = logging.getLogger(__name__)


class ActionResult(NamedTuple):
    success: bool
    reason: str = ""

    @classmethod
    def ok(cls, reason: str = "") -> "ActionResult":
        return cls(True, reason)

    @classmethod
    def fail(cls, reason: str) -> "ActionResult":
        return cls(False, reason)


NOT_PARTICIPANT = "You are not a participant in this battle."


def _reject(battle: Battle, reason: str) -> ActionResult:
    log.warning("Rejected action on battle %s: %s", battle.battle_id, reason)
    return ActionResult.fail(reason)


def accept_challenge(
    registry: BattleRegistry,
    battle: Battle,
    opponent: Fighter,
    *,
    now: Optional[float] = None,
) -> ActionResult:
    if battle.phase is not Phase.CHALLENGE:
        return _reject(battle, "This challenge is no longer open.")
    challenger = battle.red_fighter
    if opponent.user_id == challenger.user_id:
        return _reject(battle, "You cannot accept your own challenge.")
    if registry.is_user_busy(opponent.user_id):
        return _reject(battle, "You are already in another battle.")

    battle.lineup = Engagement(challenger, opponent)
    battle.phase = Phase.PREBATTLE
    registry.index_participant(battle, opponent)
    registry.reset_timeout(battle, now=now)
    log.info(
        "Battle %s accepted: %s vs %s",
        battle.battle_id,
        challenger.name,
        opponent.name,
    )
    return ActionResult.ok()


def set_stance(
    registry: BattleRegistry,
    battle: Battle,
    user_id: Any,
    stance: Stance,
    *,
    now: Optional[float] = None,
) -> ActionResult:
    if battle.phase is not Phase.PREBATTLE:
        return _reject(battle, "Stances can only be chosen before combat begins.")
    fighter = battle.fighter_for(user_id)
    if fighter is None:
        return _reject(battle, NOT_PARTICIPANT)

    fighter.stance = stance
    engagement = battle.engagement()
    if engagement.red.stance is not None and engagement.blue.stance is not None:
        now = time.time() if now is None else now
        battle.phase = Phase.COMBAT
        battle.round_number = 1
        battle.round_started_at = now
        registry.reset_timeout(battle, now=now)
        log.info("Battle %s entered combat", battle.battle_id)
    return ActionResult.ok()


def set_action(battle: Battle, user_id: Any, ability_name: str) -> ActionResult:
    if battle.phase is not Phase.COMBAT:
        return _reject(battle, "Actions can only be chosen during combat.")
    fighter = battle.fighter_for(user_id)
    if fighter is None:
        return _reject(battle, NOT_PARTICIPANT)
    fighter.selected_action = ability_name
    return ActionResult.ok()


def both_stances_ready(battle: Battle) -> bool:
    blue = battle.blue_fighter
    return blue is not None and battle.red_fighter.stance is not None and blue.stance is not None


def both_actions_ready(battle: Battle) -> bool:
    blue = battle.blue_fighter
    return (
        blue is not None
        and battle.red_fighter.selected_action is not None
        and blue.selected_action is not None
    )


def resolve_round(
    registry: BattleRegistry,
    battle: Battle,
    resolution: "CombatResolution",
    *,
    narrative: str = "",
    now: Optional[float] = None,
) -> RoundResult:
    """Commit a resolved round to the battle and advance or finish it."""

    if battle.phase is not Phase.COMBAT:
        raise BattleStateError(
            f"cannot resolve a round for battle {battle.battle_id} in phase {battle.phase.value}"
        )
    engagement = battle.engagement()
    red, blue = engagement.red, engagement.blue

    blue.take_damage(resolution.red_damage)
    red.take_damage(resolution.blue_damage)

    result = RoundResult(
        round_number=battle.round_number,
        red_action=resolution.red_action,
        blue_action=resolution.blue_action,
        red_damage=resolution.red_damage,
        blue_damage=resolution.blue_damage,
        narrative=narrative or "\n".join(resolution.events),
        critical_hit=resolution.red_critical or resolution.blue_critical,
        red_critical=resolution.red_critical,
        blue_critical=resolution.blue_critical,
    )
    battle.round_log.append(result)

    for fighter in engagement.fighters:
        fighter.selected_action = None
        fighter.tick_modifiers()

    log.info(
        "Battle %s round %d: %s %d/%d HP, %s %d/%d HP",
        battle.battle_id,
        result.round_number,
        red.name,
        red.hp,
        red.max_hp,
        blue.name,
        blue.hp,
        blue.max_hp,
    )

    if red.is_down or blue.is_down or battle.round_number >= battle.max_rounds:
        battle.phase = Phase.FINISHED
        log.info("Battle %s finished after round %d", battle.battle_id, battle.round_number)
    else:
        now = time.time() if now is None else now
        battle.round_number += 1
        battle.round_started_at = now
        registry.reset_timeout(battle, now=now)
    return result


def attach_narrative(
    battle: Battle,
    round_number: int,
    narrative: str,
    *,
    image_url: Optional[str] = None,
) -> Optional[RoundResult]:
    """Swap in prose generated after the round was committed."""

    for index, entry in enumerate(battle.round_log):
        if entry.round_number == round_number:
            updated = replace(
                entry,
                narrative=narrative,
                image_url=image_url if image_url is not None else entry.image_url,
            )
            battle.round_log[index] = updated
            return updated
    return None


def forfeit(battle: Battle, user_id: Any) -> ActionResult:
    """End the battle with ``user_id`` knocked out.

    Legal from every non-terminal phase.  A forfeited open challenge has no
    winner; callers check ``battle.blue_fighter`` before recording a result.
    """

    if battle.phase is Phase.FINISHED:
        return _reject(battle, "This battle is already over.")
    fighter = battle.fighter_for(user_id)
    if fighter is None:
        return _reject(battle, NOT_PARTICIPANT)
    fighter.set_hp(0)
    battle.phase = Phase.FINISHED
    log.info("Battle %s forfeited by %s", battle.battle_id, fighter.username)
    return ActionResult.ok()


def cancel_challenge(
    registry: BattleRegistry, battle: Battle, user_id: Any
) -> ActionResult:
    if battle.phase is not Phase.CHALLENGE:
        return _reject(battle, "Only an unanswered challenge can be cancelled.")
    if battle.red_fighter.user_id != str(user_id):
        return _reject(battle, "Only the challenger can cancel this challenge.")
    registry.remove(battle.battle_id)
    log.info("Challenge %s cancelled by %s", battle.battle_id, user_id)
    return ActionResult.ok()


def winning_side(battle: Battle) -> Side:
    engagement = battle.engagement()
    red, blue = engagement.red, engagement.blue
    if red.is_down and not blue.is_down:
        return Side.BLUE
    if blue.is_down and not red.is_down:
        return Side.RED
    if red.hp != blue.hp:
        return Side.RED if red.hp > blue.hp else Side.BLUE
    return Side.RED if red.stat("agility") >= blue.stat("agility") else Side.BLUE


def winner(battle: Battle) -> Fighter:
    return battle.engagement().fighter(winning_side(battle))


def loser(battle: Battle) -> Fighter:
    return battle.engagement().fighter(winning_side(battle).opposite)


def is_epic_victory(battle: Battle) -> bool:
    if battle.round_number >= EPIC_ROUND_THRESHOLD:
        return True
    if battle.crowd_energy >= EPIC_CROWD_ENERGY:
        return True
    return winner(battle).hp < EPIC_LOW_HP


__all__ = [
    "ActionResult",
    "accept_challenge",
    "attach_narrative",
    "both_actions_ready",
    "both_stances_ready",
    "cancel_challenge",
    "forfeit",
    "is_epic_victory",
    "loser",
    "resolve_round",
    "set_action",
    "set_stance",
    "winner",
    "winning_side",
]
