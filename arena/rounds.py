"""Round orchestration.

The combat math is committed to the battle synchronously.  Prose is fetched
afterwards on its own task, which may be cancelled or fail without touching any
game state; until it lands the round log carries the fallback text.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, NamedTuple, Optional

from .combat import CombatResolution, random_ability, resolve_combat
from .models import Battle, BattleStateError, Phase, RoundResult, Side
from .narrative import NarrativeService, fallback_round_narrative, narrate_round
from .randomness import RandomSource
from .registry import BattleRegistry
from .state import attach_narrative, resolve_round

log = logging.getLogger(__name__)


class RoundOutcome(NamedTuple):
    result: RoundResult
    resolution: CombatResolution
    narrative_task: Optional["asyncio.Task[str]"] = None


def fill_missing_actions(battle: Battle, rng: RandomSource) -> List[Side]:
    """Pick a random ability for every fighter that has not chosen one."""

    engagement = battle.engagement()
    filled: List[Side] = []
    for side in (Side.RED, Side.BLUE):
        fighter = engagement.fighter(side)
        if fighter.selected_action is None:
            fighter.selected_action = random_ability(fighter, rng).name
            filled.append(side)
    if filled:
        log.info(
            "Battle %s: random actions chosen for %s",
            battle.battle_id,
            ", ".join(side.value for side in filled),
        )
    return filled


async def _narrate_and_attach(
    narrator: NarrativeService,
    battle: Battle,
    resolution: CombatResolution,
    round_number: int,
) -> str:
    text = await narrate_round(narrator, battle, resolution)
    attach_narrative(battle, round_number, text)
    return text


def complete_round(
    registry: BattleRegistry,
    battle: Battle,
    rng: RandomSource,
    narrator: Optional[NarrativeService] = None,
    *,
    now: Optional[float] = None,
) -> RoundOutcome:
    """Resolve and commit the current round.

    When a narrator is given this must be called from a running event loop; the
    returned task resolves to the display prose.
    """

    if battle.phase is not Phase.COMBAT:
        raise BattleStateError(
            f"battle {battle.battle_id} is not in combat ({battle.phase.value})"
        )
    fill_missing_actions(battle, rng)
    resolution = resolve_combat(battle, rng)
    result = resolve_round(
        registry,
        battle,
        resolution,
        narrative=fallback_round_narrative(battle, resolution),
        now=time.time() if now is None else now,
    )

    task: Optional["asyncio.Task[str]"] = None
    if narrator is not None:
        task = asyncio.get_running_loop().create_task(
            _narrate_and_attach(narrator, battle, resolution, result.round_number),
            name=f"narrate-{battle.battle_id}-{result.round_number}",
        )
    return RoundOutcome(result, resolution, task)


__all__ = ["RoundOutcome", "complete_round", "fill_missing_actions"]
