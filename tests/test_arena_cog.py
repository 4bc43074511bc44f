from __future__ import annotations

import asyncio
import random
from pathlib import Path
from types import SimpleNamespace

from arena.cogs.arena import ArenaCog
from arena.models import Battle, Phase
from arena.registry import BattleRegistry
from arena.state import forfeit
from arena.storage import ArenaStore
from arena.tracking import ArenaStats


class GatedNarrator:
    """Narrator that holds round prose until ``release`` is set."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def round_narrative(self, battle, resolution):
        self.started.set()
        await self.release.wait()
        return "The crowd holds its breath."

    async def victory_narrative(self, battle, winner, loser, epic):
        return None


def _cog(registry: BattleRegistry, tmp_path: Path, narrator=None) -> ArenaCog:
    bot = SimpleNamespace(
        config=None,
        registry=registry,
        store=ArenaStore(tmp_path),
        stats=ArenaStats(),
        profiles=None,
        rng=random.Random(3),
        narrator=narrator,
        illustrator=None,
        get_channel=lambda channel_id: None,
    )
    return ArenaCog(bot)


def test_forfeit_while_round_prose_is_pending_records_once(
    tmp_path: Path, registry: BattleRegistry, combat_battle: Battle
) -> None:
    async def scenario() -> ArenaCog:
        narrator = GatedNarrator()
        cog = _cog(registry, tmp_path, narrator)
        round_task = asyncio.create_task(cog._run_round(combat_battle))
        await asyncio.wait_for(narrator.started.wait(), timeout=2)

        assert combat_battle.phase is Phase.COMBAT
        assert forfeit(combat_battle, "100").success
        await cog._finish_battle(combat_battle)

        narrator.release.set()
        await asyncio.wait_for(round_task, timeout=2)
        return cog

    cog = asyncio.run(scenario())

    assert cog.stats.users["200"].wins == 1
    assert cog.stats.users["100"].losses == 1
    assert len(cog.stats.history) == 1
    assert combat_battle.round_log[0].narrative == "The crowd holds its breath."
    assert registry.lookup_by_id(combat_battle.battle_id) is None


def test_finishing_twice_records_once(
    tmp_path: Path, registry: BattleRegistry, combat_battle: Battle
) -> None:
    cog = _cog(registry, tmp_path)
    assert forfeit(combat_battle, "200").success

    async def scenario() -> None:
        await asyncio.gather(
            cog._finish_battle(combat_battle), cog._finish_battle(combat_battle)
        )

    asyncio.run(scenario())

    assert cog.stats.users["100"].wins == 1
    assert len(cog.stats.history) == 1
    assert registry.count() == 0


def test_withdrawn_challenge_records_nothing(
    tmp_path: Path, registry: BattleRegistry, open_battle: Battle
) -> None:
    cog = _cog(registry, tmp_path)
    assert forfeit(open_battle, "100").success

    asyncio.run(cog._finish_battle(open_battle))

    assert cog.stats.history == []
    assert registry.count() == 0
