from __future__ import annotations

import asyncio
from typing import List

from arena.expiry import ExpirySweeper, find_expired, sweep_expired
from arena.models import Battle, Phase
from arena.registry import BattleRegistry

from conftest import build_fighter


def _registry_with_battles() -> tuple[BattleRegistry, Battle, Battle]:
    registry = BattleRegistry(challenge_timeout=120, round_timeout=30)
    stale = registry.create("555", build_fighter("100"), now=1000.0)
    fresh = registry.create("555", build_fighter("200"), now=1100.0)
    return registry, stale, fresh


def test_find_expired_uses_strict_comparison() -> None:
    registry, stale, _ = _registry_with_battles()

    assert find_expired(registry, now=1120.0) == []
    assert find_expired(registry, now=1120.5) == [stale]


def test_finished_battles_are_not_swept() -> None:
    registry, stale, _ = _registry_with_battles()
    stale.phase = Phase.FINISHED

    assert sweep_expired(registry, now=5000.0) != [stale]
    assert registry.lookup_by_id(stale.battle_id) is stale


def test_sweep_removes_and_unindexes() -> None:
    registry, stale, fresh = _registry_with_battles()

    removed = sweep_expired(registry, now=1200.0)

    assert removed == [stale]
    assert registry.lookup_by_user("100") is None
    assert registry.lookup_by_id(fresh.battle_id) is fresh


def test_run_once_reports_expired_battles() -> None:
    registry, stale, _ = _registry_with_battles()
    seen: List[List[Battle]] = []

    async def on_expired(battles: List[Battle]) -> None:
        seen.append(battles)

    sweeper = ExpirySweeper(registry, on_expired=on_expired, clock=lambda: 1200.0)
    removed = asyncio.run(sweeper.run_once())

    assert removed == [stale]
    assert seen == [[stale]]


def test_failing_callback_is_contained() -> None:
    registry, stale, _ = _registry_with_battles()

    async def on_expired(battles: List[Battle]) -> None:
        raise RuntimeError("discord is down")

    sweeper = ExpirySweeper(registry, on_expired=on_expired, clock=lambda: 1200.0)

    assert asyncio.run(sweeper.run_once()) == [stale]
    assert registry.count() == 1


def test_sweeper_loop_starts_and_stops() -> None:
    registry, stale, _ = _registry_with_battles()

    async def scenario() -> bool:
        swept = asyncio.Event()

        async def on_expired(battles: List[Battle]) -> None:
            swept.set()

        sweeper = ExpirySweeper(
            registry, interval=0.01, on_expired=on_expired, clock=lambda: 1200.0
        )
        sweeper.start()
        assert sweeper.running
        await asyncio.wait_for(swept.wait(), timeout=2)
        await sweeper.stop()
        return sweeper.running

    assert asyncio.run(scenario()) is False
    assert registry.lookup_by_id(stale.battle_id) is None
