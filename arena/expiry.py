"""Cooperative timeouts for battles that stall in a phase."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from .constants import DEFAULT_SWEEP_INTERVAL
from .models import Battle, Phase
from .registry import BattleRegistry

log = logging.getLogger(__name__)

ExpiredCallback = Callable[[List[Battle]], Awaitable[None]]


def find_expired(registry: BattleRegistry, now: Optional[float] = None) -> List[Battle]:
    now = time.time() if now is None else now
    return [
        battle
        for battle in registry.all_battles()
        if battle.phase is not Phase.FINISHED and battle.expires_at < now
    ]


def sweep_expired(registry: BattleRegistry, now: Optional[float] = None) -> List[Battle]:
    """Evict every expired battle and return what was removed."""

    expired = find_expired(registry, now)
    for battle in expired:
        registry.remove(battle.battle_id)
        log.info(
            "Battle %s expired in phase %s", battle.battle_id, battle.phase.value
        )
    return expired


class ExpirySweeper:
    """Runs :func:`sweep_expired` on a fixed interval."""

    def __init__(
        self,
        registry: BattleRegistry,
        *,
        interval: float = DEFAULT_SWEEP_INTERVAL,
        on_expired: Optional[ExpiredCallback] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.interval = max(0.01, float(interval))
        self.on_expired = on_expired
        self._clock = clock
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> List[Battle]:
        expired = sweep_expired(self.registry, self._clock())
        if expired and self.on_expired is not None:
            try:
                await self.on_expired(expired)
            except Exception:
                log.exception("Expiry callback failed for %d battle(s)", len(expired))
        return expired

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name="arena-expiry-sweep"
        )
        log.info("Expiry sweep started (every %.0fs)", self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Expiry sweep stopped")


__all__ = ["ExpirySweeper", "find_expired", "sweep_expired"]
