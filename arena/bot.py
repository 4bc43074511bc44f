"""Entry point for the arena battle Discord bot."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import List, Optional

import discord
from discord.ext import commands

from .cogs.base import DefaultProfileProvider, ProfileProvider
from .config import ArenaConfig
from .expiry import ExpirySweeper
from .models import Battle
from .narrative import IllustrationService, NarrativeService
from .randomness import RandomSource
from .registry import BattleRegistry
from .storage import ArenaStore
from .tracking import ArenaStats

log = logging.getLogger(__name__)


class ArenaBot(commands.Bot):
    def __init__(
        self,
        config: ArenaConfig,
        *,
        profiles: Optional[ProfileProvider] = None,
        narrator: Optional[NarrativeService] = None,
        illustrator: Optional[IllustrationService] = None,
        rng: Optional[RandomSource] = None,
    ):
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(command_prefix="!", intents=intents)
        self.config = config
        self.rng: RandomSource = rng or random.Random()
        self.registry = BattleRegistry(
            challenge_timeout=config.challenge_timeout,
            round_timeout=config.round_timeout,
            rng=self.rng,
        )
        self.store = ArenaStore(config.state_dir)
        self.stats = ArenaStats()
        self.profiles: ProfileProvider = profiles or DefaultProfileProvider()
        self.narrator = narrator
        self.illustrator = illustrator
        self.sweeper = ExpirySweeper(
            self.registry,
            interval=config.sweep_interval,
            on_expired=self._on_battles_expired,
        )
        self._synced = False

    async def setup_hook(self) -> None:
        self.registry.restore(await self.store.load_battles())
        self.stats = await self.store.load_stats()
        await self.load_extension("arena.cogs.arena")
        self.sweeper.start()

    async def _on_battles_expired(self, battles: List[Battle]) -> None:
        await self.store.save_battles(self.registry.all_battles())
        self.dispatch("arena_battles_expired", battles)

    async def on_ready(self) -> None:
        if not self._synced:
            await self.tree.sync()
            for guild in self.guilds:
                await self.tree.sync(guild=guild)
            self._synced = True
            log.info("Application commands synced")
        if self.user:
            log.info("Connected as %s (%s)", self.user, self.user.id)

    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self.tree.sync()
        await self.tree.sync(guild=guild)
        log.info("Synced application commands for guild %s (%s)", guild.name, guild.id)

    async def close(self) -> None:
        await self.sweeper.stop()
        await self.store.save_battles(self.registry.all_battles())
        await super().close()


async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    config = ArenaConfig.from_env()
    bot = ArenaBot(config)
    async with bot:
        await bot.start(config.token)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
