"""Shared helpers for cogs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Protocol

import discord
from discord.ext import commands

from ..config import ArenaConfig
from ..models import BotProfile
from ..narrative import IllustrationService, NarrativeService
from ..randomness import RandomSource
from ..registry import BattleRegistry
from ..storage import ArenaStore
from ..tracking import ArenaStats

if TYPE_CHECKING:
    from ..bot import ArenaBot

log = logging.getLogger(__name__)


class ProfileProvider(Protocol):
    """Looks up the bot a participant fights with."""

    async def fetch(self, token_id: str) -> Optional[BotProfile]: ...


class DefaultProfileProvider:
    """Plain profiles without story data; every fighter uses the built-in abilities."""

    async def fetch(self, token_id: str) -> Optional[BotProfile]:
        token_id = str(token_id).strip().lstrip("#")
        if not token_id:
            return None
        return BotProfile(token_id=token_id, name=f"Bot #{token_id}")


class ArenaCogBase(commands.Cog):
    def __init__(self, bot: "ArenaBot"):
        self.bot = bot

    @property
    def config(self) -> ArenaConfig:
        return self.bot.config

    @property
    def registry(self) -> BattleRegistry:
        return self.bot.registry

    @property
    def store(self) -> ArenaStore:
        return self.bot.store

    @property
    def stats(self) -> ArenaStats:
        return self.bot.stats

    @property
    def profiles(self) -> ProfileProvider:
        return self.bot.profiles

    @property
    def rng(self) -> RandomSource:
        return self.bot.rng

    @property
    def narrator(self) -> Optional[NarrativeService]:
        return self.bot.narrator

    @property
    def illustrator(self) -> Optional[IllustrationService]:
        return self.bot.illustrator

    async def persist_battles(self) -> None:
        await self.store.save_battles(self.registry.all_battles())

    async def persist_stats(self) -> None:
        await self.store.save_stats(self.stats)

    async def reply(
        self,
        interaction: discord.Interaction,
        message: str,
        *,
        ephemeral: bool = True,
    ) -> None:
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=ephemeral)
        else:
            await interaction.response.send_message(message, ephemeral=ephemeral)


__all__ = ["ArenaCogBase", "DefaultProfileProvider", "ProfileProvider"]
