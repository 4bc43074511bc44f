"""Interactive components for arena battles."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional

import discord

from .combat import Ability
from .models import Battle, Fighter, Stance
from .spectators import CrowdAction
from .utils import hp_line

if TYPE_CHECKING:
    from .cogs.arena import ArenaCog


RED_COLOUR = discord.Colour.red()
BLUE_COLOUR = discord.Colour.blue()
ARENA_COLOUR = discord.Colour.dark_teal()

STANCE_HINTS = {
    Stance.AGGRESSIVE: "Beats deceptive, loses to defensive",
    Stance.DEFENSIVE: "Beats aggressive, loses to deceptive",
    Stance.DECEPTIVE: "Beats defensive, loses to aggressive",
}


def fighter_summary(fighter: Fighter) -> str:
    stance = fighter.stance.value.title() if fighter.stance else "Undecided"
    return (
        f"<@{fighter.user_id}> with **{fighter.name}**\n"
        f"{hp_line('HP', fighter.hp, fighter.max_hp)}\n"
        f"Stance: {stance}"
    )


def battle_embed(
    battle: Battle,
    *,
    title: str,
    description: str = "",
    colour: discord.Colour = ARENA_COLOUR,
) -> discord.Embed:
    embed = discord.Embed(title=title, description=description, colour=colour)
    red = battle.red_fighter
    embed.add_field(name="🔴 Red corner", value=fighter_summary(red), inline=True)
    blue = battle.blue_fighter
    embed.add_field(
        name="🔵 Blue corner",
        value=fighter_summary(blue) if blue is not None else "*Awaiting a challenger*",
        inline=True,
    )
    if battle.round_number:
        embed.set_footer(
            text=(
                f"Round {battle.round_number}/{battle.max_rounds} · "
                f"Crowd energy {battle.crowd_energy}% · {battle.battle_id}"
            )
        )
    else:
        embed.set_footer(text=battle.battle_id)
    return embed


class ArenaView(discord.ui.View):
    """Base view bound to a single battle."""

    def __init__(
        self, cog: "ArenaCog", battle_id: str, *, timeout: Optional[float]
    ) -> None:
        super().__init__(timeout=timeout)
        self.cog = cog
        self.battle_id = battle_id
        self.message: Optional[discord.Message] = None

    def disable_all(self) -> None:
        for child in self.children:
            child.disabled = True

    async def on_timeout(self) -> None:
        self.disable_all()
        if self.message:
            try:
                await self.message.edit(view=self)
            except discord.HTTPException:
                pass

    async def close(self) -> None:
        self.disable_all()
        if self.message:
            try:
                await self.message.edit(view=self)
            except discord.HTTPException:
                pass
        self.stop()


class FighterOnlyView(ArenaView):
    """Restricts the controls to the two fighters."""

    def __init__(
        self,
        cog: "ArenaCog",
        battle_id: str,
        fighter_ids: Iterable[str],
        *,
        timeout: float,
    ) -> None:
        super().__init__(cog, battle_id, timeout=timeout)
        self.fighter_ids = frozenset(str(user_id) for user_id in fighter_ids)

    async def interaction_check(self, interaction: discord.Interaction) -> bool:  # type: ignore[override]
        if str(interaction.user.id) in self.fighter_ids:
            return True
        await interaction.response.send_message(
            "Only the fighters in this battle may use these controls.", ephemeral=True
        )
        return False


class AcceptModal(discord.ui.Modal):
    bot_id: discord.ui.TextInput = discord.ui.TextInput(
        label="Your bot ID",
        placeholder="The token id of the bot you fight with",
        max_length=32,
    )

    def __init__(self, cog: "ArenaCog", battle_id: str) -> None:
        super().__init__(title="Accept the challenge")
        self.cog = cog
        self.battle_id = battle_id

    async def on_submit(self, interaction: discord.Interaction) -> None:  # type: ignore[override]
        await self.cog.accept_battle(interaction, self.battle_id, str(self.bot_id.value))


class ChallengeView(ArenaView):
    def mark_accepted(self) -> None:
        self.accept.disabled = True

    @discord.ui.button(label="Accept", style=discord.ButtonStyle.success, emoji="⚔️")
    async def accept(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await interaction.response.send_modal(AcceptModal(self.cog, self.battle_id))

    @discord.ui.button(label="Watch", style=discord.ButtonStyle.secondary, emoji="👀")
    async def watch(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self.cog.watch_battle(interaction, self.battle_id)


class StanceView(FighterOnlyView):
    async def _choose(self, interaction: discord.Interaction, stance: Stance) -> None:
        await self.cog.choose_stance(interaction, self.battle_id, stance)

    @discord.ui.button(label="Aggressive", style=discord.ButtonStyle.danger, emoji="⚔️")
    async def aggressive(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self._choose(interaction, Stance.AGGRESSIVE)

    @discord.ui.button(label="Defensive", style=discord.ButtonStyle.primary, emoji="🛡️")
    async def defensive(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self._choose(interaction, Stance.DEFENSIVE)

    @discord.ui.button(label="Deceptive", style=discord.ButtonStyle.secondary, emoji="🎭")
    async def deceptive(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self._choose(interaction, Stance.DECEPTIVE)


class AbilitySelect(discord.ui.Select["AbilityView"]):
    def __init__(self, abilities: Iterable[Ability]) -> None:
        options: list[discord.SelectOption] = []
        for ability in abilities:
            description = ability.effect.strip()
            if len(description) > 95:
                description = description[:95] + "…"
            options.append(
                discord.SelectOption(
                    label=ability.name[:100],
                    value=ability.name[:100],
                    description=description or None,
                )
            )
        super().__init__(
            placeholder="Choose your move",
            options=options[:25],
            min_values=1,
            max_values=1,
        )

    async def callback(self, interaction: discord.Interaction) -> None:  # type: ignore[override]
        view = self.view
        if isinstance(view, AbilityView):
            await view.cog.choose_action(interaction, view.battle_id, self.values[0])
            view.disable_all()
            view.stop()


class AbilityView(ArenaView):
    """Ephemeral picker shown to one fighter."""

    def __init__(
        self,
        cog: "ArenaCog",
        battle_id: str,
        abilities: Iterable[Ability],
        *,
        timeout: float,
    ) -> None:
        super().__init__(cog, battle_id, timeout=timeout)
        self.add_item(AbilitySelect(abilities))


class RoundView(FighterOnlyView):
    def __init__(
        self,
        cog: "ArenaCog",
        battle_id: str,
        fighter_ids: Iterable[str],
        round_number: int,
        *,
        timeout: float,
    ) -> None:
        super().__init__(cog, battle_id, fighter_ids, timeout=timeout)
        self.round_number = round_number

    async def on_timeout(self) -> None:
        await super().on_timeout()
        await self.cog.round_timed_out(self.battle_id, self.round_number)

    @discord.ui.button(label="Choose Action", style=discord.ButtonStyle.success, emoji="🎯")
    async def choose(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self.cog.open_ability_picker(interaction, self.battle_id)

    @discord.ui.button(label="Forfeit", style=discord.ButtonStyle.danger, emoji="🏳️")
    async def surrender(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self.cog.forfeit_battle(interaction, self.battle_id)


class CrowdView(ArenaView):
    async def _act(self, interaction: discord.Interaction, action: CrowdAction) -> None:
        await self.cog.crowd_action(interaction, self.battle_id, action)

    @discord.ui.button(label="Cheer Red", style=discord.ButtonStyle.danger, emoji="🔴")
    async def cheer_red(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self._act(interaction, CrowdAction.CHEER_RED)

    @discord.ui.button(label="Cheer Blue", style=discord.ButtonStyle.primary, emoji="🔵")
    async def cheer_blue(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self._act(interaction, CrowdAction.CHEER_BLUE)

    @discord.ui.button(label="Bloodlust", style=discord.ButtonStyle.secondary, emoji="💀")
    async def bloodlust(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self._act(interaction, CrowdAction.BLOODLUST)

    @discord.ui.button(label="Surge", style=discord.ButtonStyle.secondary, emoji="⚡")
    async def surge(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:  # type: ignore[override]
        await self._act(interaction, CrowdAction.SURGE)


__all__ = [
    "ARENA_COLOUR",
    "AbilitySelect",
    "AcceptModal",
    "AbilityView",
    "ArenaView",
    "BLUE_COLOUR",
    "ChallengeView",
    "CrowdView",
    "FighterOnlyView",
    "RED_COLOUR",
    "RoundView",
    "STANCE_HINTS",
    "StanceView",
    "battle_embed",
    "fighter_summary",
]
