"""Slash commands and interaction handlers for arena battles."""

from __future__ import annotations

import io
import logging
from typing import Dict, List, Optional, Type

import discord
from discord import app_commands
from discord.ext import commands

from ..combat import fighter_abilities
from ..models import Battle, BotProfile, Fighter, Phase, Stance
from ..narrative import (
    critical_hit_narrative,
    illustrate,
    narrate_victory,
    victory_image_prompt,
)
from ..rounds import complete_round
from ..spectators import CrowdAction, apply_crowd_action, crowd_status_message
from ..state import (
    accept_challenge,
    both_actions_ready,
    cancel_challenge,
    forfeit,
    is_epic_victory,
    loser,
    set_action,
    set_stance,
    winner,
)
from ..tracking import leaderboard, recent_battles, record_battle_result, server_summary
from ..utils import format_number, format_win_rate
from ..views import (
    ARENA_COLOUR,
    STANCE_HINTS,
    AbilityView,
    ArenaView,
    ChallengeView,
    CrowdView,
    RoundView,
    StanceView,
    battle_embed,
)
from .base import ArenaCogBase

log = logging.getLogger(__name__)

VICTORY_COLOUR = discord.Colour.gold()
EXPIRED_COLOUR = discord.Colour.dark_grey()


class ArenaCog(ArenaCogBase):
    arena_group = app_commands.Group(
        name="arena", description="Robot arena battles", guild_only=True
    )

    def __init__(self, bot: commands.Bot):
        super().__init__(bot)
        self._views: Dict[str, List[ArenaView]] = {}

    # ------------------------------------------------------------------
    # View bookkeeping
    # ------------------------------------------------------------------

    def _track_view(self, battle_id: str, view: ArenaView) -> None:
        self._views.setdefault(battle_id, []).append(view)

    async def _close_views(
        self, battle_id: str, kind: Optional[Type[ArenaView]] = None
    ) -> None:
        views = self._views.get(battle_id, [])
        keep: List[ArenaView] = []
        for view in views:
            if kind is None or isinstance(view, kind):
                await view.close()
            else:
                keep.append(view)
        if keep:
            self._views[battle_id] = keep
        else:
            self._views.pop(battle_id, None)

    def _find_view(self, battle_id: str, kind: Type[ArenaView]) -> Optional[ArenaView]:
        for view in self._views.get(battle_id, []):
            if isinstance(view, kind):
                return view
        return None

    # ------------------------------------------------------------------
    # Discord helpers
    # ------------------------------------------------------------------

    def _get_channel(
        self, raw_id: Optional[str]
    ) -> Optional[discord.TextChannel | discord.Thread]:
        if raw_id is None:
            return None
        try:
            channel = self.bot.get_channel(int(raw_id))
        except (TypeError, ValueError):
            return None
        if isinstance(channel, (discord.TextChannel, discord.Thread)):
            return channel
        return None

    def _battle_channel(
        self, battle: Battle
    ) -> Optional[discord.TextChannel | discord.Thread]:
        return self._get_channel(battle.thread_id) or self._get_channel(battle.channel_id)

    async def _fetch_profile(
        self, interaction: discord.Interaction, bot_id: str
    ) -> Optional[BotProfile]:
        try:
            profile = await self.profiles.fetch(bot_id)
        except Exception:
            log.exception("Profile lookup failed for bot %s", bot_id)
            profile = None
        if profile is None:
            await self.reply(interaction, f"Could not find a bot with id `{bot_id}`.")
        return profile

    async def _update_announcement(
        self,
        battle: Battle,
        *,
        title: str,
        description: str,
        colour: discord.Colour = EXPIRED_COLOUR,
    ) -> None:
        channel = self._get_channel(battle.channel_id)
        if channel is None or battle.announcement_message_id is None:
            return
        message = channel.get_partial_message(int(battle.announcement_message_id))
        try:
            await message.edit(
                embed=battle_embed(battle, title=title, description=description, colour=colour),
                view=None,
            )
        except discord.HTTPException:
            pass

    async def _open_thread(self, battle: Battle) -> Optional[discord.Thread]:
        channel = self._get_channel(battle.channel_id)
        if isinstance(channel, discord.Thread):
            channel = channel.parent
        if not isinstance(channel, discord.TextChannel):
            return None
        red = battle.red_fighter
        blue = battle.blue_fighter
        name = f"⚔️ {red.name} vs {blue.name if blue else '???'}"[:90]
        try:
            thread = await channel.create_thread(
                name=name,
                auto_archive_duration=1440,
                type=discord.ChannelType.private_thread,
                reason="Arena battle",
                invitable=False,
            )
        except discord.HTTPException:
            log.exception("Unable to create a thread for battle %s", battle.battle_id)
            return None
        self.registry.attach_thread(battle, thread.id)
        for user_id in battle.participant_ids():
            await self._add_to_thread(thread, user_id)
        return thread

    async def _add_to_thread(self, thread: discord.Thread, user_id: str) -> None:
        try:
            await thread.add_user(discord.Object(id=int(user_id)))
        except (discord.HTTPException, ValueError):
            log.warning("Could not add %s to thread %s", user_id, thread.id)

    async def _close_thread(self, battle: Battle) -> None:
        thread = self._get_channel(battle.thread_id)
        if not isinstance(thread, discord.Thread):
            return
        try:
            await thread.edit(archived=True, locked=True, reason="Arena battle concluded")
        except discord.HTTPException:
            pass

    # ------------------------------------------------------------------
    # Battle flow
    # ------------------------------------------------------------------

    async def accept_battle(
        self, interaction: discord.Interaction, battle_id: str, bot_id: str
    ) -> None:
        battle = self.registry.lookup_by_id(battle_id)
        if battle is None:
            await self.reply(interaction, "This challenge is no longer available.")
            return
        profile = await self._fetch_profile(interaction, bot_id)
        if profile is None:
            return
        user = interaction.user
        opponent = Fighter.create(user.id, user.display_name, profile)
        result = accept_challenge(self.registry, battle, opponent)
        if not result.success:
            await self.reply(interaction, result.reason)
            return

        await interaction.response.defer(thinking=True)
        challenge_view = self._find_view(battle.battle_id, ChallengeView)
        if isinstance(challenge_view, ChallengeView) and challenge_view.message:
            challenge_view.mark_accepted()
            try:
                await challenge_view.message.edit(
                    embed=battle_embed(
                        battle,
                        title="⚔️ Challenge accepted",
                        description=f"{battle.red_fighter.name} vs {opponent.name}",
                    ),
                    view=challenge_view,
                )
            except discord.HTTPException:
                pass

        thread = await self._open_thread(battle)
        for spectator_id in self.registry.activate_spectators(battle):
            if thread is not None:
                await self._add_to_thread(thread, spectator_id)

        destination = thread or self._battle_channel(battle)
        if destination is not None:
            view = StanceView(
                self,
                battle.battle_id,
                battle.participant_ids(),
                timeout=self.registry.round_timeout,
            )
            view.message = await destination.send(
                embed=battle_embed(
                    battle,
                    title="Choose your stance",
                    description="\n".join(
                        f"**{stance.value.title()}**: {hint}"
                        for stance, hint in STANCE_HINTS.items()
                    ),
                ),
                view=view,
            )
            self._track_view(battle.battle_id, view)

        await self.persist_battles()
        where = thread.mention if thread is not None else "the arena"
        await interaction.followup.send(f"The battle begins in {where}!")

    async def watch_battle(self, interaction: discord.Interaction, battle_id: str) -> None:
        battle = self.registry.lookup_by_id(battle_id)
        if battle is None or battle.is_finished:
            await self.reply(interaction, "This battle has ended.")
            return
        if not self.registry.add_pending_spectator(battle, interaction.user.id):
            await self.reply(interaction, "You are already watching or fighting in this battle.")
            return
        if battle.phase is Phase.CHALLENGE:
            await self.reply(
                interaction,
                "You'll be brought into the fight thread once the challenge is accepted.",
            )
        else:
            self.registry.activate_spectators(battle)
            thread = self._get_channel(battle.thread_id)
            if isinstance(thread, discord.Thread):
                await self._add_to_thread(thread, str(interaction.user.id))
                await self.reply(interaction, f"You're now watching in {thread.mention}.")
            else:
                await self.reply(interaction, "You're now watching this battle.")
        await self.persist_battles()

    async def choose_stance(
        self, interaction: discord.Interaction, battle_id: str, stance: Stance
    ) -> None:
        battle = self.registry.lookup_by_id(battle_id)
        if battle is None:
            await self.reply(interaction, "This battle has ended.")
            return
        result = set_stance(self.registry, battle, interaction.user.id, stance)
        if not result.success:
            await self.reply(interaction, result.reason)
            return
        await self.reply(
            interaction, f"You take a **{stance.value}** stance. {STANCE_HINTS[stance]}."
        )
        if battle.phase is Phase.COMBAT:
            await self._close_views(battle.battle_id, StanceView)
            await self._post_crowd_panel(battle)
            await self._announce_round(battle)
        await self.persist_battles()

    async def _post_crowd_panel(self, battle: Battle) -> None:
        channel = self._battle_channel(battle)
        if channel is None:
            return
        view = CrowdView(self, battle.battle_id, timeout=None)
        view.message = await channel.send(crowd_status_message(battle), view=view)
        self._track_view(battle.battle_id, view)

    async def _announce_round(self, battle: Battle) -> None:
        channel = self._battle_channel(battle)
        if channel is None:
            return
        view = RoundView(
            self,
            battle.battle_id,
            battle.participant_ids(),
            battle.round_number,
            timeout=self.registry.round_timeout,
        )
        view.message = await channel.send(
            embed=battle_embed(
                battle,
                title=f"Round {battle.round_number}",
                description="Both fighters choose an action.",
            ),
            view=view,
        )
        self._track_view(battle.battle_id, view)

    async def open_ability_picker(
        self, interaction: discord.Interaction, battle_id: str
    ) -> None:
        battle = self.registry.lookup_by_id(battle_id)
        if battle is None or battle.phase is not Phase.COMBAT:
            await self.reply(interaction, "Actions can only be chosen during combat.")
            return
        fighter = battle.fighter_for(interaction.user.id)
        if fighter is None:
            await self.reply(interaction, "You are not a participant in this battle.")
            return
        if fighter.selected_action is not None:
            await self.reply(
                interaction, f"You already chose **{fighter.selected_action}** this round."
            )
            return
        view = AbilityView(
            self, battle_id, fighter_abilities(fighter), timeout=self.registry.round_timeout
        )
        await interaction.response.send_message("Pick your move:", view=view, ephemeral=True)

    async def choose_action(
        self, interaction: discord.Interaction, battle_id: str, ability_name: str
    ) -> None:
        battle = self.registry.lookup_by_id(battle_id)
        if battle is None:
            await self.reply(interaction, "This battle has ended.")
            return
        result = set_action(battle, interaction.user.id, ability_name)
        if not result.success:
            await self.reply(interaction, result.reason)
            return
        await interaction.response.edit_message(
            content=f"You chose **{ability_name}**.", view=None
        )
        if both_actions_ready(battle):
            await self._run_round(battle)
        else:
            await self.persist_battles()

    async def round_timed_out(self, battle_id: str, round_number: int) -> None:
        """Resolve a stalled round if at least one fighter committed an action."""

        battle = self.registry.lookup_by_id(battle_id)
        if battle is None or battle.phase is not Phase.COMBAT:
            return
        if battle.round_number != round_number:
            return
        if all(fighter.selected_action is None for fighter in battle.fighters):
            return
        log.info("Round %d of battle %s timed out", round_number, battle_id)
        await self._run_round(battle)

    async def _run_round(self, battle: Battle) -> None:
        # Commit before the first await so a concurrent caller sees the new round.
        outcome = complete_round(self.registry, battle, self.rng, self.narrator)
        finished = battle.is_finished
        result, resolution = outcome.result, outcome.resolution
        await self._close_views(battle.battle_id, RoundView)
        engagement = battle.engagement()

        embed = battle_embed(
            battle,
            title=f"Round {result.round_number} results",
            description=result.narrative,
        )
        embed.add_field(
            name="Blow by blow", value="\n".join(resolution.events) or "-", inline=False
        )
        for side in (resolution.first, resolution.first.opposite):
            if resolution.critical_by(side):
                embed.add_field(
                    name="💥 Critical",
                    value=critical_hit_narrative(
                        engagement.fighter(side),
                        engagement.fighter(side.opposite),
                        resolution.action_of(side),
                        resolution.damage_by(side),
                    ),
                    inline=False,
                )

        channel = self._battle_channel(battle)
        message: Optional[discord.Message] = None
        if channel is not None:
            message = await channel.send(embed=embed)
        await self.persist_battles()

        if not finished:
            await self._announce_round(battle)

        if outcome.narrative_task is not None:
            text = await outcome.narrative_task
            if message is not None and text != embed.description:
                embed.description = text
                try:
                    await message.edit(embed=embed)
                except discord.HTTPException:
                    pass

        if finished:
            await self._finish_battle(battle)

    async def _finish_battle(self, battle: Battle) -> None:
        # Removal before the first await makes a second call a no-op.
        if self.registry.remove(battle.battle_id) is None:
            return
        await self._close_views(battle.battle_id)
        channel = self._battle_channel(battle)

        if battle.blue_fighter is None:
            await self.persist_battles()
            await self._update_announcement(
                battle,
                title="Challenge withdrawn",
                description=f"{battle.red_fighter.name} left the arena.",
            )
            return

        win, lose = winner(battle), loser(battle)
        epic = is_epic_victory(battle)
        record_battle_result(self.stats, battle, win, lose, epic)
        await self.persist_stats()

        text = await narrate_victory(self.narrator, battle, win, lose, epic)
        embed = battle_embed(
            battle,
            title="🏆 EPIC VICTORY!" if epic else "🏆 Victory!",
            description=text,
            colour=VICTORY_COLOUR,
        )
        references = [
            url for url in (win.profile.image_url, lose.profile.image_url) if url
        ]
        image = await illustrate(
            self.illustrator, victory_image_prompt(win, lose, epic), references
        )
        send_kwargs: Dict[str, object] = {"embed": embed}
        if image:
            send_kwargs["file"] = discord.File(io.BytesIO(image), filename="victory.png")
            embed.set_image(url="attachment://victory.png")
        if channel is not None:
            try:
                message = await channel.send(**send_kwargs)
            except discord.HTTPException:
                log.exception("Could not post the result of battle %s", battle.battle_id)
            else:
                battle.generated_images.extend(a.url for a in message.attachments)

        await self.persist_battles()
        await self._update_announcement(
            battle,
            title="Battle concluded",
            description=f"**{win.name}** ({win.username}) defeated {lose.name}.",
            colour=VICTORY_COLOUR,
        )
        await self._close_thread(battle)

    async def forfeit_battle(self, interaction: discord.Interaction, battle_id: str) -> None:
        battle = self.registry.lookup_by_id(battle_id)
        if battle is None:
            await self.reply(interaction, "This battle has ended.")
            return
        result = forfeit(battle, interaction.user.id)
        if not result.success:
            await self.reply(interaction, result.reason)
            return
        await self.reply(
            interaction, f"🏳️ {interaction.user.display_name} forfeits!", ephemeral=False
        )
        await self._finish_battle(battle)

    async def crowd_action(
        self, interaction: discord.Interaction, battle_id: str, action: CrowdAction
    ) -> None:
        battle = self.registry.lookup_by_id(battle_id)
        if battle is None:
            await self.reply(interaction, "This battle has ended.")
            return
        result = apply_crowd_action(battle, interaction.user.id, action, self.rng)
        await self.reply(interaction, result.message)
        if not result.success:
            return

        panel = self._find_view(battle_id, CrowdView)
        if panel is not None and panel.message is not None:
            try:
                await panel.message.edit(content=crowd_status_message(battle))
            except discord.HTTPException:
                pass
        if result.event is not None:
            channel = self._battle_channel(battle)
            if channel is not None:
                await channel.send(
                    embed=battle_embed(
                        battle,
                        title="🌩️ ARENA EVENT",
                        description=result.event.description,
                        colour=discord.Colour.purple(),
                    )
                )
        await self.persist_battles()

    @commands.Cog.listener()
    async def on_arena_battles_expired(self, battles: List[Battle]) -> None:
        for battle in battles:
            await self._close_views(battle.battle_id)
            channel = self._get_channel(battle.thread_id)
            if channel is not None:
                try:
                    await channel.send("⌛ This battle expired due to inactivity.")
                except discord.HTTPException:
                    pass
            await self._update_announcement(
                battle,
                title="⌛ Battle expired",
                description="Nobody made a move in time.",
            )
            await self._close_thread(battle)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @arena_group.command(name="challenge", description="Open an arena challenge")
    @app_commands.describe(bot_id="The token id of the bot you fight with")
    async def challenge(self, interaction: discord.Interaction, bot_id: str) -> None:
        arena_channel = self.config.channel_id
        if arena_channel is not None and interaction.channel_id != arena_channel:
            await self.reply(interaction, f"Arena battles take place in <#{arena_channel}>.")
            return
        user = interaction.user
        if self.registry.is_user_busy(user.id):
            await self.reply(interaction, "You are already in a battle.")
            return
        profile = await self._fetch_profile(interaction, bot_id)
        if profile is None:
            return

        fighter = Fighter.create(user.id, user.display_name, profile)
        battle = self.registry.create(
            interaction.channel_id, fighter, self.config.max_rounds
        )
        view = ChallengeView(self, battle.battle_id, timeout=None)
        await interaction.response.send_message(
            embed=battle_embed(
                battle,
                title="⚔️ Arena Challenge",
                description=(
                    f"<@{user.id}> enters the arena with **{fighter.name}** "
                    f"({fighter.max_hp} HP). Press **Accept** to fight or **Watch** "
                    "to join the crowd."
                ),
            ),
            view=view,
        )
        view.message = await interaction.original_response()
        self.registry.set_announcement(battle, view.message.id)
        self._track_view(battle.battle_id, view)
        await self.persist_battles()

    @arena_group.command(name="accept", description="Accept an open challenge")
    @app_commands.describe(
        bot_id="The token id of the bot you fight with",
        challenger="Whose challenge to accept (defaults to the oldest in this channel)",
    )
    async def accept(
        self,
        interaction: discord.Interaction,
        bot_id: str,
        challenger: Optional[discord.Member] = None,
    ) -> None:
        battle: Optional[Battle]
        if challenger is not None:
            battle = self.registry.lookup_by_user(challenger.id)
        else:
            open_here = sorted(
                (
                    candidate
                    for candidate in self.registry.all_battles()
                    if candidate.phase is Phase.CHALLENGE
                    and candidate.channel_id == str(interaction.channel_id)
                    and candidate.red_fighter.user_id != str(interaction.user.id)
                ),
                key=lambda candidate: candidate.created_at,
            )
            battle = open_here[0] if open_here else None
        if battle is None:
            await self.reply(interaction, "There is no open challenge to accept.")
            return
        await self.accept_battle(interaction, battle.battle_id, bot_id)

    @arena_group.command(name="forfeit", description="Give up your current battle")
    async def forfeit_command(self, interaction: discord.Interaction) -> None:
        battle = self.registry.lookup_by_user(interaction.user.id)
        if battle is None:
            await self.reply(interaction, "You are not in a battle.")
            return
        await self.forfeit_battle(interaction, battle.battle_id)

    @arena_group.command(name="cancel", description="Withdraw your unanswered challenge")
    async def cancel(self, interaction: discord.Interaction) -> None:
        battle = self.registry.lookup_by_user(interaction.user.id)
        if battle is None:
            await self.reply(interaction, "You have no open challenge.")
            return
        result = cancel_challenge(self.registry, battle, interaction.user.id)
        if not result.success:
            await self.reply(interaction, result.reason)
            return
        await self._close_views(battle.battle_id)
        await self._update_announcement(
            battle,
            title="Challenge cancelled",
            description=f"{battle.red_fighter.name} left the arena.",
        )
        await self.persist_battles()
        await self.reply(interaction, "Your challenge has been cancelled.")

    @arena_group.command(name="controls", description="Repost the controls for your battle")
    async def controls(self, interaction: discord.Interaction) -> None:
        battle = self.registry.lookup_by_user(interaction.user.id)
        if battle is None:
            await self.reply(interaction, "You are not in a battle.")
            return
        if battle.phase is Phase.PREBATTLE:
            await self._close_views(battle.battle_id, StanceView)
            channel = self._battle_channel(battle)
            if channel is not None:
                view = StanceView(
                    self,
                    battle.battle_id,
                    battle.participant_ids(),
                    timeout=self.registry.round_timeout,
                )
                view.message = await channel.send(
                    embed=battle_embed(battle, title="Choose your stance"), view=view
                )
                self._track_view(battle.battle_id, view)
        elif battle.phase is Phase.COMBAT:
            await self._close_views(battle.battle_id, RoundView)
            await self._announce_round(battle)
            if self._find_view(battle.battle_id, CrowdView) is None:
                await self._post_crowd_panel(battle)
        else:
            await self.reply(interaction, "Your challenge is still waiting for an opponent.")
            return
        await self.reply(interaction, "Controls posted.")

    @arena_group.command(name="status", description="Show the state of your battle")
    async def status(self, interaction: discord.Interaction) -> None:
        battle = self.registry.lookup_by_user(interaction.user.id)
        if battle is None and interaction.channel_id is not None:
            battle = self.registry.lookup_by_thread(interaction.channel_id)
        if battle is None:
            await self.reply(interaction, "You are not in a battle.")
            return
        embed = battle_embed(
            battle,
            title=f"Battle status: {battle.phase.value}",
            description=crowd_status_message(battle),
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @arena_group.command(name="stats", description="Show arena statistics")
    @app_commands.describe(member="Whose statistics to show (defaults to you)")
    async def stats_command(
        self, interaction: discord.Interaction, member: Optional[discord.Member] = None
    ) -> None:
        target = member or interaction.user
        entry = self.stats.users.get(str(target.id))
        if entry is None:
            await self.reply(interaction, f"No arena battles recorded for {target.display_name}.")
            return
        embed = discord.Embed(
            title=f"{target.display_name}'s arena record", colour=ARENA_COLOUR
        )
        embed.add_field(
            name="Record",
            value=(
                f"{format_number(entry.wins)}W / {format_number(entry.losses)}L "
                f"({format_win_rate(entry.wins, entry.battles)})"
            ),
            inline=False,
        )
        embed.add_field(
            name="Streak",
            value=f"Current {entry.current_streak} · Best {entry.best_streak}",
            inline=True,
        )
        embed.add_field(name="Epic victories", value=str(entry.epic_victories), inline=True)
        embed.add_field(name="Rounds fought", value=format_number(entry.total_rounds), inline=True)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @arena_group.command(name="leaderboard", description="Show the top arena fighters")
    async def leaderboard_command(self, interaction: discord.Interaction) -> None:
        ranked = leaderboard(self.stats)
        if not ranked:
            await self.reply(interaction, "No battles recorded yet.")
            return
        lines = [
            f"**{position}.** {entry.username or entry.user_id}: "
            f"{entry.wins}W/{entry.losses}L, best streak {entry.best_streak}"
            for position, entry in enumerate(ranked, start=1)
        ]
        summary = server_summary(self.stats)
        embed = discord.Embed(
            title="🏆 Arena leaderboard", description="\n".join(lines), colour=VICTORY_COLOUR
        )
        embed.set_footer(
            text=(
                f"{summary.total_battles} battles · {summary.total_rounds} rounds · "
                f"{summary.epic_victories} epic victories · "
                f"{self.registry.phase_counts()['active']} in progress"
            )
        )
        await interaction.response.send_message(embed=embed)

    @arena_group.command(name="history", description="Show recent arena results")
    async def history(self, interaction: discord.Interaction) -> None:
        records = recent_battles(self.stats)
        if not records:
            await self.reply(interaction, "No battles recorded yet.")
            return
        lines = [
            f"**{record.winner_name}** defeated {record.loser_name} in "
            f"{record.rounds} round(s){' ⭐' if record.epic_victory else ''}"
            for record in records
        ]
        embed = discord.Embed(
            title="📜 Recent battles", description="\n".join(lines), colour=ARENA_COLOUR
        )
        await interaction.response.send_message(embed=embed)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(ArenaCog(bot))
