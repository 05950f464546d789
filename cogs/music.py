# Copyright (C) 2026 grodz
#
# This file is part of Cadence.
#
# Cadence is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""Music commands for Cadence."""

import discord
import mafic
from discord import app_commands
from discord.ext import commands
from loguru import logger

from core.commands import Command, Play, Skip, Stop, decode_command
from utils.response import DiscordInteractionContext, render_fields


class Music(commands.Cog):
    """Slash commands and Lavalink events, forwarded to the dispatcher.

    The cog holds no playback state: sessions live in the bot's registry,
    queues in the Lavalink provider.
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self._default_tree_error = bot.tree.on_error
        bot.tree.on_error = self.on_tree_error
        bot.provider.error_reporter = self.report_track_error

    async def cog_unload(self) -> None:
        self.bot.tree.on_error = self._default_tree_error
        self.bot.provider.error_reporter = None

    async def report_track_error(self, guild_id: int, title: str, error: str) -> None:
        """Post a track failure in the channel /play was last used in."""
        config = self.bot.config_manager
        queue = self.bot.provider.queues.get(guild_id)
        channel = queue.text_channel if queue is not None else None
        if channel is None or not config.is_enabled("track_error"):
            return
        text = config.msg("track_error", **render_fields({"title": title, "error": error}))
        try:
            await channel.send(text)
        except discord.HTTPException as e:
            logger.warning(f"[guild:{guild_id}] track error report failed: {e}")

    async def _run(self, interaction: discord.Interaction, command: Command) -> None:
        ctx = DiscordInteractionContext(interaction, self.bot.config_manager)
        try:
            await self.bot.dispatcher.dispatch(ctx, command)
        except discord.HTTPException as e:
            # Reply could not be delivered (interaction expired, message deleted)
            logger.warning(f"[guild:{ctx.guild_id}] reply to {ctx.user_name} failed: {e}")

    # =========================================================================
    # Slash commands
    # =========================================================================

    @app_commands.command(name="play", description="Play a song")
    @app_commands.describe(song_url="Name or link of the song to play")
    @app_commands.guild_only()
    async def play(self, interaction: discord.Interaction, song_url: str) -> None:
        query = song_url.strip()
        self.bot.provider.get_queue(interaction.guild_id).text_channel = interaction.channel
        command = Play(query) if query else decode_command(interaction.data)
        await self._run(interaction, command)

    @app_commands.command(name="skip", description="Skip the current song")
    @app_commands.guild_only()
    async def skip(self, interaction: discord.Interaction) -> None:
        await self._run(interaction, Skip())

    @app_commands.command(name="stop", description="Stop the music")
    @app_commands.guild_only()
    async def stop(self, interaction: discord.Interaction) -> None:
        await self._run(interaction, Stop())

    async def on_tree_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError) -> None:
        """Answer commands this bot does not know (stale registrations)."""
        if isinstance(error, (app_commands.CommandNotFound, app_commands.CommandSignatureMismatch)):
            await self._run(interaction, decode_command(interaction.data))
            return
        logger.opt(exception=error).error(f"[guild:{interaction.guild_id}] app command error")
        if not interaction.response.is_done():
            await interaction.response.send_message(
                self.bot.config_manager.msg("error_generic", error=str(error)), ephemeral=True
            )

    # =========================================================================
    # Lavalink / voice events
    # =========================================================================

    @commands.Cog.listener()
    async def on_track_end(self, event: mafic.TrackEndEvent) -> None:
        await self.bot.provider.handle_track_end(event)

    @commands.Cog.listener()
    async def on_track_exception(self, event: mafic.TrackExceptionEvent) -> None:
        """Playback errors (codec issues, blocked videos). on_track_end follows."""
        title = event.track.title if event.track else "unknown"
        logger.warning(f"track exception for '{title}': {event.exception}")
        error = getattr(event.exception, "message", None) or str(event.exception)
        await self.report_track_error(event.player.guild.id, title, error)

    @commands.Cog.listener()
    async def on_track_stuck(self, event: mafic.TrackStuckEvent) -> None:
        title = event.track.title if event.track else "unknown"
        logger.warning(f"track stuck for '{title}' (threshold: {event.threshold_ms}ms)")
        await self.report_track_error(event.player.guild.id, title, f"stuck for {event.threshold_ms}ms")

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """Tear the session down when the bot is kicked out of voice."""
        if self.bot.user is None or member.id != self.bot.user.id:
            return
        if before.channel and not after.channel:
            await self.bot.dispatcher.voice_lost(member.guild.id)


async def setup(bot: commands.Bot) -> None:
    """Load the Music cog."""
    await bot.add_cog(Music(bot))
