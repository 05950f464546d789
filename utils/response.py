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

"""Response utilities for Discord interactions.

DiscordInteractionContext adapts a discord.Interaction to the dispatcher's
InteractionContext: defer on acknowledge, render replies from messages.yaml
on send.
"""

import asyncio

import discord

from core.interfaces import InteractionContext, Reply
from utils.config import ConfigManager

# Fire-and-forget cleanup tasks, kept referenced until done
_cleanup_tasks: set[asyncio.Task] = set()

# Discord message content limit is 2000; leave room for the template
TITLE_MAX = 200


def escape_markdown(text: str) -> str:
    """Escape underscores and asterisks so track titles render literally."""
    return text.replace("\\", "\\\\").replace("_", "\\_").replace("*", "\\*")


def truncate_for_display(text: str, max_length: int) -> str:
    """Truncate text with ellipsis.

    Call BEFORE escape_markdown(); escaping adds characters.
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def render_fields(fields: dict) -> dict:
    """Make reply fields safe to drop into a markdown template."""
    rendered = {}
    for key, value in fields.items():
        if isinstance(value, str):
            value = escape_markdown(truncate_for_display(value, TITLE_MAX))
        rendered[key] = value
    return rendered


class DiscordInteractionContext(InteractionContext):
    """InteractionContext over a slash-command interaction.

    Args:
        interaction: The Discord interaction being answered
        config_manager: Source of message templates and ui.brief_auto_delete
    """

    def __init__(self, interaction: discord.Interaction, config_manager: ConfigManager) -> None:
        self.interaction = interaction
        self.config_manager = config_manager
        self.guild_id = interaction.guild_id
        self.user_name = str(interaction.user)
        voice = getattr(interaction.user, "voice", None)
        self.voice_channel = voice.channel if voice else None

    @property
    def acknowledged(self) -> bool:
        return self.interaction.response.is_done()

    async def acknowledge(self) -> None:
        if not self.interaction.response.is_done():
            await self.interaction.response.defer(thinking=True)

    async def _delete_response(self, delay: float) -> None:
        """Delete the original response after delay (followup path)."""
        try:
            await asyncio.sleep(delay)
            await self.interaction.delete_original_response()
        except (asyncio.CancelledError, discord.HTTPException):
            pass  # shutdown or already gone

    async def send(self, reply: Reply) -> None:
        """Send reply if enabled in messages.yaml, otherwise acknowledge silently.

        Replies auto-delete after ui.brief_auto_delete seconds (0 disables).
        """
        if not self.config_manager.is_enabled(reply.key):
            if not self.interaction.response.is_done():
                await self.interaction.response.defer(ephemeral=True)
            try:
                await self.interaction.delete_original_response()
            except discord.NotFound:
                pass
            return

        text = self.config_manager.msg(reply.key, **render_fields(reply.fields))

        timeout = self.config_manager.setting("ui.brief_auto_delete", 10)
        delete_after = timeout if timeout > 0 else None

        if not self.interaction.response.is_done():
            await self.interaction.response.send_message(
                text, ephemeral=reply.ephemeral, delete_after=delete_after
            )
        else:
            await self.interaction.followup.send(text, ephemeral=reply.ephemeral)
            if delete_after:
                task = asyncio.create_task(self._delete_response(delete_after))
                _cleanup_tasks.add(task)
                task.add_done_callback(_cleanup_tasks.discard)
