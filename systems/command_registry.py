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

"""Guild application commands as a CommandRegistry."""

import discord
from discord.ext import commands

from core.commands import CommandSpec
from core.errors import RegistrationError
from core.interfaces import CommandRegistry


class GuildCommandRegistry(CommandRegistry):
    """Registers commands on one guild through the Discord HTTP API.

    Guild commands show up immediately, unlike global ones.
    """

    def __init__(self, bot: commands.Bot, guild: discord.abc.Snowflake) -> None:
        self.bot = bot
        self.guild = guild

    @property
    def application_id(self) -> int:
        if self.bot.application_id is None:
            raise RegistrationError("application id unknown, bot not logged in")
        return self.bot.application_id

    async def list_registered(self) -> set[str]:
        registered = await self.bot.tree.fetch_commands(guild=self.guild)
        return {command.name for command in registered}

    async def clear_all(self) -> None:
        await self.bot.http.bulk_upsert_guild_commands(self.application_id, self.guild.id, [])

    async def register(self, spec: CommandSpec) -> None:
        try:
            await self.bot.http.upsert_guild_command(self.application_id, self.guild.id, spec.to_payload())
        except discord.HTTPException as e:
            raise RegistrationError(f"discord rejected /{spec.name}: {e}") from e
