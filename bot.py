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

"""
Cadence Music Bot
========================================================

A minimal Discord voice bot: /play, /skip and /stop over Lavalink.
Run with `python bot.py`; configuration comes from .env and config/.
"""

import asyncio
import os
import signal
from pathlib import Path

import discord
import mafic
from discord.ext import commands
from dotenv import load_dotenv
from loguru import logger

from core.dispatcher import CommandDispatcher
from core.errors import RegistrationError
from core.registry import SessionRegistry
from core.sync import sync_commands
from systems.command_registry import GuildCommandRegistry
from systems.lavalink import LavalinkProvider
from utils.config import ConfigManager, Credentials, validate_configuration
from utils.log import setup_logging
from utils.search import QueryResolver

CONFIG_PATH = Path(os.getenv("CONFIG_PATH") or Path(__file__).parent / "config")

# =============================================================================
# ASYNCIO EXCEPTION HANDLER
# =============================================================================

def custom_exception_handler(loop, context):
    """Suppress aiohttp's cosmetic shutdown warnings, pass everything else on."""
    message = context.get("message", "")
    if message in ("Unclosed client session", "Unclosed connector"):
        return
    loop.default_exception_handler(context)


# =============================================================================
# BOT
# =============================================================================

class Cadence(commands.Bot):
    """Discord client wiring config, Lavalink and the command dispatcher.

    Attributes:
        config_manager: Loaded settings and messages
        registry: Per-guild session registry (owned here, never global)
        provider: Lavalink media session provider
        dispatcher: Command dispatcher used by the Music cog
    """

    def __init__(self, config_manager: ConfigManager, credentials: Credentials) -> None:
        intents = discord.Intents.default()
        intents.voice_states = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents, help_command=None)

        self.config_manager = config_manager
        self.credentials = credentials
        self.pool = mafic.NodePool(self)
        self.resolver = QueryResolver(
            credentials.spotify_client_id,
            credentials.spotify_client_secret,
            credentials.youtube_api_key,
        )
        self.registry = SessionRegistry()
        self.provider = LavalinkProvider(
            self.pool,
            self.resolver,
            search_type=config_manager.get("search_type"),
            default_volume=config_manager.get("default_volume"),
        )
        self.dispatcher = CommandDispatcher(
            self.registry,
            self.provider,
            auto_disconnect=config_manager.get("auto_disconnect"),
        )
        self._commands_synced = False
        self._is_shutting_down = False

    async def setup_hook(self) -> None:
        """Connect to Lavalink and load cogs before the gateway connects."""
        creds = self.credentials
        try:
            await self.pool.create_node(
                host=creds.lavalink_host,
                port=creds.lavalink_port,
                label="MAIN",
                password=creds.lavalink_password,
            )
        except Exception:
            # Commands answer with errors until a node is up; mafic keeps retrying
            logger.opt(exception=True).error(
                f"cannot connect to lavalink at {creds.lavalink_host}:{creds.lavalink_port}"
            )
        else:
            logger.log("NOTICE", f"lavalink node connected ({creds.lavalink_host}:{creds.lavalink_port})")

        await self.load_extension("cogs.music")

    async def on_ready(self) -> None:
        """Converge guild commands once, on the first ready."""
        if self._commands_synced:
            logger.info("gateway reconnected")
            return
        self._commands_synced = True

        logger.log("NOTICE", f"logged in as {self.user}")

        guild = self._target_guild()
        if guild is None:
            logger.error("bot is not in any guild (or GUILD_ID is wrong), cannot register commands")
            await self.close()
            return

        registry = GuildCommandRegistry(self, guild)
        try:
            await sync_commands(
                registry,
                stale_threshold=self.config_manager.get("stale_command_threshold"),
            )
        except RegistrationError as e:
            logger.error(f"{e} - shutting down")
            await self.close()
            return

        logger.log("NOTICE", f"ready in {guild.name}")

    def _target_guild(self) -> discord.Guild | None:
        if self.credentials.guild_id is not None:
            return self.get_guild(self.credentials.guild_id)
        return self.guilds[0] if self.guilds else None

    async def close(self) -> None:
        """Graceful shutdown: leave voice everywhere, close HTTP sessions."""
        if self._is_shutting_down:
            return
        self._is_shutting_down = True
        logger.log("NOTICE", "shutting down")

        try:
            await self.dispatcher.shutdown()
        except Exception:
            logger.opt(exception=True).warning("session teardown during shutdown failed")
        await self.resolver.close()
        await super().close()


# =============================================================================
# ENTRY POINT
# =============================================================================

async def main() -> None:
    load_dotenv()

    # Preliminary sink so config problems are visible
    setup_logging(os.getenv("LOG_LEVEL", "verbose").lower())
    credentials = validate_configuration()

    config_manager = ConfigManager(CONFIG_PATH)
    await config_manager.load()
    setup_logging(config_manager.setting("logging.level"))

    loop = asyncio.get_running_loop()
    loop.set_exception_handler(custom_exception_handler)

    bot = Cadence(config_manager, credentials)

    def request_shutdown() -> None:
        logger.info("shutdown signal received")
        loop.create_task(bot.close())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt still ends asyncio.run

    async with bot:
        await bot.start(credentials.discord_token)


if __name__ == "__main__":
    asyncio.run(main())
