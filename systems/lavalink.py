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

"""Lavalink media session provider (via Mafic).

Lavalink streams single tracks; the queue lives here. The provider starts
the next queued track on every track end and then tells subscribers
whether anything followed.
"""

import asyncio
from collections import deque
from typing import Awaitable, Callable

import aiohttp
import discord
import mafic
from loguru import logger

from core.errors import MusicUnavailableError, PlaybackError, ResolutionError
from core.interfaces import MediaSessionProvider, PlayResult, Subscription, TrackEndCallback
from utils.search import QueryResolver

# Errors Lavalink/Mafic raise while loading or starting a track
PLAYBACK_ERRORS = (mafic.MaficException, aiohttp.ClientError)

# Called with (guild_id, track title, error text) when a track fails to play
ErrorReporter = Callable[[int, str, str], Awaitable[None]]


class TrackQueue:
    """Queue state for one guild: current track, upcoming tracks, listeners."""

    def __init__(self, guild_id: int) -> None:
        self.guild_id = guild_id
        self.player: mafic.Player | None = None
        self.current: mafic.Track | None = None
        self.upcoming: deque[mafic.Track] = deque()
        self.subscriptions: list[Subscription] = []
        # Where /play was last used; track errors are reported there
        self.text_channel: discord.abc.Messageable | None = None

    def clear(self) -> None:
        self.current = None
        self.upcoming.clear()

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)

    def __len__(self) -> int:
        return len(self.upcoming)


class LavalinkProvider(MediaSessionProvider):
    """MediaSessionProvider backed by a Mafic node pool.

    Args:
        pool: Mafic node pool (nodes created by the bot in setup_hook)
        resolver: Query resolver for Spotify links and the YouTube fallback
        search_type: Lavalink search prefix for plain text ("ytsearch", ...)
        default_volume: Volume applied right after joining voice (0-100)
        error_reporter: Optional coroutine told about tracks that fail to play
    """

    def __init__(
        self,
        pool: mafic.NodePool,
        resolver: QueryResolver,
        search_type: str = "ytsearch",
        default_volume: int = 50,
        error_reporter: ErrorReporter | None = None,
    ) -> None:
        self.pool = pool
        self.resolver = resolver
        self.search_type = search_type
        self.default_volume = default_volume
        self.error_reporter = error_reporter
        self.queues: dict[int, TrackQueue] = {}

    def get_queue(self, guild_id: int) -> TrackQueue:
        """Get or create queue for guild."""
        if guild_id not in self.queues:
            self.queues[guild_id] = TrackQueue(guild_id)
        return self.queues[guild_id]

    # =========================================================================
    # MediaSessionProvider
    # =========================================================================

    async def connect(self, channel: discord.VoiceChannel) -> mafic.Player:
        if not self.pool.nodes:
            raise MusicUnavailableError("no lavalink node available")

        queue = self.get_queue(channel.guild.id)
        existing = channel.guild.voice_client
        if isinstance(existing, mafic.Player) and existing.connected:
            if existing.channel == channel:
                queue.player = existing
                return existing
            await existing.disconnect(force=True)

        try:
            player = await channel.connect(cls=mafic.Player, self_deaf=True)
        except (discord.ClientException, asyncio.TimeoutError) as e:
            raise PlaybackError(f"cannot join #{channel.name}: {e}") from e

        await player.set_volume(self.default_volume)
        queue.player = player
        logger.info(f"joined #{channel.name}")
        return player

    async def disconnect(self, connection: mafic.Player) -> None:
        queue = self.queues.get(connection.guild.id)
        if queue is not None:
            queue.clear()
            queue.player = None
        if connection.connected:
            await connection.disconnect(force=True)
            logger.info("left voice")

    async def play(self, channel: discord.VoiceChannel, query: str) -> PlayResult:
        queue = self.get_queue(channel.guild.id)
        player = queue.player
        if player is None or not player.connected:
            raise PlaybackError("not connected to voice")

        tracks, title = await self._load(player, query)

        # Checked after loading: the previous track may have ended meanwhile
        if queue.current is None:
            first, rest = tracks[0], tracks[1:]
            try:
                await player.play(first)
            except PLAYBACK_ERRORS as e:
                raise PlaybackError(f"cannot start {first.title!r}: {e}") from e
            queue.current = first
            queue.upcoming.extend(rest)
        else:
            queue.upcoming.extend(tracks)
            logger.debug(f"queued {len(tracks)} track(s), {len(queue)} upcoming")

        return PlayResult(track_title=title, queue=queue, connection=player)

    async def has_next(self, queue: TrackQueue) -> bool:
        return bool(queue.upcoming)

    async def is_active(self, queue: TrackQueue) -> bool:
        return queue.current is not None

    async def skip(self, queue: TrackQueue) -> None:
        if not queue.upcoming or queue.player is None:
            return
        next_track = queue.upcoming.popleft()
        try:
            # Replacing the track fires TrackEndEvent(REPLACED), which is ignored
            await queue.player.play(next_track)
        except PLAYBACK_ERRORS as e:
            raise PlaybackError(f"cannot start {next_track.title!r}: {e}") from e
        queue.current = next_track

    async def stop(self, queue: TrackQueue) -> None:
        queue.clear()
        if queue.player is not None and queue.player.connected:
            await queue.player.stop()

    def on_track_end(self, queue: TrackQueue, callback: TrackEndCallback) -> Subscription:
        subscription = Subscription(callback, on_cancel=queue._unsubscribe)
        queue.subscriptions.append(subscription)
        return subscription

    # =========================================================================
    # Lavalink events (forwarded by the Music cog)
    # =========================================================================

    async def handle_track_end(self, event: mafic.TrackEndEvent) -> None:
        """Advance the queue, then notify subscribers."""
        # Note: mafic.EndReason values are lowercase ("replaced", not "REPLACED")
        if event.reason == mafic.EndReason.REPLACED:
            return

        queue = self.queues.get(event.player.guild.id)
        if queue is None:
            return

        has_next = False
        while queue.upcoming and event.player.connected:
            next_track = queue.upcoming.popleft()
            try:
                await event.player.play(next_track)
            except PLAYBACK_ERRORS as e:
                logger.error(f"playback failed for {next_track.title!r}: {e}")
                await self.report_error(queue.guild_id, next_track.title, str(e))
                continue
            queue.current = next_track
            has_next = True
            break

        if not has_next:
            queue.current = None

        for subscription in list(queue.subscriptions):
            await subscription.notify(has_next)

    async def report_error(self, guild_id: int, title: str, error: str) -> None:
        """Pass a track failure on to the error reporter, if one is set."""
        if self.error_reporter is not None:
            await self.error_reporter(guild_id, title, error)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load(self, player: mafic.Player, query: str) -> tuple[list[mafic.Track], str]:
        """Resolve and load query. Returns (tracks, display title)."""
        search = await self.resolver.resolve(query)
        tracks, title = await self._fetch(player, search)

        if not tracks:
            fallback = await self.resolver.youtube_fallback(search)
            if fallback:
                logger.debug(f"lavalink found nothing for {search[:50]!r}, trying {fallback}")
                tracks, title = await self._fetch(player, fallback)

        if not tracks:
            raise ResolutionError(f"nothing found for {query[:50]!r}")
        return tracks, title

    async def _fetch(self, player: mafic.Player, search: str) -> tuple[list[mafic.Track], str]:
        try:
            result = await player.fetch_tracks(search, search_type=self.search_type)
        except PLAYBACK_ERRORS as e:
            raise PlaybackError(f"lavalink failed to load {search[:50]!r}: {e}") from e

        if isinstance(result, mafic.Playlist):
            return list(result.tracks), result.name
        if result:
            # Search results: first hit only
            return [result[0]], result[0].title
        return [], ""
