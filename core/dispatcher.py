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

"""Command dispatcher - maps decoded commands onto session transitions.

State machine per session:

    UNBOUND/IDLE --play--> CONNECTING --> PLAYING
    PLAYING --skip (queue left)--> SKIPPING --> PLAYING
    PLAYING --skip (queue empty) / stop / queue end--> IDLE (disconnected)

Every command runs under the guild's lock from the registry. Provider calls
are the only suspension points inside the lock.
"""

import functools

from loguru import logger

from core.commands import Command, Play, Skip, Stop, Unknown
from core.errors import CadenceError, NoActiveSessionError, NoChannelError, NothingPlayingError
from core.interfaces import InteractionContext, MediaSessionProvider, Recorder, Reply, Subscription
from core.registry import SessionRegistry
from core.session import Session, SessionPhase


class CommandDispatcher:
    """Runs play/skip/stop against the provider and keeps sessions in sync.

    Args:
        registry: Session registry owned by the running bot
        provider: Media session provider (Lavalink in production)
        recorder: Optional recorder halted before new playback starts
        auto_disconnect: Leave voice when the queue runs out
    """

    def __init__(
        self,
        registry: SessionRegistry,
        provider: MediaSessionProvider,
        recorder: Recorder | None = None,
        auto_disconnect: bool = True,
    ) -> None:
        self.registry = registry
        self.provider = provider
        self.recorder = recorder
        self.auto_disconnect = auto_disconnect

    # =========================================================================
    # Boundary
    # =========================================================================

    async def dispatch(self, ctx: InteractionContext, command: Command) -> Reply:
        """Run command and answer the interaction exactly once.

        Errors never escape: user-facing ones become their message key,
        anything else is logged and answered with the generic error.
        """
        try:
            if isinstance(command, Play):
                reply = await self.play(ctx, command.query)
            elif isinstance(command, Skip):
                reply = await self.skip(ctx)
            elif isinstance(command, Stop):
                reply = await self.stop(ctx)
            elif isinstance(command, Unknown):
                logger.debug(f"unknown command {command.name!r} from {ctx.user_name}")
                reply = Reply("unknown_command", {"command": command.name}, ephemeral=True)
            else:
                raise TypeError(f"unhandled command variant: {command!r}")
        except CadenceError as e:
            logger.info(f"[guild:{ctx.guild_id}] {type(command).__name__.lower()} by {ctx.user_name} refused: {e}")
            reply = Reply(e.key, {"error": str(e), **e.fields}, ephemeral=True)
        except Exception as e:
            logger.opt(exception=True).error(f"[guild:{ctx.guild_id}] {type(command).__name__.lower()} failed")
            reply = Reply("error_generic", {"error": str(e)}, ephemeral=True)

        await ctx.send(reply)
        return reply

    # =========================================================================
    # Commands
    # =========================================================================

    async def play(self, ctx: InteractionContext, query: str) -> Reply:
        """Resolve channel, (re)connect if needed, hand query to the provider."""
        # Acknowledge before anything can fail or wait on the lock
        if not ctx.acknowledged:
            await ctx.acknowledge()

        guild_id = ctx.guild_id
        async with self.registry.lock(guild_id):
            channel = self._resolve_channel(self.registry.get(guild_id), ctx)
            session = self.registry.get_or_create(guild_id)
            previous_phase = session.phase

            # Never hold two connections for one session
            if session.connected and not session.is_bound_to(channel):
                logger.info(f"[guild:{guild_id}] moving from #{session.voice_channel.name} to #{channel.name}")
                await self._teardown(session)

            if session.is_recording:
                await self._stop_recording(session)

            opened = False
            if not session.connected:
                session.phase = SessionPhase.CONNECTING
                try:
                    connection = await self.provider.connect(channel)
                except Exception:
                    session.phase = previous_phase
                    raise
                session.bind(channel, connection)
                opened = True

            try:
                result = await self.provider.play(channel, query)
            except Exception:
                if opened:
                    await self._teardown(session)
                    session.phase = previous_phase
                raise

            session.queue = result.queue
            if result.connection is not None:
                session.connection = result.connection
            session.is_playing = True
            session.phase = SessionPhase.PLAYING
            if session.subscription is None:
                session.subscription = self.provider.on_track_end(
                    result.queue, functools.partial(self._track_ended, guild_id)
                )

        logger.info(f"[guild:{guild_id}] {ctx.user_name} enqueued \"{result.track_title}\"")
        return Reply("enqueued", {"title": result.track_title})

    async def skip(self, ctx: InteractionContext) -> Reply:
        """Advance the queue, or stop and leave when nothing follows."""
        guild_id = ctx.guild_id
        lock = self.registry.lock(guild_id)
        if lock.locked() and not ctx.acknowledged:
            await ctx.acknowledge()  # a play is still resolving

        async with lock:
            session = self._require_playing(guild_id)

            if not await self.provider.has_next(session.queue):
                session.cancel_subscription()
                await self.provider.stop(session.queue)
                await self._teardown(session)
                session.reset()
                logger.info(f"[guild:{guild_id}] skip by {ctx.user_name} emptied the queue, stopped")
                return Reply("skip_last")

            session.phase = SessionPhase.SKIPPING
            try:
                await self.provider.skip(session.queue)
            finally:
                session.phase = SessionPhase.PLAYING

        logger.info(f"[guild:{guild_id}] skipped by {ctx.user_name}")
        return Reply("skipped")

    async def stop(self, ctx: InteractionContext) -> Reply:
        """Clear the queue, stop playback and disconnect."""
        guild_id = ctx.guild_id
        lock = self.registry.lock(guild_id)
        if lock.locked() and not ctx.acknowledged:
            await ctx.acknowledge()

        async with lock:
            session = self._require_playing(guild_id)
            # Cancel first so the stop's own track end is not delivered
            session.cancel_subscription()
            await self.provider.stop(session.queue)
            await self._teardown(session)
            session.reset()

        logger.info(f"[guild:{guild_id}] stopped by {ctx.user_name}")
        return Reply("stopped")

    # =========================================================================
    # Provider / platform notifications
    # =========================================================================

    async def _track_ended(self, guild_id: int, subscription: Subscription, has_next: bool) -> None:
        """Track-end subscription callback."""
        async with self.registry.lock(guild_id):
            session = self.registry.get(guild_id)
            if session is None or subscription.cancelled or session.subscription is not subscription:
                logger.debug(f"[guild:{guild_id}] stale track end ignored")
                return

            if has_next:
                session.is_playing = True
                session.phase = SessionPhase.PLAYING
                return

            # A play holding the lock may have started a new track since
            if session.queue is not None and await self.provider.is_active(session.queue):
                logger.debug(f"[guild:{guild_id}] queue end superseded by a new track")
                session.is_playing = True
                session.phase = SessionPhase.PLAYING
                return

            logger.info(f"[guild:{guild_id}] queue finished")
            session.is_playing = False
            if self.auto_disconnect:
                await self._teardown(session)
                session.reset()
            else:
                session.phase = SessionPhase.IDLE

    async def voice_lost(self, guild_id: int) -> None:
        """Bot was disconnected from voice by someone else."""
        async with self.registry.lock(guild_id):
            session = self.registry.get(guild_id)
            if session is None or not session.connected:
                return
            logger.info(f"[guild:{guild_id}] disconnected from voice externally")
            if session.queue is not None:
                session.cancel_subscription()
                await self.provider.stop(session.queue)
            await self._teardown(session)
            session.reset()

    async def shutdown(self) -> None:
        """Tear down every connected session (bot shutdown)."""
        for session in self.registry.sessions():
            async with self.registry.lock(session.guild_id):
                if session.connected:
                    await self._teardown(session)
                    session.reset()

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _resolve_channel(session: Session | None, ctx: InteractionContext):
        """Pick the voice channel a play targets.

        While playing, the bound channel wins so anyone can add to the queue.
        Otherwise the requester's channel wins, falling back to the binding.
        """
        if session is not None and session.is_playing and session.voice_channel is not None:
            return session.voice_channel
        if ctx.voice_channel is not None:
            return ctx.voice_channel
        if session is not None and session.voice_channel is not None:
            return session.voice_channel
        raise NoChannelError("requester is not in a voice channel")

    def _require_playing(self, guild_id: int) -> Session:
        session = self.registry.get(guild_id)
        if session is None or not session.connected:
            raise NoActiveSessionError("no active voice connection")
        if not session.is_playing:
            raise NothingPlayingError("no track is currently playing")
        return session

    async def _stop_recording(self, session: Session) -> None:
        if self.recorder is not None:
            await self.recorder.stop(session.guild_id)
            logger.debug(f"[guild:{session.guild_id}] recording stopped for playback")
        session.is_recording = False

    async def _teardown(self, session: Session) -> None:
        """Disconnect and unbind. Disconnect failures are logged, not raised."""
        connection = session.connection
        session.cancel_subscription()
        if connection is not None:
            try:
                await self.provider.disconnect(connection)
            except Exception:
                logger.opt(exception=True).warning(f"[guild:{session.guild_id}] disconnect failed (continuing)")
        session.unbind()
