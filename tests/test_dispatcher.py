"""Tests for the command dispatcher (play/skip/stop and track-end handling)."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeChannel, FakeContext
from core.commands import Play, Skip, Stop, Unknown
from core.dispatcher import CommandDispatcher
from core.errors import PlaybackError, ResolutionError
from core.session import SessionPhase


GUILD = 1


class TestPlay:
    async def test_off_voice_without_session_creates_nothing(self, dispatcher, registry, provider) -> None:
        ctx = FakeContext(GUILD, voice_channel=None)

        reply = await dispatcher.dispatch(ctx, Play("song"))

        assert reply.key == "not_in_vc"
        assert reply.ephemeral is True
        assert ctx.replies == [reply]
        assert GUILD not in registry
        assert provider.calls == []

    async def test_play_connects_and_enqueues(self, dispatcher, registry, provider, lounge) -> None:
        ctx = FakeContext(GUILD, voice_channel=lounge)

        reply = await dispatcher.dispatch(ctx, Play("song a"))

        assert reply.key == "enqueued"
        assert reply.fields == {"title": "Song A"}
        session = registry.get(GUILD)
        assert session.is_playing is True
        assert session.phase is SessionPhase.PLAYING
        assert session.voice_channel == lounge
        assert session.connection is provider.connections[0]
        assert session.queue is provider.queue
        assert session.subscription is not None
        assert provider.calls == [("connect", 10), ("play", "song a"), ("subscribe", None)]

    async def test_acknowledges_before_provider_work(self, dispatcher, lounge) -> None:
        ctx = FakeContext(GUILD, voice_channel=lounge)

        await dispatcher.dispatch(ctx, Play("song"))

        assert ctx.acknowledgements == 1

    async def test_second_play_reuses_connection_and_subscription(self, dispatcher, registry, provider, lounge) -> None:
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))
        subscription = registry.get(GUILD).subscription

        reply = await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge, user_name="bob"), Play("b"))

        assert reply.key == "enqueued"
        assert len(provider.connections) == 1
        assert registry.get(GUILD).subscription is subscription
        assert provider.calls.count(("subscribe", None)) == 1

    async def test_off_voice_user_can_add_to_playing_session(self, dispatcher, registry, provider, lounge) -> None:
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))

        reply = await dispatcher.dispatch(FakeContext(GUILD, voice_channel=None), Play("b"))

        assert reply.key == "enqueued"
        assert list(provider.queue.tracks) == ["a", "b"]

    async def test_recording_stopped_before_provider_play(self, dispatcher, registry, calls, lounge) -> None:
        session = registry.get_or_create(GUILD)
        session.is_recording = True

        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("song"))

        names = [name for name, _ in calls]
        assert names.index("stop_recording") < names.index("play")
        assert session.is_recording is False

    async def test_recording_flag_cleared_without_recorder(self, registry, provider, lounge) -> None:
        dispatcher = CommandDispatcher(registry, provider)
        registry.get_or_create(GUILD).is_recording = True

        reply = await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("song"))

        assert reply.key == "enqueued"
        assert registry.get(GUILD).is_recording is False

    async def test_channel_switch_tears_down_old_connection_first(self, registry, provider, lounge, stage) -> None:
        dispatcher = CommandDispatcher(registry, provider, auto_disconnect=False)
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))
        await provider.end_track()  # idle in lounge, still connected
        provider.calls.clear()

        reply = await dispatcher.dispatch(FakeContext(GUILD, voice_channel=stage), Play("b"))

        assert reply.key == "enqueued"
        assert provider.calls[:2] == [("disconnect", 10), ("connect", 20)]
        assert [c.channel.id for c in provider.open_connections] == [20]
        assert registry.get(GUILD).voice_channel == stage

    async def test_resolution_error_reply_and_cleanup(self, dispatcher, registry, provider, lounge) -> None:
        provider.fail_play = ResolutionError("nothing found")

        reply = await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("zzz"))

        assert reply.key == "song_not_found"
        assert reply.ephemeral is True
        session = registry.get(GUILD)
        assert session.connection is None
        assert session.is_playing is False
        assert provider.open_connections == []

    async def test_play_error_keeps_existing_connection(self, dispatcher, registry, provider, lounge) -> None:
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))
        provider.fail_play = PlaybackError("load failed")

        reply = await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("b"))

        assert reply.key == "track_play_error"
        session = registry.get(GUILD)
        assert session.connected
        assert session.is_playing is True

    async def test_connect_failure_leaves_session_unbound(self, dispatcher, registry, provider, lounge) -> None:
        provider.fail_connect = PlaybackError("cannot join")

        reply = await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))

        assert reply.key == "track_play_error"
        session = registry.get(GUILD)
        assert session.connection is None
        assert session.phase is SessionPhase.UNBOUND

    async def test_unexpected_error_answers_generic(self, dispatcher, provider, lounge) -> None:
        provider.fail_play = RuntimeError("boom")

        reply = await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))

        assert reply.key == "error_generic"
        assert reply.fields == {"error": "boom"}


class TestSkip:
    async def test_skip_with_queue_left_keeps_playing(self, dispatcher, registry, provider, lounge) -> None:
        ctx = FakeContext(GUILD, voice_channel=lounge)
        await dispatcher.dispatch(ctx, Play("a"))
        await dispatcher.dispatch(ctx, Play("b"))

        reply = await dispatcher.dispatch(ctx, Skip())

        assert reply.key == "skipped"
        session = registry.get(GUILD)
        assert session.is_playing is True
        assert session.phase is SessionPhase.PLAYING
        assert session.connected
        assert list(provider.queue.tracks) == ["b"]

    async def test_skip_last_track_stops_and_disconnects(self, dispatcher, registry, provider, lounge) -> None:
        ctx = FakeContext(GUILD, voice_channel=lounge)
        await dispatcher.dispatch(ctx, Play("a"))

        reply = await dispatcher.dispatch(ctx, Skip())

        assert reply.key == "skip_last"
        session = registry.get(GUILD)
        assert session.is_playing is False
        assert session.connection is None
        assert session.phase is SessionPhase.IDLE
        assert provider.open_connections == []
        assert ("stop", None) in provider.calls

    async def test_skip_without_session(self, dispatcher, registry) -> None:
        reply = await dispatcher.dispatch(FakeContext(GUILD), Skip())

        assert reply.key == "not_connected"
        assert GUILD not in registry

    async def test_skip_when_nothing_playing(self, registry, provider, lounge) -> None:
        dispatcher = CommandDispatcher(registry, provider, auto_disconnect=False)
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))
        await provider.end_track()

        reply = await dispatcher.dispatch(FakeContext(GUILD), Skip())

        assert reply.key == "nothing_playing"


class TestStop:
    async def test_stop_disconnects_and_resets(self, dispatcher, registry, provider, lounge) -> None:
        ctx = FakeContext(GUILD, voice_channel=lounge)
        await dispatcher.dispatch(ctx, Play("a"))
        await dispatcher.dispatch(ctx, Play("b"))

        reply = await dispatcher.dispatch(ctx, Stop())

        assert reply.key == "stopped"
        session = registry.get(GUILD)
        assert session.connection is None
        assert session.voice_channel is None
        assert session.is_playing is False
        assert session.subscription is None
        assert session.phase is SessionPhase.IDLE
        assert len(provider.queue.tracks) == 0
        assert provider.queue.subscriptions == []

    async def test_stop_twice_reports_no_session(self, dispatcher, lounge) -> None:
        ctx = FakeContext(GUILD, voice_channel=lounge)
        await dispatcher.dispatch(ctx, Play("a"))

        first = await dispatcher.dispatch(ctx, Stop())
        second = await dispatcher.dispatch(ctx, Stop())

        assert first.key == "stopped"
        assert second.key == "not_connected"
        assert second.ephemeral is True

    async def test_stop_cancels_subscription_before_provider_stop(self, dispatcher, registry, provider, lounge) -> None:
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))
        subscription = registry.get(GUILD).subscription

        await dispatcher.dispatch(FakeContext(GUILD), Stop())

        assert subscription.cancelled is True


class TestTrackEnd:
    async def test_more_tracks_keep_session_playing(self, dispatcher, registry, provider, lounge) -> None:
        ctx = FakeContext(GUILD, voice_channel=lounge)
        await dispatcher.dispatch(ctx, Play("a"))
        await dispatcher.dispatch(ctx, Play("b"))

        await provider.end_track()

        session = registry.get(GUILD)
        assert session.is_playing is True
        assert session.connected

    async def test_queue_end_auto_disconnects(self, dispatcher, registry, provider, lounge) -> None:
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))

        await provider.end_track()

        session = registry.get(GUILD)
        assert session.is_playing is False
        assert session.connection is None
        assert provider.open_connections == []

    async def test_queue_end_without_auto_disconnect_stays_connected(self, registry, provider, lounge) -> None:
        dispatcher = CommandDispatcher(registry, provider, auto_disconnect=False)
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))

        await provider.end_track()

        session = registry.get(GUILD)
        assert session.is_playing is False
        assert session.connected
        assert session.phase is SessionPhase.IDLE

    async def test_queue_end_during_pending_play_keeps_new_track(self, dispatcher, registry, provider, lounge) -> None:
        ctx = FakeContext(GUILD, voice_channel=lounge)
        await dispatcher.dispatch(ctx, Play("a"))
        provider.stall_play = asyncio.Event()

        pending = asyncio.create_task(dispatcher.dispatch(ctx, Play("b")))
        for _ in range(3):
            await asyncio.sleep(0)
        # "a" finishes with nothing queued while "b" is still loading under the lock
        ended = asyncio.create_task(provider.end_track())
        for _ in range(3):
            await asyncio.sleep(0)
        provider.stall_play.set()
        await asyncio.gather(pending, ended)

        session = registry.get(GUILD)
        assert list(provider.queue.tracks) == ["b"]
        assert session.is_playing is True
        assert session.phase is SessionPhase.PLAYING
        assert provider.open_connections == [session.connection]
        assert ("disconnect", lounge.id) not in provider.calls

    async def test_stale_subscription_is_ignored(self, dispatcher, registry, provider, lounge) -> None:
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))
        session = registry.get(GUILD)
        stale = session.subscription
        session.subscription = None
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("b"))

        await stale.callback(stale, False)

        assert session.is_playing is True
        assert session.connected

    async def test_cancelled_subscription_never_fires(self, dispatcher, registry, provider, lounge) -> None:
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))
        subscription = registry.get(GUILD).subscription
        subscription.cancel()
        subscription.cancel()

        await subscription.notify(False)

        assert registry.get(GUILD).is_playing is True


class TestBoundary:
    async def test_unknown_command(self, dispatcher, provider) -> None:
        ctx = FakeContext(GUILD)

        reply = await dispatcher.dispatch(ctx, Unknown("dance"))

        assert reply.key == "unknown_command"
        assert reply.fields == {"command": "dance"}
        assert ctx.replies == [reply]
        assert provider.calls == []

    async def test_exactly_one_reply_per_command(self, dispatcher, lounge) -> None:
        ctx = FakeContext(GUILD, voice_channel=lounge)

        for command in (Play("a"), Skip(), Stop(), Stop()):
            await dispatcher.dispatch(ctx, command)

        assert len(ctx.replies) == 4

    async def test_guild_isolation(self, dispatcher, registry, lounge) -> None:
        await dispatcher.dispatch(FakeContext(1, voice_channel=lounge), Play("a"))

        reply = await dispatcher.dispatch(FakeContext(2), Stop())

        assert reply.key == "not_connected"
        assert registry.get(1).is_playing is True

    async def test_concurrent_plays_share_one_connection(self, dispatcher, registry, provider, lounge) -> None:
        contexts = [FakeContext(GUILD, voice_channel=lounge, user_name=f"user{i}") for i in range(5)]

        replies = await asyncio.gather(*(dispatcher.dispatch(ctx, Play(f"s{i}")) for i, ctx in enumerate(contexts)))

        assert all(r.key == "enqueued" for r in replies)
        assert len(provider.connections) == 1
        assert len(registry) == 1

    async def test_voice_lost_resets_session(self, dispatcher, registry, provider, lounge) -> None:
        await dispatcher.dispatch(FakeContext(GUILD, voice_channel=lounge), Play("a"))

        await dispatcher.voice_lost(GUILD)

        session = registry.get(GUILD)
        assert session.connection is None
        assert session.phase is SessionPhase.IDLE

    async def test_shutdown_disconnects_everything(self, dispatcher, registry, provider) -> None:
        await dispatcher.dispatch(FakeContext(1, voice_channel=FakeChannel(10)), Play("a"))

        await dispatcher.shutdown()

        assert provider.open_connections == []
        assert registry.get(1).connection is None

    async def test_unhandled_variant_is_generic_error(self, dispatcher) -> None:
        reply = await dispatcher.dispatch(FakeContext(GUILD), object())

        assert reply.key == "error_generic"


@pytest.mark.parametrize("command", [Skip(), Stop()])
async def test_skip_stop_do_not_acknowledge_when_idle(dispatcher, command) -> None:
    ctx = FakeContext(GUILD)

    await dispatcher.dispatch(ctx, command)

    assert ctx.acknowledgements == 0
