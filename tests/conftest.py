"""Shared fixtures: in-memory fakes for the provider, registry and interaction.

Nothing here touches Discord or Lavalink; every fake records what was asked
of it so tests can check ordering.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field

import pytest

from core.commands import CommandSpec
from core.dispatcher import CommandDispatcher
from core.errors import RegistrationError
from core.interfaces import (
    CommandRegistry,
    InteractionContext,
    MediaSessionProvider,
    PlayResult,
    Recorder,
    Reply,
    Subscription,
)
from core.registry import SessionRegistry


# ---------------------------------------------------------------------------
# Platform fakes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FakeChannel:
    id: int
    name: str = "general"


class FakeContext(InteractionContext):
    def __init__(self, guild_id: int = 1, voice_channel: FakeChannel | None = None, user_name: str = "alice") -> None:
        self.guild_id = guild_id
        self.user_name = user_name
        self.voice_channel = voice_channel
        self.replies: list[Reply] = []
        self.acknowledgements = 0

    @property
    def acknowledged(self) -> bool:
        return self.acknowledgements > 0

    async def acknowledge(self) -> None:
        self.acknowledgements += 1

    async def send(self, reply: Reply) -> None:
        self.replies.append(reply)


@dataclass
class FakeConnection:
    channel: FakeChannel
    open: bool = True


@dataclass
class FakeQueue:
    tracks: deque = field(default_factory=deque)
    subscriptions: list = field(default_factory=list)


class FakeProvider(MediaSessionProvider):
    """Provider double. ``calls`` holds ("method", arg) tuples in call order."""

    def __init__(self, calls: list | None = None) -> None:
        self.calls = calls if calls is not None else []
        self.queue = FakeQueue()
        self.connections: list[FakeConnection] = []
        self.fail_play: Exception | None = None
        self.fail_connect: Exception | None = None
        self.stall_play: asyncio.Event | None = None

    @property
    def open_connections(self) -> list[FakeConnection]:
        return [c for c in self.connections if c.open]

    async def connect(self, channel):
        self.calls.append(("connect", channel.id))
        if self.fail_connect:
            raise self.fail_connect
        # At most one live connection per guild
        assert not self.open_connections, "connect while another connection is open"
        connection = FakeConnection(channel)
        self.connections.append(connection)
        return connection

    async def disconnect(self, connection) -> None:
        self.calls.append(("disconnect", connection.channel.id))
        connection.open = False

    async def play(self, channel, query: str) -> PlayResult:
        self.calls.append(("play", query))
        if self.fail_play:
            raise self.fail_play
        if self.stall_play is not None:
            await self.stall_play.wait()
        self.queue.tracks.append(query)
        return PlayResult(track_title=query.title(), queue=self.queue)

    async def has_next(self, queue) -> bool:
        return len(queue.tracks) > 1

    async def is_active(self, queue) -> bool:
        return bool(queue.tracks)

    async def skip(self, queue) -> None:
        self.calls.append(("skip", None))
        queue.tracks.popleft()

    async def stop(self, queue) -> None:
        self.calls.append(("stop", None))
        queue.tracks.clear()

    def on_track_end(self, queue, callback) -> Subscription:
        self.calls.append(("subscribe", None))
        subscription = Subscription(callback, on_cancel=queue.subscriptions.remove)
        queue.subscriptions.append(subscription)
        return subscription

    async def end_track(self) -> None:
        """Simulate Lavalink finishing the current track."""
        if self.queue.tracks:
            self.queue.tracks.popleft()
        has_next = bool(self.queue.tracks)
        for subscription in list(self.queue.subscriptions):
            await subscription.notify(has_next)


class FakeRecorder(Recorder):
    def __init__(self, calls: list) -> None:
        self.calls = calls

    async def stop(self, guild_id: int) -> None:
        self.calls.append(("stop_recording", guild_id))


class FakeCommandRegistry(CommandRegistry):
    def __init__(self, registered: set[str] | None = None) -> None:
        self.registered = set(registered or ())
        self.calls: list[str] = []
        self.reject: set[str] = set()

    async def list_registered(self) -> set[str]:
        self.calls.append("list")
        return set(self.registered)

    async def clear_all(self) -> None:
        self.calls.append("clear")
        self.registered.clear()

    async def register(self, spec: CommandSpec) -> None:
        self.calls.append(f"register:{spec.name}")
        if spec.name in self.reject:
            raise RegistrationError(f"rejected {spec.name}")
        self.registered.add(spec.name)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def calls() -> list:
    return []


@pytest.fixture()
def provider(calls: list) -> FakeProvider:
    return FakeProvider(calls)


@pytest.fixture()
def recorder(calls: list) -> FakeRecorder:
    return FakeRecorder(calls)


@pytest.fixture()
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture()
def dispatcher(registry: SessionRegistry, provider: FakeProvider, recorder: FakeRecorder) -> CommandDispatcher:
    return CommandDispatcher(registry, provider, recorder=recorder)


@pytest.fixture()
def lounge() -> FakeChannel:
    return FakeChannel(10, "lounge")


@pytest.fixture()
def stage() -> FakeChannel:
    return FakeChannel(20, "stage")
