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

"""Collaborator interfaces for the dispatcher.

The dispatcher only talks to these abstractions. Lavalink and Discord
implementations live in systems/, fakes for tests in tests/conftest.py.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from core.commands import CommandSpec

# Called with the firing subscription and has_next=True when the provider
# already started another track
TrackEndCallback = Callable[["Subscription", bool], Awaitable[None]]


@dataclass
class Reply:
    """Reply to an interaction: messages.yaml key plus template fields."""
    key: str
    fields: dict[str, Any] = field(default_factory=dict)
    ephemeral: bool = False


@dataclass
class PlayResult:
    """Outcome of a successful provider play call."""
    track_title: str
    queue: Any
    connection: Any = None  # set when the provider replaced the handle


class Subscription:
    """Cancellable track-end subscription handed out by a provider."""

    def __init__(self, callback: TrackEndCallback, on_cancel: Callable[["Subscription"], None] | None = None) -> None:
        self.callback = callback
        self._on_cancel = on_cancel
        self.cancelled = False

    def cancel(self) -> None:
        """Stop receiving notifications. Safe to call more than once."""
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel:
            self._on_cancel(self)

    async def notify(self, has_next: bool) -> None:
        if not self.cancelled:
            await self.callback(self, has_next)


class MediaSessionProvider(ABC):
    """Audio search, playback and queueing backend."""

    @abstractmethod
    async def connect(self, channel) -> Any:
        """Join a voice channel. Returns a connection handle."""

    @abstractmethod
    async def disconnect(self, connection) -> None:
        """Leave voice. Must be a no-op for already-closed handles."""

    @abstractmethod
    async def play(self, channel, query: str) -> PlayResult:
        """Resolve query and start it, or enqueue it if something is playing.

        Raises ResolutionError when nothing matches, PlaybackError when the
        track cannot be loaded or started.
        """

    @abstractmethod
    async def has_next(self, queue) -> bool:
        """True if at least one track is waiting after the current one."""

    @abstractmethod
    async def is_active(self, queue) -> bool:
        """True while a track is loaded (playing or about to)."""

    @abstractmethod
    async def skip(self, queue) -> None:
        """Start the next queued track."""

    @abstractmethod
    async def stop(self, queue) -> None:
        """Clear the queue and stop the current track."""

    @abstractmethod
    def on_track_end(self, queue, callback: TrackEndCallback) -> Subscription:
        """Register callback for every track end until cancelled."""


class Recorder(ABC):
    """Voice recording that must be halted before playback starts."""

    @abstractmethod
    async def stop(self, guild_id: int) -> None:
        """Stop recording in the guild."""


class CommandRegistry(ABC):
    """Remote command registration (guild application commands)."""

    @abstractmethod
    async def list_registered(self) -> set[str]:
        """Names of the commands currently registered remotely."""

    @abstractmethod
    async def clear_all(self) -> None:
        """Remove every registered command."""

    @abstractmethod
    async def register(self, spec: CommandSpec) -> None:
        """Create or overwrite one command."""


class InteractionContext(ABC):
    """Inbound command invocation with reply capability."""

    guild_id: int
    user_name: str
    voice_channel: Any  # issuing user's voice channel, None if off voice

    @property
    @abstractmethod
    def acknowledged(self) -> bool:
        """True once the platform has been told the command was received."""

    @abstractmethod
    async def acknowledge(self) -> None:
        """Defer the response so slow work does not time the interaction out."""

    @abstractmethod
    async def send(self, reply: Reply) -> None:
        """Deliver a reply on the originating interaction."""
