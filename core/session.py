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

"""Per-guild session state."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from core.interfaces import Subscription


class SessionPhase(Enum):
    """
    Lifecycle phase of a guild session.

    UNBOUND: Never connected
    CONNECTING: Voice connection being established for a play
    PLAYING: Provider is playing (current track may be followed by a queue)
    SKIPPING: Advancing to the next queued track
    IDLE: Disconnected after stop, empty-queue skip or queue end
    """
    UNBOUND = 0
    CONNECTING = 1
    PLAYING = 2
    SKIPPING = 3
    IDLE = 4


@dataclass
class Session:
    """One guild's media session.

    Invariants (kept by bind/unbind/reset):
    - connection is set only while voice_channel is set
    - is_playing is True only while connection is set
    """
    guild_id: int
    voice_channel: Any = None
    connection: Any = None
    is_playing: bool = False
    queue: Any = None
    is_recording: bool = False
    subscription: Subscription | None = None
    phase: SessionPhase = SessionPhase.UNBOUND

    @property
    def connected(self) -> bool:
        return self.connection is not None

    def bind(self, channel, connection) -> None:
        """Record a fresh connection on channel."""
        self.voice_channel = channel
        self.connection = connection

    def is_bound_to(self, channel) -> bool:
        if self.voice_channel is None or channel is None:
            return False
        return self.voice_channel.id == channel.id

    def cancel_subscription(self) -> None:
        if self.subscription is not None:
            self.subscription.cancel()
            self.subscription = None

    def unbind(self) -> None:
        """Forget the connection and channel. Caller disconnects first."""
        self.cancel_subscription()
        self.connection = None
        self.voice_channel = None
        self.is_playing = False

    def reset(self) -> None:
        """Tear down to IDLE, keeping the record (and is_recording) in place."""
        self.unbind()
        self.queue = None
        self.phase = SessionPhase.IDLE
