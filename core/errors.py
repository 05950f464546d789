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

"""Exception taxonomy for Cadence.

User-visible errors carry ``key``, the messages.yaml entry used to answer
the interaction. The dispatcher converts them into replies; none of them
reach a global handler.
"""


class CadenceError(Exception):
    """Base exception for Cadence."""

    key = "error_generic"

    def __init__(self, message: str = "", **fields) -> None:
        super().__init__(message or self.__class__.__name__)
        self.fields = fields


class ConfigurationError(CadenceError):
    """Raised when settings or credentials are unusable."""


class NoChannelError(CadenceError):
    """User is not in a voice channel and the session is not bound to one."""

    key = "not_in_vc"


class ResolutionError(CadenceError):
    """Provider found nothing for the requested query."""

    key = "song_not_found"


class PlaybackError(CadenceError):
    """Provider found the track but could not load or start it."""

    key = "track_play_error"


class MusicUnavailableError(PlaybackError):
    """No Lavalink node is connected."""

    key = "music_unavailable"


class NoActiveSessionError(CadenceError):
    """skip/stop issued without a session or connection."""

    key = "not_connected"


class NothingPlayingError(NoActiveSessionError):
    """Connected, but no track is currently playing."""

    key = "nothing_playing"


class RegistrationError(CadenceError):
    """Startup command sync failed."""
