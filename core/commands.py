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

"""Command variants and the static command surface.

Interactions are decoded once at the boundary into Play/Skip/Stop/Unknown;
everything past that point matches on the variant, never on a name string.
"""

from dataclasses import dataclass, field
from typing import Any, Union

# Discord application command option types
OPTION_STRING = 3


@dataclass(frozen=True)
class Play:
    query: str


@dataclass(frozen=True)
class Skip:
    pass


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class Unknown:
    name: str


Command = Union[Play, Skip, Stop, Unknown]


@dataclass(frozen=True)
class CommandOption:
    name: str
    description: str
    type: int = OPTION_STRING
    required: bool = False


@dataclass(frozen=True)
class CommandSpec:
    """Slash command definition as registered with the platform."""
    name: str
    description: str
    options: tuple[CommandOption, ...] = field(default_factory=tuple)

    def to_payload(self) -> dict:
        """Application command JSON (type 1 = chat input)."""
        payload: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "type": 1,
        }
        if self.options:
            payload["options"] = [
                {
                    "name": opt.name,
                    "description": opt.description,
                    "type": opt.type,
                    "required": opt.required,
                }
                for opt in self.options
            ]
        return payload


COMMAND_SPECS: tuple[CommandSpec, ...] = (
    CommandSpec(
        name="play",
        description="Play a song",
        options=(CommandOption("song_url", "Name or link of the song to play", required=True),),
    ),
    CommandSpec(name="skip", description="Skip the current song"),
    CommandSpec(name="stop", description="Stop the music"),
)


def decode_command(data: dict | None) -> Command:
    """Decode interaction data (``{"name": ..., "options": [...]}``) into a variant.

    A play without a usable ``song_url`` decodes to Unknown so it gets the
    generic reply instead of a half-built Play.
    """
    if not data:
        return Unknown("")

    name = data.get("name", "")
    options = {opt.get("name"): opt.get("value") for opt in data.get("options") or []}

    if name == "play":
        query = options.get("song_url")
        if isinstance(query, str) and query.strip():
            return Play(query.strip())
        return Unknown(name)
    if name == "skip":
        return Skip()
    if name == "stop":
        return Stop()
    return Unknown(name)
