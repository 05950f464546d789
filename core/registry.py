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

"""Session registry - single source of truth for guild sessions."""

import asyncio
from typing import Iterator

from loguru import logger

from core.session import Session


class SessionRegistry:
    """Maps guild IDs to Session records and owns the per-guild locks.

    One instance per running bot, passed to the dispatcher explicitly.
    Locks live apart from sessions so a command can serialise on a guild
    before deciding whether a session should exist at all.

    Usage:
        async with registry.lock(guild_id):
            session = registry.get_or_create(guild_id)
    """

    def __init__(self) -> None:
        self._sessions: dict[int, Session] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, guild_id: int) -> Session | None:
        """Get session for guild, None if it was never created."""
        return self._sessions.get(guild_id)

    def get_or_create(self, guild_id: int) -> Session:
        """Get or create an unbound session for guild."""
        session = self._sessions.get(guild_id)
        if session is None:
            session = Session(guild_id=guild_id)
            self._sessions[guild_id] = session
            logger.debug(f"[guild:{guild_id}] session created")
        return session

    def remove(self, guild_id: int) -> None:
        """Drop session for guild. Lock is dropped too unless held."""
        session = self._sessions.pop(guild_id, None)
        if session is not None:
            session.cancel_subscription()
            logger.debug(f"[guild:{guild_id}] session removed")
        lock = self._locks.get(guild_id)
        if lock is not None and not lock.locked():
            del self._locks[guild_id]

    def lock(self, guild_id: int) -> asyncio.Lock:
        """Get or create the lock serialising commands for guild."""
        if guild_id not in self._locks:
            self._locks[guild_id] = asyncio.Lock()
        return self._locks[guild_id]

    def sessions(self) -> list[Session]:
        """Snapshot of all sessions (safe to iterate while mutating)."""
        return list(self._sessions.values())

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._sessions))
