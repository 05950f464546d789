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

"""Query resolution ahead of Lavalink.

Lavalink cannot play Spotify links without server plugins, so Spotify track
URLs are turned into "artist - title" searches through the Spotify Web API.
When Lavalink's own search finds nothing, the YouTube Data API is asked for
a video URL instead.
"""

import re
import time
from urllib.parse import urlparse

import aiohttp
from loguru import logger

from core.errors import ResolutionError

SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_TRACK_URL = "https://api.spotify.com/v1/tracks/{track_id}"
YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

_SPOTIFY_TRACK_RE = re.compile(r"^/(?:intl-[\w-]+/)?track/([A-Za-z0-9]{22})")

# Refresh the Spotify token this many seconds before it expires
TOKEN_EXPIRY_MARGIN = 60

REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=10)


def is_url(query: str) -> bool:
    parsed = urlparse(query.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def spotify_track_id(query: str) -> str | None:
    """Extract the track ID from an open.spotify.com track link."""
    if not is_url(query):
        return None
    parsed = urlparse(query.strip())
    if parsed.netloc.lower() != "open.spotify.com":
        return None
    match = _SPOTIFY_TRACK_RE.match(parsed.path)
    return match.group(1) if match else None


class QueryResolver:
    """Turns user queries into something Lavalink can load.

    Args:
        spotify_client_id: Spotify app client ID (client-credentials flow)
        spotify_client_secret: Spotify app client secret
        youtube_api_key: YouTube Data API v3 key for the fallback search
    """

    def __init__(self, spotify_client_id: str, spotify_client_secret: str, youtube_api_key: str) -> None:
        self.spotify_client_id = spotify_client_id
        self.spotify_client_secret = spotify_client_secret
        self.youtube_api_key = youtube_api_key
        self._session: aiohttp.ClientSession | None = None
        self._spotify_token: str | None = None
        self._spotify_token_expires: float = 0

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=REQUEST_TIMEOUT)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def resolve(self, query: str) -> str:
        """Return the query Lavalink should load.

        Spotify track links become "artist - title"; everything else passes
        through unchanged (URLs load directly, text is searched by Lavalink).
        """
        query = query.strip()
        track_id = spotify_track_id(query)
        if not track_id:
            return query

        try:
            token = await self._get_spotify_token()
            session = self._get_session()
            headers = {"Authorization": f"Bearer {token}"}
            async with session.get(SPOTIFY_TRACK_URL.format(track_id=track_id), headers=headers) as resp:
                if resp.status == 404:
                    raise ResolutionError(f"spotify track {track_id} not found")
                resp.raise_for_status()
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise ResolutionError(f"spotify lookup failed: {e}") from e

        artists = ", ".join(a["name"] for a in data.get("artists", []) if a.get("name"))
        title = data.get("name", "")
        search = f"{artists} - {title}" if artists else title
        logger.debug(f"spotify {track_id} -> {search!r}")
        return search

    async def youtube_fallback(self, query: str) -> str | None:
        """Ask the YouTube Data API for the best video. None if no hit.

        Only used for text queries; links are never re-searched.
        """
        if is_url(query):
            return None

        params = {
            "part": "snippet",
            "type": "video",
            "maxResults": "1",
            "q": query[:100],
            "key": self.youtube_api_key,
        }
        try:
            session = self._get_session()
            async with session.get(YOUTUBE_SEARCH_URL, params=params) as resp:
                resp.raise_for_status()
                data = await resp.json()
        except aiohttp.ClientError as e:
            logger.warning(f"youtube search failed for {query[:50]!r}: {e}")
            return None

        for item in data.get("items", []):
            video_id = item.get("id", {}).get("videoId")
            if video_id:
                return YOUTUBE_WATCH_URL.format(video_id=video_id)
        return None

    async def _get_spotify_token(self) -> str:
        """Client-credentials access token, cached until shortly before expiry."""
        if self._spotify_token and time.monotonic() < self._spotify_token_expires:
            return self._spotify_token

        session = self._get_session()
        auth = aiohttp.BasicAuth(self.spotify_client_id, self.spotify_client_secret)
        async with session.post(SPOTIFY_TOKEN_URL, data={"grant_type": "client_credentials"}, auth=auth) as resp:
            resp.raise_for_status()
            data = await resp.json()

        self._spotify_token = data["access_token"]
        expires_in = int(data.get("expires_in", 3600))
        self._spotify_token_expires = time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_MARGIN)
        logger.debug("spotify token refreshed")
        return self._spotify_token
