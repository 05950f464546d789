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

"""Configuration management for Cadence."""

import asyncio
import copy
import os
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import yaml
from loguru import logger


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# Used when settings.yaml is missing or incomplete. Environment variables
# override any of these (see _apply_env_overrides).
#
#   auto_disconnect          - Leave voice when the queue runs out
#   stale_command_threshold  - More registered commands than this at startup
#                              are treated as leftovers and cleared (0+)
#   search_type              - Lavalink search for plain text: ytsearch,
#                              ytmsearch or scsearch
#   default_volume           - Initial volume when joining voice (0-100)
#
# UI Settings (ui.*):
#   brief_auto_delete        - Seconds before auto-deleting replies (0 = never)
#
# Logging Settings (logging.*):
#   level                    - Log verbosity: "minimal", "verbose", or "debug"
# =============================================================================

DEFAULT_SETTINGS = {
    "auto_disconnect": True,
    "stale_command_threshold": 3,
    "search_type": "ytsearch",
    "default_volume": 50,
    "ui": {
        "brief_auto_delete": 10,  # seconds, 0 to disable
    },
    # LOG_LEVEL env var overrides this
    "logging": {
        "level": "verbose",  # minimal, verbose, debug
    },
}

SEARCH_TYPES = ("ytsearch", "ytmsearch", "scsearch")
LOG_LEVELS = ("minimal", "verbose", "debug")

# =============================================================================
# DEFAULT MESSAGES SCHEMA
# =============================================================================
# text    - Message template ({variables} are filled in by the dispatcher)
# enabled - Show the message (True) or acknowledge silently (False)
# =============================================================================

DEFAULT_MESSAGES = {
    # Voice
    "not_in_vc": {"text": "You need to be in a voice channel first", "enabled": True},
    "not_connected": {"text": "I am **not** in a voice channel", "enabled": True},

    # Playback
    "nothing_playing": {"text": "Nothing is playing right now", "enabled": True},
    "enqueued": {"text": "**{title}** enqueued!", "enabled": True},
    "skipped": {"text": "Skipped", "enabled": True},
    "skip_last": {"text": "There are no more tracks to play, stopping the music", "enabled": True},
    "stopped": {"text": "Stopped the music", "enabled": True},

    # Search
    "song_not_found": {"text": "Couldn't find anything for that", "enabled": True},
    "track_play_error": {"text": "That track couldn't be played, try another one", "enabled": True},
    "track_error": {"text": "Couldn't play **{title}**: {error}", "enabled": True},

    # Errors
    "unknown_command": {"text": "Unknown command `/{command}`", "enabled": True},
    "music_unavailable": {"text": "Music system is unavailable right now", "enabled": True},
    "error_generic": {"text": "Something went wrong: {error}", "enabled": True},
}


def deep_merge(user: dict, defaults: dict) -> dict:
    """Merge user config over defaults, recursing into nested dicts.

    Unknown keys (not in defaults) are logged as warnings and ignored.
    """
    result = copy.deepcopy(defaults)
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(value, result[key])
        elif key in defaults:
            result[key] = value
        else:
            logger.warning(f"unknown config key: {key}")
    return result


def load_yaml(path: Path, defaults: dict) -> dict:
    """Load YAML file merged over defaults. Missing or broken files give defaults."""
    if not path.exists():
        return copy.deepcopy(defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f) or {}

        if not isinstance(user, dict):
            logger.warning(f"{path.name} invalid, using defaults")
            return copy.deepcopy(defaults)

        return deep_merge(user, defaults)

    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}")
        return copy.deepcopy(defaults)


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Save YAML atomically (temp file, then rename) with optional header."""
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
        try:
            f = os.fdopen(temp_fd, 'w', encoding='utf-8')
        except Exception:
            os.close(temp_fd)
            raise
        with f:
            if header:
                f.write(header)
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


def _as_bool(value: str) -> bool:
    return value.strip().lower() == "true"


class ConfigManager:
    """Bot configuration from settings.yaml and messages.yaml.

    Priority (highest wins): environment variables, YAML files, built-in
    defaults. Settings are validated after loading; invalid values are
    clamped or reset with a warning.

    Access patterns:
        config_manager.get("key")           # setting value
        config_manager.setting("ui.brief_auto_delete")
        config_manager.msg("key", **vars)   # formatted message
        config_manager.is_enabled("key")    # should the message show
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self.settings: dict = {}
        self.messages: dict = {}

    async def load(self) -> None:
        """Load both YAML files, apply env overrides, validate.

        Missing files are generated with defaults.
        """
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(load_yaml, settings_path, DEFAULT_SETTINGS)
        if not settings_path.exists():
            header = "# Cadence Settings\n# Edit these values to customize behavior\n\n"
            await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
            logger.debug(f"generated {settings_path.name}")

        messages_path = self.config_path / "messages.yaml"
        self.messages = await asyncio.to_thread(load_yaml, messages_path, DEFAULT_MESSAGES)
        if not messages_path.exists():
            header = "# Cadence Responses\n# Set enabled: false to acknowledge silently\n\n"
            await asyncio.to_thread(save_yaml, messages_path, DEFAULT_MESSAGES, header)
            logger.debug(f"generated {messages_path.name}")

        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")

    def _validate_settings(self) -> None:
        """Restore nulls, clamp integers, check enumerations."""
        # YAML "key:" with no value loads as None
        for key in list(self.settings):
            if self.settings[key] is None and key in DEFAULT_SETTINGS:
                self.settings[key] = DEFAULT_SETTINGS[key]
        for section in ("ui", "logging"):
            sect = self.settings.get(section)
            defaults = DEFAULT_SETTINGS[section]
            if not isinstance(sect, dict):
                self.settings[section] = dict(defaults)
                continue
            for key in list(sect):
                if sect[key] is None and key in defaults:
                    sect[key] = defaults[key]

        validations = {
            "default_volume": (0, 100),
            "stale_command_threshold": (0, None),
        }
        for key, (min_val, max_val) in validations.items():
            value = self.settings.get(key)
            try:
                v = int(value)
                if max_val is not None:
                    clamped = max(min_val, min(max_val, v))
                    range_str = f"{min_val}-{max_val}"
                else:
                    clamped = max(min_val, v)
                    range_str = f"{min_val}+"
                if clamped != v:
                    logger.warning(f"{key}={v} out of range, clamped to {clamped} (valid: {range_str})")
                self.settings[key] = clamped
            except (ValueError, TypeError):
                logger.warning(f"{key}={value!r} invalid, using default")
                self.settings[key] = DEFAULT_SETTINGS[key]

        ui = self.settings["ui"]
        delete_after = ui.get("brief_auto_delete")
        try:
            ui["brief_auto_delete"] = max(0, int(delete_after))
        except (ValueError, TypeError):
            logger.warning(f"ui.brief_auto_delete={delete_after!r} invalid, using default")
            ui["brief_auto_delete"] = DEFAULT_SETTINGS["ui"]["brief_auto_delete"]

        if not isinstance(self.settings.get("auto_disconnect"), bool):
            logger.warning(f"auto_disconnect={self.settings.get('auto_disconnect')!r} invalid, using default")
            self.settings["auto_disconnect"] = DEFAULT_SETTINGS["auto_disconnect"]

        search_type = str(self.settings.get("search_type", "")).strip().lower()
        if search_type not in SEARCH_TYPES:
            logger.warning(f"search_type={search_type!r} invalid (valid: {', '.join(SEARCH_TYPES)}), using default")
            search_type = DEFAULT_SETTINGS["search_type"]
        self.settings["search_type"] = search_type

        level = str(self.settings["logging"].get("level", "")).strip().lower()
        if level not in LOG_LEVELS:
            logger.warning(f"logging.level={level!r} invalid (valid: {', '.join(LOG_LEVELS)}), using default")
            level = DEFAULT_SETTINGS["logging"]["level"]
        self.settings["logging"]["level"] = level

    def _apply_env_overrides(self) -> None:
        """Override settings with environment variables.

        env_map maps ENV_VAR -> (setting key in dot notation, converter).
        Invalid values are logged and ignored.
        """
        env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
            "AUTO_DISCONNECT": ("auto_disconnect", _as_bool),
            "STALE_COMMAND_THRESHOLD": ("stale_command_threshold", int),
            "SEARCH_TYPE": ("search_type", str),
            "DEFAULT_VOLUME": ("default_volume", int),
            "BRIEF_AUTO_DELETE": ("ui.brief_auto_delete", int),
            "LOG_LEVEL": ("logging.level", str),
        }

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    converted = converter(value)
                    if "." in setting_key:
                        parts = setting_key.split(".")
                        target = self.settings
                        for part in parts[:-1]:
                            target = target.setdefault(part, {})
                            if not isinstance(target, dict):
                                logger.warning(f"invalid config structure for {setting_key}")
                                break
                        else:
                            target[parts[-1]] = converted
                    else:
                        self.settings[setting_key] = converted
                    logger.debug(f"{env_key} overrides {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

    def get(self, key: str, default=None) -> Any:
        return self.settings.get(key, default)

    def setting(self, dotted: str, default=None) -> Any:
        """Get a nested setting by dot notation (e.g. "ui.brief_auto_delete")."""
        target: Any = self.settings
        for part in dotted.split("."):
            if not isinstance(target, dict) or part not in target:
                return default
            target = target[part]
        return target

    def msg(self, key: str, **kwargs) -> str:
        """Formatted message text. Returns the key itself if unknown."""
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        template = entry.get("text", key) if isinstance(entry, dict) else entry
        try:
            return template.format(**kwargs)
        except (KeyError, IndexError):
            return template

    def is_enabled(self, key: str) -> bool:
        """False means the reply is acknowledged silently."""
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        return entry.get("enabled", True) if isinstance(entry, dict) else True


# =============================================================================
# CREDENTIALS
# =============================================================================

REQUIRED_ENV = (
    "DISCORD_TOKEN",
    "SPOTIFY_CLIENT_ID",
    "SPOTIFY_CLIENT_SECRET",
    "YOUTUBE_API_KEY",
    "LAVALINK_HOST",
    "LAVALINK_PORT",
    "LAVALINK_PASSWORD",
)


@dataclass(frozen=True)
class Credentials:
    """Secrets and endpoints, read from the environment only."""
    discord_token: str
    spotify_client_id: str
    spotify_client_secret: str
    youtube_api_key: str
    lavalink_host: str
    lavalink_port: int
    lavalink_password: str
    guild_id: int | None = None


def check_credentials(env: dict[str, str] | None = None) -> list[str]:
    """Return every problem with the credential env vars (empty list if fine)."""
    env = os.environ if env is None else env
    errors = []

    for key in REQUIRED_ENV:
        if not env.get(key, "").strip():
            errors.append(f"{key} not set - add it to .env or the container environment")

    token = env.get("DISCORD_TOKEN", "").strip()
    if token:
        parts = token.split(".")
        if len(parts) != 3 or any(not part for part in parts):
            errors.append(
                "DISCORD_TOKEN format appears invalid (expected three dot-separated sections). "
                "Get a fresh token from: https://discord.com/developers/applications"
            )

    port = env.get("LAVALINK_PORT", "").strip()
    if port and not port.isdigit():
        errors.append(f"LAVALINK_PORT={port!r} is not a port number")

    guild_id = env.get("GUILD_ID", "").strip()
    if guild_id and not guild_id.isdigit():
        errors.append(f"GUILD_ID={guild_id!r} is not a numeric guild id")

    return errors


def load_credentials(env: dict[str, str] | None = None) -> Credentials:
    """Build Credentials from env. Call check_credentials first."""
    env = os.environ if env is None else env
    guild_id = env.get("GUILD_ID", "").strip()
    return Credentials(
        discord_token=env["DISCORD_TOKEN"].strip(),
        spotify_client_id=env["SPOTIFY_CLIENT_ID"].strip(),
        spotify_client_secret=env["SPOTIFY_CLIENT_SECRET"].strip(),
        youtube_api_key=env["YOUTUBE_API_KEY"].strip(),
        lavalink_host=env["LAVALINK_HOST"].strip(),
        lavalink_port=int(env["LAVALINK_PORT"]),
        lavalink_password=env["LAVALINK_PASSWORD"].strip(),
        guild_id=int(guild_id) if guild_id else None,
    )


def validate_configuration() -> Credentials:
    """Pre-flight check before the bot starts, exit on failure.

    Logs every problem, then exits with status 1. No recovery is attempted;
    fix the environment and restart.
    """
    errors = check_credentials()

    if not os.getenv("GUILD_ID"):
        logger.warning("GUILD_ID not set - commands will be synced to the first guild the bot is in")

    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)

    return load_credentials()
