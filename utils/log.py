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

"""Logging setup: loguru sink plus stdlib interception for discord/mafic."""

import logging
import sys

from loguru import logger

# Between INFO (20) and WARNING (30): startup milestones shown even in minimal
NOTICE_LEVEL = 25

# logging.level setting -> sink level
LEVEL_MAP = {
    "minimal": "NOTICE",
    "verbose": "INFO",
    "debug": "DEBUG",
}

# 4-character level names keep the columns aligned
LEVEL_NAMES = {
    "TRACE": "TRCE",
    "DEBUG": "DBUG",
    "INFO": "INFO",
    "NOTICE": "NOTE",
    "SUCCESS": "GOOD",
    "WARNING": "WARN",
    "ERROR": "FAIL",
    "CRITICAL": "CRIT",
}

LIBRARY_LOGGERS = ("discord", "discord.http", "discord.gateway", "discord.voice_state", "mafic")


def register_notice_level() -> None:
    """Add the NOTICE level once (loguru raises on re-definition with new values)."""
    try:
        logger.level("NOTICE")
    except ValueError:
        logger.level("NOTICE", no=NOTICE_LEVEL, color="<cyan><bold>")


def _format(record) -> str:
    level = LEVEL_NAMES.get(record["level"].name, record["level"].name[:4])
    fmt = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> "
        f"<level>[{level}]</level> "
        "<cyan>{name}</cyan>: <level>{message}</level>\n"
    )
    if record["exception"]:
        fmt += "{exception}\n"
    return fmt


class InterceptHandler(logging.Handler):
    """Route stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module so {name} is accurate
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "verbose") -> str:
    """Configure the loguru sink and intercept library logging.

    Args:
        level: "minimal", "verbose" or "debug" (unknown values mean verbose)

    Returns:
        The loguru level name the sink was configured with
    """
    register_notice_level()
    sink_level = LEVEL_MAP.get(level, "INFO")

    logger.remove()
    logger.add(sys.stderr, level=sink_level, format=_format, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # Library chatter only at debug
    library_level = logging.DEBUG if level == "debug" else logging.WARNING
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    return sink_level
