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

"""Startup convergence of remote commands to the static command set."""

from dataclasses import dataclass, field
from typing import Iterable

from loguru import logger

from core.commands import COMMAND_SPECS, CommandSpec
from core.errors import RegistrationError
from core.interfaces import CommandRegistry

DEFAULT_STALE_THRESHOLD = 3


@dataclass
class SyncReport:
    cleared: bool = False
    registered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


async def sync_commands(
    registry: CommandRegistry,
    specs: Iterable[CommandSpec] = COMMAND_SPECS,
    stale_threshold: int = DEFAULT_STALE_THRESHOLD,
) -> SyncReport:
    """Converge registered commands to specs.

    More than stale_threshold registered commands means leftovers from
    earlier runs: clear them all, then register. Otherwise register on top
    (registration overwrites same-named commands).

    Individual failures are logged and the bot keeps running degraded.
    Raises RegistrationError only when nothing ends up registered.
    """
    report = SyncReport()
    specs = list(specs)

    try:
        existing = await registry.list_registered()
    except Exception as e:
        logger.warning(f"could not list registered commands, registering additively: {e}")
        existing = set()

    if len(existing) > stale_threshold:
        try:
            await registry.clear_all()
            report.cleared = True
            logger.info(f"cleared {len(existing)} stale commands")
            existing = set()
        except Exception as e:
            logger.warning(f"failed to clear stale commands: {e}")
    else:
        logger.debug(f"{len(existing)} commands registered, no need to clear")

    for spec in specs:
        try:
            await registry.register(spec)
            report.registered.append(spec.name)
            logger.debug(f"registered /{spec.name}")
        except Exception as e:
            report.failed.append(spec.name)
            logger.error(f"failed to register /{spec.name}: {e}")

    if not report.registered and not existing:
        raise RegistrationError("command sync left no commands registered")

    if report.failed:
        logger.warning(f"command sync degraded, missing: {', '.join('/' + n for n in report.failed)}")
    else:
        logger.info(f"synced {len(report.registered)} commands")
    return report
