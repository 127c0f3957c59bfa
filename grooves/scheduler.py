"""
System scheduler integration for grooves.

- macOS: one launchd agent per groove in ~/Library/LaunchAgents
- Linux: one two-line block per groove in the user's crontab
- Anything else: scheduling is refused

On every platform the set of scheduled grooves is read back from the
metadata files in ~/.jazz/schedules/, one JSON file per groove.
"""

import asyncio
import json
import logging
import plistlib
import re
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from grooves.cron_utils import is_valid
from grooves.errors import CommandError, ScheduleValidationError, UnsupportedPlatformError
from grooves.models import GrooveMetadata, ScheduledEntry
from grooves.shell import exec_command, exec_command_with_stdin
from jazz_cli.config import get_logs_dir, get_scheduler_invocation, get_schedules_dir

logger = logging.getLogger(__name__)

CRON_MARKER = "# Jazz groove:"
LAUNCHD_LABEL_PREFIX = "com.jazz.groove."
SUPPORTED_PLATFORMS = "macOS, Linux"

_INTEGER_RE = re.compile(r'^-?\d+$')


def is_linux() -> bool:
    return sys.platform.startswith('linux')

def is_macos() -> bool:
    return sys.platform == 'darwin'


def escape_shell_arg(arg: str) -> str:
    """Single-quote ``arg`` for a POSIX shell, escaping embedded quotes as '\\''."""
    return "'" + arg.replace("'", "'\\''") + "'"


def _runner_args(groove_name: str, agent_id: str) -> List[str]:
    return list(get_scheduler_invocation()) + [
        "groove", "run", groove_name, "--agent", agent_id, "--auto-approve",
    ]


def _validate_schedule(groove: GrooveMetadata) -> str:
    if not groove.schedule:
        raise ScheduleValidationError(f"Groove {groove.name} has no schedule defined")
    if not is_valid(groove.schedule):
        raise ScheduleValidationError(
            f"Groove {groove.name} has invalid cron expression: {groove.schedule}"
        )
    return groove.schedule.strip()


# =============================================================================
# launchd translation
# =============================================================================

def parse_cron_field(value: str, field_name: str) -> Optional[int]:
    """
    Translate one cron field for launchd.

    Returns None for "*" and the integer for a literal number. launchd has no
    equivalent for steps, ranges or lists, so those raise.
    """
    if value == "*":
        return None

    if "/" in value:
        raise ScheduleValidationError(
            f'Unsupported cron step expression "{value}" in {field_name} field. '
            f'launchd does not support step values. Use a simple integer or "*" instead.'
        )
    if "-" in value:
        raise ScheduleValidationError(
            f'Unsupported cron range expression "{value}" in {field_name} field. '
            f'launchd does not support range values. Use a simple integer or "*" instead.'
        )
    if "," in value:
        raise ScheduleValidationError(
            f'Unsupported cron list expression "{value}" in {field_name} field. '
            f'launchd does not support list values. Use a simple integer or "*" instead.'
        )
    if not _INTEGER_RE.match(value):
        raise ScheduleValidationError(
            f'Invalid cron value "{value}" in {field_name} field. Expected a simple integer or "*".'
        )
    return int(value)


def cron_to_launchd_schedule(cron: str) -> List[Dict[str, int]]:
    """Convert "minute hour day month weekday" into a StartCalendarInterval list."""
    parts = cron.split()
    if len(parts) != 5:
        raise ScheduleValidationError(f"Invalid cron expression: {cron}. Expected 5 fields.")

    fields = [
        ("Minute", "minute"),
        ("Hour", "hour"),
        ("Day", "day-of-month"),
        ("Month", "month"),
        ("Weekday", "day-of-week"),  # 0 = Sunday in both cron and launchd
    ]
    interval = {}
    for (key, field_name), value in zip(fields, parts):
        parsed = parse_cron_field(value, field_name)
        if parsed is not None:
            interval[key] = parsed
    return [interval]


def launchd_label(groove_name: str) -> str:
    return f"{LAUNCHD_LABEL_PREFIX}{groove_name}"


def generate_launchd_plist(groove: GrooveMetadata, program: Sequence[str]) -> bytes:
    """Build the launchd job descriptor for a groove."""
    schedule = cron_to_launchd_schedule(groove.schedule or "")
    log_dir = get_logs_dir()
    job = {
        "Label": launchd_label(groove.name),
        "ProgramArguments": list(program),
        "StartCalendarInterval": schedule,
        "StandardOutPath": str(log_dir / f"{groove.name}.log"),
        "StandardErrorPath": str(log_dir / f"{groove.name}.error.log"),
        "RunAtLoad": False,
    }
    return plistlib.dumps(job)


# =============================================================================
# crontab editing
# =============================================================================

def _marker_for(groove_name: str) -> str:
    return f"{CRON_MARKER} {groove_name.replace(chr(10), ' ')}"


def generate_crontab_entry(groove: GrooveMetadata, program: Sequence[str]) -> str:
    """Two-line crontab block: marker comment, then the escaped command line."""
    log_path = escape_shell_arg(str(get_logs_dir() / f"{groove.name}.log"))
    command = " ".join(escape_shell_arg(token) for token in program)
    return f"{_marker_for(groove.name)}\n{groove.schedule.strip()} {command} >> {log_path} 2>&1"


def strip_crontab_block(crontab: str, groove_name: str) -> List[str]:
    """Crontab lines without the marker line for ``groove_name`` and the line after it."""
    marker = _marker_for(groove_name)
    filtered = []
    skip_next = False
    for line in crontab.split("\n"):
        if line.strip() == marker:
            skip_next = True
            continue
        if skip_next:
            skip_next = False
            continue
        filtered.append(line)
    while filtered and filtered[-1] == "":
        filtered.pop()
    return filtered


# =============================================================================
# Metadata files
# =============================================================================

def _metadata_path(groove_name: str) -> Path:
    return get_schedules_dir() / f"{groove_name}.json"


def parse_scheduled_entry(content: str) -> Optional[ScheduledEntry]:
    """Parse a metadata file; None for invalid JSON or missing required fields."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return None
    return ScheduledEntry.from_dict(data)


def _write_metadata(entry: ScheduledEntry):
    path = _metadata_path(entry.groove_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(entry.to_dict(), indent=2), encoding="utf-8")


def _remove_file(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _list_metadata_files() -> List[ScheduledEntry]:
    schedules_dir = get_schedules_dir()
    schedules_dir.mkdir(parents=True, exist_ok=True)

    entries = []
    for path in sorted(schedules_dir.glob("*.json")):
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.debug("Skipping unreadable schedule file %s: %s", path, e)
            continue
        entry = parse_scheduled_entry(content)
        if entry is None:
            logger.debug("Skipping malformed schedule file %s", path)
            continue
        entries.append(entry)
    return entries


# =============================================================================
# Scheduler implementations
# =============================================================================

class SchedulerService(ABC):
    """Registers grooves with the system scheduler."""

    scheduler_type = "unsupported"

    def get_scheduler_type(self) -> str:
        """One of "launchd", "cron" or "unsupported"."""
        return self.scheduler_type

    @abstractmethod
    async def schedule(self, groove: GrooveMetadata, agent_id: str) -> None:
        """Register ``groove`` to run on its cron schedule with ``agent_id``."""
        pass

    @abstractmethod
    async def unschedule(self, groove_name: str) -> None:
        pass

    async def list_scheduled(self) -> List[ScheduledEntry]:
        return await asyncio.to_thread(_list_metadata_files)

    async def is_scheduled(self, groove_name: str) -> bool:
        return await asyncio.to_thread(_metadata_path(groove_name).exists)


class LaunchdScheduler(SchedulerService):
    """macOS launchd implementation."""

    scheduler_type = "launchd"

    def __init__(self, launch_agents_dir: Optional[Path] = None):
        self.launch_agents_dir = launch_agents_dir or Path.home() / "Library" / "LaunchAgents"

    def plist_path(self, groove_name: str) -> Path:
        return self.launch_agents_dir / f"{launchd_label(groove_name)}.plist"

    async def schedule(self, groove: GrooveMetadata, agent_id: str) -> None:
        _validate_schedule(groove)
        program = _runner_args(groove.name, agent_id)
        plist_content = generate_launchd_plist(groove, program)
        plist_path = self.plist_path(groove.name)

        for directory in (self.launch_agents_dir, get_schedules_dir(), get_logs_dir()):
            await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)

        try:
            await exec_command(["launchctl", "unload", str(plist_path)])
        except CommandError:
            pass

        await asyncio.to_thread(plist_path.write_bytes, plist_content)
        try:
            await exec_command(["launchctl", "load", str(plist_path)])
        except CommandError:
            await asyncio.to_thread(_remove_file, plist_path)
            raise

        entry = ScheduledEntry(groove_name=groove.name, schedule=groove.schedule.strip(), agent=agent_id)
        await asyncio.to_thread(_write_metadata, entry)
        logger.info("Scheduled groove '%s' with launchd (%s)", groove.name, plist_path)

    async def unschedule(self, groove_name: str) -> None:
        plist_path = self.plist_path(groove_name)

        try:
            await exec_command(["launchctl", "unload", str(plist_path)])
        except CommandError:
            pass

        for path in (plist_path, _metadata_path(groove_name)):
            try:
                await asyncio.to_thread(_remove_file, path)
            except OSError as e:
                logger.warning("Could not remove %s: %s", path, e)
        logger.info("Unscheduled groove '%s' from launchd", groove_name)


class CronScheduler(SchedulerService):
    """Linux crontab implementation."""

    scheduler_type = "cron"

    async def _current_crontab(self) -> str:
        try:
            return await exec_command(["crontab", "-l"])
        except CommandError as e:
            # `crontab -l` exits non-zero when the user has no crontab yet;
            # any other failure must not lead to the crontab being overwritten
            if "no crontab" in e.output.lower():
                return ""
            raise

    async def _set_crontab(self, lines: List[str]):
        content = "\n".join(lines)
        if content:
            content += "\n"
        await exec_command_with_stdin(["crontab", "-"], content)

    async def schedule(self, groove: GrooveMetadata, agent_id: str) -> None:
        schedule = _validate_schedule(groove)
        if len(schedule.split()) != 5:
            raise ScheduleValidationError(
                f"Groove {groove.name} uses a seconds field ({schedule}); crontab needs 5 fields."
            )
        entry_block = generate_crontab_entry(groove, _runner_args(groove.name, agent_id))

        for directory in (get_schedules_dir(), get_logs_dir()):
            await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)

        lines = strip_crontab_block(await self._current_crontab(), groove.name)
        lines.append(entry_block)
        await self._set_crontab(lines)

        entry = ScheduledEntry(groove_name=groove.name, schedule=schedule, agent=agent_id)
        await asyncio.to_thread(_write_metadata, entry)
        logger.info("Scheduled groove '%s' in crontab (%s)", groove.name, schedule)

    async def unschedule(self, groove_name: str) -> None:
        lines = strip_crontab_block(await self._current_crontab(), groove_name)
        await self._set_crontab(lines)

        await asyncio.to_thread(_remove_file, _metadata_path(groove_name))
        logger.info("Unscheduled groove '%s' from crontab", groove_name)


class UnsupportedScheduler(SchedulerService):
    """Platforms without launchd or cron: nothing is ever scheduled."""

    scheduler_type = "unsupported"

    async def schedule(self, groove: GrooveMetadata, agent_id: str) -> None:
        raise UnsupportedPlatformError(
            f"Scheduling is not supported on this platform. Supported: {SUPPORTED_PLATFORMS}."
        )

    async def unschedule(self, groove_name: str) -> None:
        raise UnsupportedPlatformError(
            f"Scheduling is not supported on this platform. Supported: {SUPPORTED_PLATFORMS}."
        )

    async def list_scheduled(self) -> List[ScheduledEntry]:
        return []

    async def is_scheduled(self, groove_name: str) -> bool:
        return False


def create_scheduler() -> SchedulerService:
    """Pick the scheduler implementation for the current platform."""
    if is_macos():
        return LaunchdScheduler()
    if is_linux():
        return CronScheduler()
    return UnsupportedScheduler()
