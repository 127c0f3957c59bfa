"""
Groove run history.

Run attempts are stored in ~/.jazz/run-history.json as a JSON array, oldest
first, capped at ``grooves.max_run_history_records`` entries.

Writers serialize through a directory lock (~/.jazz/run-history.lock):
``mkdir`` either creates the directory or fails, so whoever created it holds
the lock. A lock directory older than ``grooves.lock_timeout`` seconds is
assumed to belong to a crashed process and is removed. The file itself is
replaced atomically (temp file + rename), so readers never see a partial
write and do not take the lock.
"""

import asyncio
import dataclasses
import json
import logging
import os
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from grooves.errors import HistoryLockError
from grooves.models import RunRecord, RunStatus
from jazz_cli.config import get_data_dir, get_groove_settings

logger = logging.getLogger(__name__)


def history_file_path() -> Path:
    """Path of the run history file (also shown when history is empty)."""
    return get_data_dir() / "run-history.json"


def lock_path() -> Path:
    return get_data_dir() / "run-history.lock"


# =============================================================================
# Locking
# =============================================================================

def _remove_lock(path: Path):
    try:
        os.rmdir(path)
    except NotADirectoryError:
        # Something other than our directory sits at the lock path
        os.unlink(path)


async def acquire_lock(
    path: Path,
    max_retries: int = 10,
    retry_delay: float = 0.1,
    timeout: float = 30,
):
    """
    Take the directory lock at ``path``.

    Each attempt tries to create the directory. If it already exists and its
    mtime is older than ``timeout`` seconds it is removed and the next attempt
    follows immediately; otherwise we sleep ``retry_delay`` seconds.

    Raises:
        HistoryLockError: after ``max_retries`` failed attempts.
    """
    await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)

    for _ in range(max_retries):
        try:
            await asyncio.to_thread(os.mkdir, path)
            return
        except FileExistsError:
            pass

        try:
            stat = await asyncio.to_thread(os.stat, path)
        except FileNotFoundError:
            # Released between our mkdir and stat
            continue

        age = time.time() - stat.st_mtime
        if age > timeout:
            logger.warning("Removing stale run history lock %s (held %.0fs)", path, age)
            try:
                await asyncio.to_thread(_remove_lock, path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.debug("Could not remove stale lock %s: %s", path, e)
            continue

        await asyncio.sleep(retry_delay)

    raise HistoryLockError(f"Failed to acquire run history lock after {max_retries} attempts: {path}")


async def release_lock(path: Path):
    """Remove the lock directory; a lock that is already gone is fine."""
    try:
        await asyncio.to_thread(os.rmdir, path)
    except FileNotFoundError:
        pass


@asynccontextmanager
async def history_lock():
    """Hold the run history lock for the duration of the block."""
    settings = get_groove_settings()
    path = lock_path()
    await acquire_lock(
        path,
        max_retries=int(settings["lock_max_retries"]),
        retry_delay=float(settings["lock_retry_delay"]),
        timeout=float(settings["lock_timeout"]),
    )
    try:
        yield
    finally:
        await release_lock(path)


# =============================================================================
# Load / save
# =============================================================================

def _read_history_file(path: Path) -> List[RunRecord]:
    try:
        with open(path, 'rb') as f:
            raw = f.read()
    except FileNotFoundError:
        return []

    try:
        data = json.loads(raw.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Run history %s is not valid JSON; treating as empty", path)
        return []
    if not isinstance(data, list):
        return []

    records = []
    for item in data:
        record = RunRecord.from_dict(item)
        if record is not None:
            records.append(record)
    return records


def _write_history_file(path: Path, records: List[RunRecord]):
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix='.tmp', prefix='.run-history-')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump([r.to_dict() for r in records], f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


async def load_history() -> List[RunRecord]:
    """
    Load all run records, oldest first.

    A missing file, invalid JSON or a non-array document all read as empty
    history. Other I/O errors propagate.
    """
    return await asyncio.to_thread(_read_history_file, history_file_path())


async def append_record(record: RunRecord, max_records: Optional[int] = None):
    """Append a record, dropping the oldest ones beyond the retention cap."""
    if max_records is None:
        max_records = int(get_groove_settings()["max_run_history_records"])
    path = history_file_path()

    async with history_lock():
        history = await asyncio.to_thread(_read_history_file, path)
        history.append(record)
        if max_records > 0:
            history = history[-max_records:]
        await asyncio.to_thread(_write_history_file, path, history)


async def patch_latest_running(groove_name: str, updates: Dict[str, Any]) -> bool:
    """
    Merge ``updates`` into the newest ``running`` record for ``groove_name``.

    Keys are RunRecord field names (``status``, ``completed_at``, ``error``).
    Returns False without writing when there is no such record.
    """
    if isinstance(updates.get("status"), str):
        updates = {**updates, "status": RunStatus(updates["status"])}
    path = history_file_path()

    async with history_lock():
        history = await asyncio.to_thread(_read_history_file, path)
        for i in range(len(history) - 1, -1, -1):
            record = history[i]
            if record.groove_name == groove_name and record.status == RunStatus.RUNNING:
                history[i] = dataclasses.replace(record, **updates)
                await asyncio.to_thread(_write_history_file, path, history)
                return True
    return False


async def get_groove_history(groove_name: str) -> List[RunRecord]:
    """All records for one groove, oldest first."""
    history = await load_history()
    return [r for r in history if r.groove_name == groove_name]


async def get_recent_runs(limit: int = 20) -> List[RunRecord]:
    """The ``limit`` most recent runs across all grooves, newest first."""
    if limit <= 0:
        return []
    history = await load_history()
    return list(reversed(history[-limit:]))
