"""
Catch-up for scheduled grooves that missed their run.

launchd and cron only fire while the machine is awake. When Jazz starts,
scheduled grooves that opted in with ``catchUpOnStartup: true`` and whose most
recent firing was missed (within ``maxCatchUpAge`` seconds) are run after the
fact.

``decide_catch_up`` is the pure decision; ``CatchUpOrchestrator`` wires it to
the scheduler, the run history and the agent executor.
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from grooves.cron_utils import most_recent_firing
from grooves.errors import AgentNotFoundError, GrooveNotFoundError, RunStartError
from grooves.models import (
    CatchUpCandidate,
    CatchUpDecision,
    CatchUpReason,
    GrooveMetadata,
    RunRecord,
    ScheduledEntry,
    TriggeredBy,
)
from grooves.run_history import load_history
from grooves.runner import GrooveRunner, format_run_id, local_now
from grooves.scheduler import SchedulerService

logger = logging.getLogger(__name__)

DEFAULT_MAX_CATCH_UP_AGE = 60 * 60 * 24  # seconds


def decide_catch_up(
    groove: GrooveMetadata,
    last_run_at: Optional[datetime],
    now: datetime,
    default_max_age: float = DEFAULT_MAX_CATCH_UP_AGE,
) -> CatchUpDecision:
    """
    Decide whether ``groove`` should be caught up at ``now``.

    Checks run in order: schedule present, catch-up opted in, schedule
    parseable, not already run since the latest firing (inclusive), latest
    firing still within the max catch-up age.
    """
    if not groove.schedule:
        return CatchUpDecision(False, CatchUpReason.MISSING_SCHEDULE)

    if groove.catch_up_on_startup is not True:
        return CatchUpDecision(False, CatchUpReason.CATCH_UP_DISABLED)

    scheduled_at = most_recent_firing(groove.schedule, now)
    if scheduled_at is None:
        return CatchUpDecision(False, CatchUpReason.INVALID_SCHEDULE)

    if last_run_at is not None and last_run_at >= scheduled_at:
        return CatchUpDecision(False, CatchUpReason.ALREADY_RAN)

    max_age = groove.max_catch_up_age
    if isinstance(max_age, bool) or not isinstance(max_age, (int, float)) or max_age <= 0:
        max_age = default_max_age
    age_seconds = math.floor((now - scheduled_at).total_seconds())

    if age_seconds > max_age:
        return CatchUpDecision(False, CatchUpReason.MISSED_WINDOW, scheduled_at)

    return CatchUpDecision(True, CatchUpReason.MISSED_RUN, scheduled_at)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    # Naive timestamps were written in local time
    return parsed.astimezone() if parsed.tzinfo is None else parsed


def last_run_by_groove(history: Iterable[RunRecord]) -> Dict[str, datetime]:
    """Latest started/completed timestamp seen for each groove."""
    last_seen: Dict[str, datetime] = {}
    for record in history:
        stamps = [
            ts for ts in (_parse_timestamp(record.started_at), _parse_timestamp(record.completed_at))
            if ts is not None
        ]
        if not stamps:
            continue
        latest = max(stamps)
        current = last_seen.get(record.groove_name)
        if current is None or latest > current:
            last_seen[record.groove_name] = latest
    return last_seen


class CatchUpOrchestrator:
    """Finds grooves that missed their scheduled run and runs them."""

    def __init__(
        self,
        scheduler: SchedulerService,
        runner: GrooveRunner,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.scheduler = scheduler
        self.runner = runner
        self.clock = clock or local_now
        self._background: Set[asyncio.Task] = set()

    @property
    def max_catch_up_age(self) -> float:
        return float(self.runner.settings.get("default_max_catch_up_age", DEFAULT_MAX_CATCH_UP_AGE))

    async def _load_last_runs(self) -> Dict[str, datetime]:
        try:
            history = await load_history()
        except Exception as e:
            logger.warning("Could not load run history, assuming no prior runs: %s", e)
            history = []
        return last_run_by_groove(history)

    async def _list_scheduled(self) -> List[ScheduledEntry]:
        try:
            return await self.scheduler.list_scheduled()
        except Exception as e:
            logger.warning("Could not list scheduled grooves: %s", e)
            return []

    async def get_candidates(self) -> List[CatchUpCandidate]:
        """
        Scheduled grooves that should be caught up now.

        Does not check that the agent or the groove prompt are available;
        ``run_batch`` does that right before running.
        """
        scheduled = await self._list_scheduled()
        if not scheduled:
            return []

        last_runs = await self._load_last_runs()
        now = self.clock()
        candidates = []

        for entry in scheduled:
            try:
                groove = await self.runner.grooves.get(entry.groove_name)
            except Exception as e:
                logger.debug("Catch-up: groove '%s' unavailable: %s", entry.groove_name, e)
                continue

            decision = decide_catch_up(
                groove, last_runs.get(entry.groove_name), now, self.max_catch_up_age
            )
            if decision.should_run:
                candidates.append(CatchUpCandidate(entry=entry, groove=groove, decision=decision))

        return candidates

    async def run_batch(self, entries: Iterable[ScheduledEntry], quiet: bool = False) -> int:
        """
        Catch up the given scheduled entries one after another.

        Each entry is re-resolved and re-decided against the current history
        first. A failure in one groove is logged and never stops the others.
        Returns the number of grooves that were started.
        """
        started = 0
        for entry in list(entries):
            try:
                if await self._run_entry(entry, quiet):
                    started += 1
            except Exception as e:
                logger.warning("Catch-up failed for groove '%s': %s", entry.groove_name, e)
        return started

    async def _run_entry(self, entry: ScheduledEntry, quiet: bool) -> bool:
        name = entry.groove_name
        try:
            groove = await self.runner.grooves.get(name)
        except GrooveNotFoundError:
            logger.warning("Catch-up skipped: groove '%s' not found", name)
            return False

        last_runs = await self._load_last_runs()
        now = self.clock()
        decision = decide_catch_up(groove, last_runs.get(name), now, self.max_catch_up_age)
        if not decision.should_run:
            logger.debug("Catch-up skipped for '%s': %s", name, decision.reason.value)
            return False

        try:
            agent = await self.runner.agents.by_identifier(entry.agent)
        except AgentNotFoundError:
            logger.warning("Catch-up skipped: agent '%s' for groove '%s' not found", entry.agent, name)
            return False

        try:
            content = await self.runner.grooves.load(name)
        except GrooveNotFoundError:
            logger.warning("Catch-up skipped: content for groove '%s' not available", name)
            return False

        logger.info(
            "Running groove catch-up '%s' (scheduled %s, agent %s)",
            name,
            decision.scheduled_at.isoformat() if decision.scheduled_at else "?",
            entry.agent,
        )

        policy = groove.auto_approve if groove.auto_approve is not None else True
        try:
            await self.runner.execute(
                groove,
                content.prompt,
                agent,
                run_id=format_run_id(name, "catchup", now),
                triggered_by=TriggeredBy.SCHEDULED,
                auto_approve=policy,
                quiet=quiet,
            )
        except RunStartError as e:
            logger.warning("Catch-up skipped for groove '%s': %s", name, e)
            return False
        except Exception as e:
            logger.warning("Catch-up run failed for groove '%s': %s", name, e)
        return True

    async def run_all_non_interactive(self) -> int:
        """Catch up every scheduled groove that needs it (headless startup)."""
        try:
            scheduled = await self._list_scheduled()
            return await self.run_batch(scheduled, quiet=True)
        except Exception as e:
            logger.warning("Catch-up failed: %s", e)
            return 0

    def run_batch_in_background(self, entries: Iterable[ScheduledEntry]) -> asyncio.Task:
        """
        Start ``run_batch`` as a detached task on the running loop and return it.

        Output is quiet; completion is only logged.
        """
        entries = list(entries)
        names = [e.groove_name for e in entries]

        async def _batch():
            try:
                count = await self.run_batch(entries, quiet=True)
            except Exception as e:
                logger.warning("Background catch-up failed: %s", e)
                return 0
            logger.info("Background catch-up completed: %s (%d run)", ", ".join(names), count)
            return count

        task = asyncio.create_task(_batch())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_for_background(self):
        """Wait for detached catch-up batches still in flight."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
