"""
Groove scheduling for Jazz.

A groove is a prompt plus metadata that an agent runs on a cron schedule.
This package provides:
- Registration with the OS scheduler (launchd on macOS, cron on Linux)
- A lock-protected run history in ~/.jazz/run-history.json
- Catch-up of runs missed while the machine was asleep or off

Groove discovery, agent lookup and the agent runtime are supplied by the
caller through the base classes in ``grooves.interfaces``.
"""

from grooves.catch_up import CatchUpOrchestrator, decide_catch_up
from grooves.cron_utils import describe, is_valid, most_recent_firing, normalize
from grooves.models import (
    CatchUpCandidate,
    CatchUpDecision,
    CatchUpReason,
    GrooveContent,
    GrooveMetadata,
    RunRecord,
    RunStatus,
    ScheduledEntry,
    TriggeredBy,
)
from grooves.run_history import (
    append_record,
    get_groove_history,
    get_recent_runs,
    history_file_path,
    load_history,
    patch_latest_running,
)
from grooves.runner import GrooveRunner
from grooves.scheduler import (
    CronScheduler,
    LaunchdScheduler,
    SchedulerService,
    UnsupportedScheduler,
    create_scheduler,
)

__all__ = [
    "CatchUpOrchestrator",
    "decide_catch_up",
    "describe",
    "is_valid",
    "most_recent_firing",
    "normalize",
    "CatchUpCandidate",
    "CatchUpDecision",
    "CatchUpReason",
    "GrooveContent",
    "GrooveMetadata",
    "RunRecord",
    "RunStatus",
    "ScheduledEntry",
    "TriggeredBy",
    "append_record",
    "get_groove_history",
    "get_recent_runs",
    "history_file_path",
    "load_history",
    "patch_latest_running",
    "GrooveRunner",
    "CronScheduler",
    "LaunchdScheduler",
    "SchedulerService",
    "UnsupportedScheduler",
    "create_scheduler",
]
