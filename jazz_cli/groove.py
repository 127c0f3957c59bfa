"""
Groove subcommand handlers.

Handles: jazz groove [run|show|schedule|unschedule|scheduled|history|catchup]

Argument parsing happens in the CLI entry point; these handlers receive the
parsed namespace plus a ``CatchUpOrchestrator`` carrying the scheduler, groove
provider, agent resolver and executor.
"""

import asyncio
import logging
import sys
from datetime import datetime
from typing import Optional

from grooves.catch_up import CatchUpOrchestrator
from grooves.cron_utils import describe
from grooves.errors import GrooveError, GrooveNotFoundError
from grooves.models import RunStatus
from grooves.run_history import get_groove_history, get_recent_runs, history_file_path
from grooves.runner import GrooveRunner
from grooves.scheduler import SchedulerService
from jazz_cli.catch_up_prompt import format_missed_time, prompt_checklist
from jazz_cli.colors import Colors, color
from jazz_cli.config import setup_file_logging

logger = logging.getLogger(__name__)


def _schedule_label(schedule: str) -> str:
    return describe(schedule) or schedule


async def run_command(runner: GrooveRunner, name: str, agent_id: Optional[str] = None,
                      auto_approve: bool = False, headless: bool = False) -> bool:
    """Run a groove now. Headless runs are the ones launchd/cron start."""
    if headless:
        setup_file_logging()
    try:
        await runner.run_groove(name, agent_id=agent_id, auto_approve=auto_approve, headless=headless)
    except GrooveError as e:
        print(color(f"✗ {e}", Colors.RED))
        return False
    except Exception as e:
        logger.error("Groove '%s' failed: %s", name, e)
        print(color(f"✗ Groove '{name}' failed: {e}", Colors.RED))
        return False
    print(color(f"✓ Groove '{name}' completed", Colors.GREEN))
    return True


async def schedule_command(scheduler: SchedulerService, runner: GrooveRunner, name: str,
                           agent_id: Optional[str] = None) -> bool:
    """Register a groove with the system scheduler."""
    try:
        groove = await runner.grooves.get(name)
    except GrooveNotFoundError:
        print(color(f"✗ Groove '{name}' not found.", Colors.RED))
        return False

    if not groove.schedule:
        print(color(f"✗ Groove '{name}' has no schedule defined.", Colors.RED))
        print(color("  Add a 'schedule' field to the groove's GROOVE.md frontmatter, e.g.:", Colors.DIM))
        print(color('    schedule: "0 * * * *"  # Every hour', Colors.DIM))
        return False

    scheduler_type = scheduler.get_scheduler_type()
    if scheduler_type == "unsupported":
        print(color("✗ Scheduling is not supported on this platform (macOS and Linux only).", Colors.RED))
        return False

    if await scheduler.is_scheduled(name):
        print(color(f"Groove '{name}' is already scheduled. Updating...", Colors.DIM))

    agent = agent_id or groove.agent or "default"
    try:
        await scheduler.schedule(groove, agent)
    except GrooveError as e:
        print(color(f"✗ {e}", Colors.RED))
        return False

    print(color(f"✓ Groove '{name}' scheduled successfully!", Colors.GREEN))
    print(f"  Schedule:  {_schedule_label(groove.schedule)} ({groove.schedule})")
    print(f"  Agent:     {agent}")
    print(f"  Scheduler: {scheduler_type}")
    if groove.auto_approve is None:
        print(color("  ⚠ No auto-approve policy set. Scheduled runs use --auto-approve.", Colors.YELLOW))
    print(color(f"  To unschedule: jazz groove unschedule {name}", Colors.DIM))
    return True


async def show_command(scheduler: SchedulerService, runner: GrooveRunner, name: str) -> bool:
    """Show a groove's definition, schedule status, last run and prompt."""
    try:
        content = await runner.grooves.load(name)
    except GrooveNotFoundError:
        print(color(f"✗ Groove not found: {name}", Colors.RED))
        return False

    groove = content.metadata
    print()
    print(color(f"📋 Groove: {groove.name}", Colors.CYAN, Colors.BOLD))
    print()
    print(f"  Description: {groove.description}")
    if groove.path:
        print(f"  Path:        {groove.path}")
    if groove.agent:
        print(f"  Agent:       {groove.agent}")
    if groove.schedule:
        label = describe(groove.schedule)
        print(f"  Schedule:    {f'{label} ({groove.schedule})' if label else groove.schedule}")
        scheduled = await scheduler.is_scheduled(name)
        status = color("registered", Colors.GREEN) if scheduled else color("not registered", Colors.DIM)
        print(f"  Scheduler:   {status}")
    if groove.auto_approve is not None:
        print(f"  Auto-approve: {groove.auto_approve}")
    if groove.skills:
        print(f"  Skills:      {', '.join(groove.skills)}")
    if groove.catch_up_on_startup is not None:
        print(f"  Catch-up on startup: {groove.catch_up_on_startup}")
    if groove.max_catch_up_age is not None:
        print(f"  Max catch-up age (seconds): {groove.max_catch_up_age}")

    runs = await get_groove_history(name)
    if runs:
        last = runs[-1]
        print(f"  Last run:    {last.started_at} [{last.status.value}]{_duration(last.started_at, last.completed_at)}")

    print()
    print("─" * 60)
    print("Prompt:")
    print("─" * 60)
    print(content.prompt)
    return True


async def unschedule_command(scheduler: SchedulerService, name: str) -> bool:
    if scheduler.get_scheduler_type() == "unsupported":
        print(color("✗ Scheduling is not supported on this platform (macOS and Linux only).", Colors.RED))
        return False

    if not await scheduler.is_scheduled(name):
        print(color(f"Groove '{name}' is not currently scheduled.", Colors.DIM))
        return True

    try:
        await scheduler.unschedule(name)
    except GrooveError as e:
        print(color(f"✗ {e}", Colors.RED))
        return False
    print(color(f"✓ Groove '{name}' unscheduled successfully.", Colors.GREEN))
    return True


async def list_scheduled_command(scheduler: SchedulerService):
    """List all scheduled grooves."""
    scheduler_type = scheduler.get_scheduler_type()
    if scheduler_type == "unsupported":
        print(color("Scheduling is not supported on this platform (macOS and Linux only).", Colors.DIM))
        return

    scheduled = await scheduler.list_scheduled()
    if not scheduled:
        print(color("No grooves are currently scheduled.", Colors.DIM))
        print(color("To schedule a groove: jazz groove schedule <name>", Colors.DIM))
        return

    print()
    print(color(f"Scheduled grooves ({scheduler_type})", Colors.CYAN, Colors.BOLD))
    print()
    for entry in scheduled:
        status = color("[active]", Colors.GREEN) if entry.enabled else color("[disabled]", Colors.RED)
        print(f"  {color(entry.groove_name, Colors.YELLOW)} {status}")
        print(f"    Schedule:  {_schedule_label(entry.schedule)}")
        print(f"    Agent:     {entry.agent}")
    print()
    print(color(f"Total: {len(scheduled)} scheduled groove(s)", Colors.DIM))


def _duration(started_at: str, completed_at: Optional[str]) -> str:
    if not completed_at:
        return ""
    try:
        seconds = (datetime.fromisoformat(completed_at) - datetime.fromisoformat(started_at)).total_seconds()
    except (TypeError, ValueError):
        return ""
    return f" ({round(seconds)}s)"


async def history_command(name: Optional[str] = None, limit: int = 20):
    """Show recent runs, optionally for one groove."""
    if name:
        runs = list(reversed(await get_groove_history(name)))[:limit]
    else:
        runs = await get_recent_runs(limit)

    if not runs:
        print(color("No run history found.", Colors.DIM))
        print(color(f"  History file: {history_file_path()}", Colors.DIM))
        return

    icons = {
        RunStatus.COMPLETED: color("✓", Colors.GREEN),
        RunStatus.FAILED: color("✗", Colors.RED),
        RunStatus.RUNNING: color("…", Colors.YELLOW),
    }
    print()
    for run in runs:
        line = f"  {icons[run.status]} {run.groove_name}  {run.started_at}{_duration(run.started_at, run.completed_at)}"
        print(f"{line}  [{run.triggered_by.value}]")
        if run.error:
            print(color(f"      {run.error}", Colors.RED))
    print()


async def catchup_command(orchestrator: CatchUpOrchestrator, select=prompt_checklist) -> int:
    """List grooves that missed a run, let the user pick, and run them now."""
    print(color(
        "Scheduled runs only fire while the machine is awake. Runs missed while it "
        "was asleep or off can be run now.", Colors.DIM))
    print()

    candidates = await orchestrator.get_candidates()
    if not candidates:
        print(color("No grooves need catching up.", Colors.DIM))
        print(color(
            "  Grooves must be scheduled, have catchUpOnStartup: true, and have missed "
            "their last run within the max catch-up window.", Colors.DIM))
        return 0

    labels = [
        f"{c.entry.groove_name} ({_schedule_label(c.entry.schedule)}), "
        f"{format_missed_time(c.decision.scheduled_at)}"
        for c in candidates
    ]
    chosen = select("Select grooves to run now:", labels)
    entries = [candidates[i].entry for i in chosen if 0 <= i < len(candidates)]
    if not entries:
        print(color("No grooves selected.", Colors.DIM))
        return 0

    count = await orchestrator.run_batch(entries)
    print(color(f"✓ Ran {count} groove(s)", Colors.GREEN))
    return count


def groove_command(args, orchestrator: CatchUpOrchestrator):
    """Handle groove subcommands."""
    subcmd = getattr(args, 'groove_command', None)
    scheduler = orchestrator.scheduler
    runner = orchestrator.runner
    name = getattr(args, 'name', None)

    if subcmd == "run":
        ok = asyncio.run(run_command(
            runner, name,
            agent_id=getattr(args, 'agent', None),
            auto_approve=getattr(args, 'auto_approve', False),
            headless=getattr(args, 'headless', not sys.stdin.isatty()),
        ))
    elif subcmd == "show":
        ok = asyncio.run(show_command(scheduler, runner, name))
    elif subcmd == "schedule":
        ok = asyncio.run(schedule_command(scheduler, runner, name, getattr(args, 'agent', None)))
    elif subcmd == "unschedule":
        ok = asyncio.run(unschedule_command(scheduler, name))
    elif subcmd is None or subcmd == "scheduled":
        asyncio.run(list_scheduled_command(scheduler))
        ok = True
    elif subcmd == "history":
        asyncio.run(history_command(name, getattr(args, 'limit', 20)))
        ok = True
    elif subcmd == "catchup":
        asyncio.run(catchup_command(orchestrator))
        ok = True
    else:
        print(f"Unknown groove command: {subcmd}")
        print("Usage: jazz groove [run|show|schedule|unschedule|scheduled|history|catchup]")
        ok = False

    if not ok:
        sys.exit(1)
