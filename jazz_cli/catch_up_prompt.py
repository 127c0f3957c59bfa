"""
Interactive catch-up prompt shown when Jazz starts.

If scheduled grooves missed their run:
1. Lists them with when each run was missed
2. Asks whether to catch them up (default: no)
3. Lets the user pick which grooves to run (all pre-selected)
4. Runs the selection as a background task and returns immediately

Without a terminal, `run_startup_catch_up` catches up every due groove
quietly, logging to ~/.jazz/logs/grooves.log.
"""

import logging
import sys
from datetime import datetime, timedelta
from typing import List, Optional

from grooves.catch_up import CatchUpOrchestrator
from grooves.models import CatchUpCandidate
from grooves.runner import local_now
from jazz_cli.colors import Colors, color
from jazz_cli.config import setup_file_logging

logger = logging.getLogger(__name__)


def _clock_label(moment: datetime) -> str:
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{moment.hour % 12 or 12}:{moment.minute:02d} {suffix}"


def format_missed_time(scheduled_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Phrase like "missed 6:00 AM today", "missed 6:00 AM yesterday" or "missed 2026-02-01 6:00 AM"."""
    if scheduled_at is None:
        return "unknown time"

    now = now or local_now()
    if scheduled_at.tzinfo is not None and now.tzinfo is not None:
        scheduled_at = scheduled_at.astimezone(now.tzinfo)

    time_str = _clock_label(scheduled_at)
    today = now.date()
    if scheduled_at.date() == today:
        return f"missed {time_str} today"
    if scheduled_at.date() == today - timedelta(days=1):
        return f"missed {time_str} yesterday"
    return f"missed {scheduled_at.strftime('%Y-%m-%d')} {time_str}"


def prompt_yes_no(question: str, default: bool = True) -> bool:
    """Prompt for yes/no; Ctrl+C / EOF count as the default."""
    default_str = "Y/n" if default else "y/N"

    while True:
        try:
            value = input(color(f"{question} [{default_str}]: ", Colors.YELLOW)).strip().lower()
        except (KeyboardInterrupt, EOFError):
            print()
            return default

        if not value:
            return default
        if value in ('y', 'yes'):
            return True
        if value in ('n', 'no'):
            return False
        print(color("✗ Please enter 'y' or 'n'", Colors.RED))


def prompt_checklist(title: str, labels: List[str]) -> List[int]:
    """Multi-select checklist with everything pre-selected. Returns chosen indices."""
    print(color(title, Colors.YELLOW))
    print(color("  SPACE to toggle, ENTER to confirm.", Colors.DIM))
    print()

    try:
        from simple_term_menu import TerminalMenu

        menu = TerminalMenu(
            [f"  {label}" for label in labels],
            multi_select=True,
            show_multi_select_hint=False,
            multi_select_cursor="[✓] ",
            multi_select_select_on_accept=False,
            multi_select_empty_ok=True,
            preselected_entries=list(range(len(labels))) or None,
            menu_cursor="→ ",
            menu_cursor_style=("fg_green", "bold"),
            menu_highlight_style=("fg_green",),
            cycle_cursor=True,
            clear_screen=False,
            clear_menu_on_exit=False,
        )
        menu.show()

        if menu.chosen_menu_entries is None:
            return []
        return list(menu.chosen_menu_indices or [])

    except (ImportError, NotImplementedError):
        # Fallback: numbered toggle
        selected = set(range(len(labels)))
        while True:
            for i, label in enumerate(labels):
                marker = color("[✓]", Colors.GREEN) if i in selected else "[ ]"
                print(f"  {marker} {i + 1}. {label}")
            print()
            try:
                val = input(color("  Toggle # (or Enter to confirm): ", Colors.DIM)).strip()
                if not val:
                    break
                idx = int(val) - 1
                if 0 <= idx < len(labels):
                    if idx in selected:
                        selected.discard(idx)
                    else:
                        selected.add(idx)
            except ValueError:
                pass
            except (KeyboardInterrupt, EOFError):
                return []
            print()
        return sorted(selected)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


async def prompt_interactive_catch_up(
    orchestrator: CatchUpOrchestrator,
    confirm=prompt_yes_no,
    select=prompt_checklist,
) -> Optional[List[CatchUpCandidate]]:
    """
    Offer to catch up missed grooves; returns the candidates handed to the
    background batch, or None when nothing was started.
    """
    if not sys.stdout.isatty():
        return None

    try:
        candidates = await orchestrator.get_candidates()
    except Exception as e:
        logger.warning("Catch-up check failed: %s", e)
        return None

    if not candidates:
        return None

    now = local_now()
    print()
    verb = "needs" if len(candidates) == 1 else "need"
    print(color(f"⚠ {_plural(len(candidates), 'groove')} {verb} to catch up:", Colors.YELLOW))
    for candidate in candidates:
        missed = format_missed_time(candidate.decision.scheduled_at, now)
        print(f"   • {candidate.entry.groove_name} ({missed})")
    print()

    if not confirm("Would you like to catch them up?", False):
        print()
        return None

    labels = [
        f"{c.entry.groove_name} ({format_missed_time(c.decision.scheduled_at, now)})"
        for c in candidates
    ]
    print()
    chosen = select("Select grooves to catch up:", labels)
    selected = [candidates[i] for i in chosen if 0 <= i < len(candidates)]

    if not selected:
        print(color("No grooves selected.", Colors.DIM))
        print()
        return None

    print()
    print(color(f"Running {_plural(len(selected), 'groove')} in background...", Colors.CYAN))
    print()

    log_path = setup_file_logging()
    logger.info("Starting background catch-up (log: %s)", log_path)
    orchestrator.run_batch_in_background([c.entry for c in selected])
    return selected


async def run_startup_catch_up(orchestrator: CatchUpOrchestrator, interactive: Optional[bool] = None) -> int:
    """
    Startup hook: prompt in a terminal, otherwise catch up everything quietly.

    Returns the number of grooves started (interactive batches are counted
    when handed to the background task).
    """
    if interactive is None:
        interactive = sys.stdout.isatty()

    if interactive:
        selected = await prompt_interactive_catch_up(orchestrator)
        return len(selected) if selected else 0

    setup_file_logging()
    return await orchestrator.run_all_non_interactive()
