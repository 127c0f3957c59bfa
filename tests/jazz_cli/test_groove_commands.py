"""
Tests for the `jazz groove` subcommand handlers in jazz_cli/groove.py.
"""

from argparse import Namespace
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from grooves.catch_up import CatchUpOrchestrator
from grooves.errors import GrooveNotFoundError
from grooves.interfaces import AgentExecutor, AgentResolver, GrooveProvider
from grooves.models import GrooveContent, GrooveMetadata, RunRecord, RunStatus, ScheduledEntry, TriggeredBy
from grooves.run_history import append_record
from grooves.runner import GrooveRunner
from grooves.scheduler import SchedulerService, UnsupportedScheduler
from jazz_cli.groove import (
    catchup_command,
    groove_command,
    history_command,
    list_scheduled_command,
    schedule_command,
    show_command,
    unschedule_command,
)


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path, monkeypatch):
    monkeypatch.setenv("JAZZ_HOME", str(tmp_path / "jazz"))


class MemoryScheduler(SchedulerService):
    scheduler_type = "cron"

    def __init__(self):
        self.entries = {}

    async def schedule(self, groove, agent_id):
        self.entries[groove.name] = ScheduledEntry(groove_name=groove.name, schedule=groove.schedule, agent=agent_id)

    async def unschedule(self, groove_name):
        self.entries.pop(groove_name, None)

    async def list_scheduled(self):
        return list(self.entries.values())

    async def is_scheduled(self, groove_name):
        return groove_name in self.entries


class Grooves(GrooveProvider):
    def __init__(self, *grooves):
        self.grooves = {g.name: g for g in grooves}

    async def get(self, name):
        if name not in self.grooves:
            raise GrooveNotFoundError(f"Groove not found: {name}")
        return self.grooves[name]

    async def load(self, name):
        return GrooveContent(await self.get(name), "prompt")


class Agents(AgentResolver):
    async def by_identifier(self, identifier):
        return identifier


class Executor(AgentExecutor):
    async def run(self, request):
        return "ok"


def _setup(*grooves, scheduler=None):
    runner = GrooveRunner(Grooves(*grooves), Agents(), Executor(), settings={})
    scheduler = scheduler or MemoryScheduler()
    return scheduler, runner


DAILY = GrooveMetadata(name="daily", description="d", schedule="0 8 * * *", agent="writer")


class TestScheduleCommands:
    @pytest.mark.asyncio
    async def test_schedule_uses_groove_agent(self, capsys):
        scheduler, runner = _setup(DAILY)
        assert await schedule_command(scheduler, runner, "daily") is True
        assert scheduler.entries["daily"].agent == "writer"
        out = capsys.readouterr().out
        assert "scheduled successfully" in out
        assert "At 8:00 AM" in out

    @pytest.mark.asyncio
    async def test_schedule_agent_override(self):
        scheduler, runner = _setup(DAILY)
        await schedule_command(scheduler, runner, "daily", agent_id="ops")
        assert scheduler.entries["daily"].agent == "ops"

    @pytest.mark.asyncio
    async def test_schedule_unknown_groove(self, capsys):
        scheduler, runner = _setup()
        assert await schedule_command(scheduler, runner, "nope") is False
        assert "not found" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_schedule_without_cron(self, capsys):
        scheduler, runner = _setup(GrooveMetadata(name="adhoc", description="d"))
        assert await schedule_command(scheduler, runner, "adhoc") is False
        assert "no schedule defined" in capsys.readouterr().out
        assert scheduler.entries == {}

    @pytest.mark.asyncio
    async def test_schedule_unsupported_platform(self, capsys):
        scheduler, runner = _setup(DAILY, scheduler=UnsupportedScheduler())
        assert await schedule_command(scheduler, runner, "daily") is False
        assert "not supported" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_unschedule(self, capsys):
        scheduler, runner = _setup(DAILY)
        await schedule_command(scheduler, runner, "daily")

        assert await unschedule_command(scheduler, "daily") is True
        assert scheduler.entries == {}
        assert await unschedule_command(scheduler, "daily") is True
        assert "not currently scheduled" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_list_scheduled(self, capsys):
        scheduler, runner = _setup(DAILY)
        await list_scheduled_command(scheduler)
        assert "No grooves are currently scheduled" in capsys.readouterr().out

        await schedule_command(scheduler, runner, "daily")
        capsys.readouterr()
        await list_scheduled_command(scheduler)
        out = capsys.readouterr().out
        assert "daily" in out
        assert "Total: 1 scheduled groove(s)" in out


class TestShowCommand:
    @pytest.mark.asyncio
    async def test_details_status_and_prompt(self, capsys):
        groove = GrooveMetadata(
            name="daily", description="Morning digest", schedule="0 8 * * *", agent="writer",
            skills=["email"], catch_up_on_startup=True, max_catch_up_age=3600,
        )
        scheduler, runner = _setup(groove)
        await scheduler.schedule(groove, "writer")
        await append_record(RunRecord("daily", "2026-02-03T08:00:00+00:00", RunStatus.COMPLETED,
                                      completed_at="2026-02-03T08:00:10+00:00"))

        assert await show_command(scheduler, runner, "daily") is True
        out = capsys.readouterr().out
        assert "Groove: daily" in out
        assert "Morning digest" in out
        assert "At 8:00 AM (0 8 * * *)" in out
        assert "registered" in out
        assert "not registered" not in out
        assert "Skills:      email" in out
        assert "Max catch-up age (seconds): 3600" in out
        assert "[completed] (10s)" in out
        assert out.rstrip().endswith("prompt")

    @pytest.mark.asyncio
    async def test_unregistered_groove(self, capsys):
        scheduler, runner = _setup(DAILY)
        assert await show_command(scheduler, runner, "daily") is True
        out = capsys.readouterr().out
        assert "not registered" in out
        assert "Last run" not in out

    @pytest.mark.asyncio
    async def test_unknown_groove(self, capsys):
        scheduler, runner = _setup()
        assert await show_command(scheduler, runner, "nope") is False
        assert "Groove not found: nope" in capsys.readouterr().out


class TestHistoryCommand:
    @pytest.mark.asyncio
    async def test_empty(self, capsys):
        await history_command()
        out = capsys.readouterr().out
        assert "No run history found." in out
        assert "run-history.json" in out

    @pytest.mark.asyncio
    async def test_filtered_newest_first(self, capsys):
        await append_record(RunRecord("a", "2026-02-03T08:00:00+00:00", RunStatus.COMPLETED,
                                      TriggeredBy.SCHEDULED, completed_at="2026-02-03T08:00:42+00:00"))
        await append_record(RunRecord("b", "2026-02-03T08:01:00+00:00", RunStatus.RUNNING))
        await append_record(RunRecord("a", "2026-02-03T09:00:00+00:00", RunStatus.FAILED,
                                      error="agent crashed"))

        await history_command("a")
        out = capsys.readouterr().out
        assert "b " not in out
        assert out.index("09:00:00") < out.index("08:00:00")
        assert "(42s)" in out
        assert "agent crashed" in out
        assert "[scheduled]" in out


class TestCatchupCommand:
    @pytest.mark.asyncio
    async def test_nothing_to_catch_up(self, capsys):
        scheduler, runner = _setup(DAILY)
        orchestrator = CatchUpOrchestrator(scheduler, runner)
        assert await catchup_command(orchestrator, select=MagicMock()) == 0
        assert "No grooves need catching up." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_runs_selected(self, capsys):
        groove = GrooveMetadata(name="morning", description="d", schedule="0 6 * * *", catch_up_on_startup=True)
        scheduler, runner = _setup(groove)
        await scheduler.schedule(groove, "default")
        orchestrator = CatchUpOrchestrator(
            scheduler, runner, clock=lambda: datetime(2026, 2, 3, 8, 0, tzinfo=timezone.utc),
        )

        count = await catchup_command(orchestrator, select=lambda title, labels: [0])
        assert count == 1
        assert "Ran 1 groove(s)" in capsys.readouterr().out


class TestGrooveCommandDispatch:
    def test_unknown_subcommand_exits(self, capsys):
        orchestrator = MagicMock()
        with pytest.raises(SystemExit) as exc:
            groove_command(Namespace(groove_command="bogus"), orchestrator)
        assert exc.value.code == 1
        assert "Unknown groove command: bogus" in capsys.readouterr().out

    def test_run_dispatch(self, monkeypatch):
        run = AsyncMock(return_value=True)
        monkeypatch.setattr("jazz_cli.groove.run_command", run)
        orchestrator = MagicMock()

        groove_command(
            Namespace(groove_command="run", name="daily", agent="ops", auto_approve=True, headless=False),
            orchestrator,
        )
        run.assert_awaited_once_with(
            orchestrator.runner, "daily", agent_id="ops", auto_approve=True, headless=False,
        )

    def test_show_dispatch(self, monkeypatch):
        show = AsyncMock(return_value=True)
        monkeypatch.setattr("jazz_cli.groove.show_command", show)
        orchestrator = MagicMock()

        groove_command(Namespace(groove_command="show", name="daily"), orchestrator)
        show.assert_awaited_once_with(orchestrator.scheduler, orchestrator.runner, "daily")
