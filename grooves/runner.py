"""
Groove execution with run history bookkeeping.

Every run appends a ``running`` record before the agent starts and patches
it to ``completed`` or ``failed`` afterwards. This is what the OS scheduler
ends up invoking (``jazz groove run <name> --agent <id> --auto-approve``) and
what catch-up uses for missed runs.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from grooves.errors import RunStartError
from grooves.interfaces import AgentExecutor, AgentResolver, AgentRunRequest, GrooveProvider
from grooves.models import AutoApprovePolicy, GrooveMetadata, RunRecord, RunStatus, TriggeredBy
from grooves.run_history import append_record, patch_latest_running
from jazz_cli.config import get_groove_settings, load_env_file

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 50


def local_now() -> datetime:
    """Current time as an aware datetime in the local timezone."""
    return datetime.now().astimezone()


def format_run_id(groove_name: str, kind: str, now: datetime) -> str:
    return f"groove-{groove_name}-{kind}-{int(now.timestamp() * 1000)}"


class GrooveRunner:
    """Runs grooves through the agent executor and records each attempt."""

    def __init__(
        self,
        grooves: GrooveProvider,
        agents: AgentResolver,
        executor: AgentExecutor,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.grooves = grooves
        self.agents = agents
        self.executor = executor
        self._settings = settings

    @property
    def settings(self) -> Dict[str, Any]:
        if self._settings is None:
            self._settings = get_groove_settings()
        return self._settings

    def max_iterations_for(self, groove: GrooveMetadata) -> int:
        if groove.max_iterations:
            return groove.max_iterations
        return int(self.settings.get("default_max_iterations", DEFAULT_MAX_ITERATIONS))

    async def execute(
        self,
        groove: GrooveMetadata,
        prompt: str,
        agent: Any,
        *,
        run_id: str,
        triggered_by: TriggeredBy,
        auto_approve: Optional[AutoApprovePolicy] = None,
        quiet: bool = False,
        record_required: bool = True,
    ) -> Any:
        """
        Record a ``running`` entry, run the agent, then mark the entry finished.

        If the start record cannot be written the run is abandoned with
        RunStartError when ``record_required`` is set; otherwise the failure
        is logged and the run proceeds. Executor errors are recorded and
        re-raised.
        """
        record = RunRecord(
            groove_name=groove.name,
            started_at=local_now().isoformat(),
            status=RunStatus.RUNNING,
            triggered_by=triggered_by,
        )
        try:
            await append_record(record)
        except Exception as e:
            if record_required:
                raise RunStartError(f"Could not record start of groove '{groove.name}': {e}") from e
            logger.warning("Could not record start of groove '%s': %s", groove.name, e)

        request = AgentRunRequest(
            agent=agent,
            user_input=prompt,
            session_id=run_id,
            conversation_id=run_id,
            max_iterations=self.max_iterations_for(groove),
            auto_approve_policy=auto_approve,
            quiet=quiet,
        )
        try:
            result = await self.executor.run(request)
        except Exception as e:
            await self._finish(groove.name, RunStatus.FAILED, error=str(e) or type(e).__name__)
            raise

        await self._finish(groove.name, RunStatus.COMPLETED)
        return result

    async def _finish(self, groove_name: str, status: RunStatus, error: Optional[str] = None):
        updates = {"status": status, "completed_at": local_now().isoformat()}
        if error:
            updates["error"] = error
        try:
            await patch_latest_running(groove_name, updates)
        except Exception as e:
            logger.warning("Could not record %s for groove '%s': %s", status.value, groove_name, e)

    async def run_groove(
        self,
        name: str,
        agent_id: Optional[str] = None,
        auto_approve: bool = False,
        headless: bool = False,
    ) -> Any:
        """
        Run a groove by name.

        ``headless`` marks runs started by launchd/cron: the ~/.jazz/.env file
        is reloaded and the record is tagged ``scheduled``.

        Raises:
            GrooveNotFoundError / AgentNotFoundError: when lookups fail.
        """
        if headless:
            load_env_file()

        content = await self.grooves.load(name)
        groove = content.metadata
        agent = await self.agents.by_identifier(agent_id or groove.agent or "default")

        policy = True if auto_approve else groove.auto_approve
        triggered_by = TriggeredBy.SCHEDULED if headless else TriggeredBy.MANUAL
        run_id = format_run_id(name, "scheduled" if headless else "manual", local_now())

        logger.info("Running groove '%s' (%s)", name, triggered_by.value)
        return await self.execute(
            groove,
            content.prompt,
            agent,
            run_id=run_id,
            triggered_by=triggered_by,
            auto_approve=policy,
            quiet=headless,
            record_required=False,
        )
