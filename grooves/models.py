"""
Data types shared by the groove scheduler, run history and catch-up engine.

Run records and scheduled entries are persisted as JSON; the ``to_dict`` /
``from_dict`` pairs here define those on-disk shapes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

AUTO_APPROVE_LEVELS = ("read-only", "low-risk", "high-risk")

# True/False, or one of AUTO_APPROVE_LEVELS
AutoApprovePolicy = Union[bool, str]


def parse_auto_approve(value: Any) -> Optional[AutoApprovePolicy]:
    """Accept a bool or a known risk level; anything else means "not set"."""
    if isinstance(value, bool):
        return value
    if value in AUTO_APPROVE_LEVELS:
        return value
    return None


@dataclass
class GrooveMetadata:
    """Groove definition as read from GROOVE.md frontmatter."""
    name: str
    description: str = ""
    path: Optional[str] = None
    agent: Optional[str] = None
    schedule: Optional[str] = None  # cron expression, e.g. "0 * * * *"
    auto_approve: Optional[AutoApprovePolicy] = None
    skills: List[str] = field(default_factory=list)
    catch_up_on_startup: Optional[bool] = None
    max_catch_up_age: Optional[float] = None  # seconds
    max_iterations: Optional[int] = None

    @classmethod
    def from_frontmatter(cls, data: Dict[str, Any], path: Optional[str] = None) -> Optional["GrooveMetadata"]:
        """Build metadata from parsed frontmatter; None when name/description are missing."""
        name = data.get("name")
        description = data.get("description")
        if not isinstance(name, str) or not isinstance(description, str):
            return None

        def _number(key):
            value = data.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return None
            return value

        skills = data.get("skills")
        catch_up = data.get("catchUpOnStartup")
        max_iterations = _number("maxIterations")
        return cls(
            name=name,
            description=description,
            path=path,
            agent=data["agent"] if isinstance(data.get("agent"), str) else None,
            schedule=data["schedule"] if isinstance(data.get("schedule"), str) else None,
            auto_approve=parse_auto_approve(data.get("autoApprove")),
            skills=[s for s in skills if isinstance(s, str)] if isinstance(skills, list) else [],
            catch_up_on_startup=catch_up if isinstance(catch_up, bool) else None,
            max_catch_up_age=_number("maxCatchUpAge"),
            max_iterations=int(max_iterations) if max_iterations is not None else None,
        )


@dataclass
class GrooveContent:
    """Full groove: metadata plus the prompt body."""
    metadata: GrooveMetadata
    prompt: str


@dataclass
class ScheduledEntry:
    """
    Mirror of an OS-level schedule registration.

    Stored as ``schedules/<groove_name>.json``; the file is only written once
    the launchctl load / crontab write has been attempted for that groove.
    """
    groove_name: str
    schedule: str
    agent: str = "default"
    enabled: bool = True
    last_run: Optional[str] = None
    next_run: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "groove_name": self.groove_name,
            "schedule": self.schedule,
            "agent": self.agent,
            "enabled": self.enabled,
        }
        if self.last_run:
            result["last_run"] = self.last_run
        if self.next_run:
            result["next_run"] = self.next_run
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ScheduledEntry"]:
        """Parse a metadata file's contents; None when required fields are missing."""
        if not isinstance(data, dict):
            return None
        groove_name = data.get("groove_name")
        schedule = data.get("schedule")
        if not isinstance(groove_name, str) or not isinstance(schedule, str):
            return None

        agent = data.get("agent")
        enabled = data.get("enabled")
        last_run = data.get("last_run")
        next_run = data.get("next_run")
        return cls(
            groove_name=groove_name,
            schedule=schedule,
            agent=agent if isinstance(agent, str) else "default",
            enabled=enabled if isinstance(enabled, bool) else True,
            last_run=last_run if isinstance(last_run, str) else None,
            next_run=next_run if isinstance(next_run, str) else None,
        )


class RunStatus(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TriggeredBy(Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


@dataclass
class RunRecord:
    """One execution attempt of a groove, from start through completion or failure."""
    groove_name: str
    started_at: str  # ISO-8601
    status: RunStatus = RunStatus.RUNNING
    triggered_by: TriggeredBy = TriggeredBy.MANUAL
    completed_at: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "groove_name": self.groove_name,
            "started_at": self.started_at,
            "status": self.status.value,
            "triggered_by": self.triggered_by.value,
        }
        if self.completed_at:
            result["completed_at"] = self.completed_at
        if self.error:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Optional["RunRecord"]:
        if not isinstance(data, dict):
            return None
        try:
            return cls(
                groove_name=str(data["groove_name"]),
                started_at=str(data["started_at"]),
                status=RunStatus(data.get("status", "running")),
                triggered_by=TriggeredBy(data.get("triggered_by", "manual")),
                completed_at=data.get("completed_at"),
                error=data.get("error"),
            )
        except (KeyError, ValueError):
            return None


class CatchUpReason(Enum):
    """Why a catch-up decision came out the way it did."""
    MISSING_SCHEDULE = "missing-schedule"
    CATCH_UP_DISABLED = "catch-up-disabled"
    INVALID_SCHEDULE = "invalid-schedule"
    ALREADY_RAN = "already-ran"
    MISSED_WINDOW = "missed-window"
    MISSED_RUN = "missed-run"


@dataclass(frozen=True)
class CatchUpDecision:
    should_run: bool
    reason: CatchUpReason
    scheduled_at: Optional[datetime] = None


@dataclass
class CatchUpCandidate:
    """A scheduled groove whose decision says it should run now."""
    entry: ScheduledEntry
    groove: GrooveMetadata
    decision: CatchUpDecision
