"""Exceptions raised by the groove scheduling subsystem."""

from typing import Optional


class GrooveError(Exception):
    """Base class for groove scheduling errors."""


class ScheduleValidationError(GrooveError, ValueError):
    """A groove's schedule is missing, invalid, or not expressible on this scheduler."""


class UnsupportedPlatformError(GrooveError):
    """Scheduling was requested on a platform without launchd or cron."""


class HistoryLockError(GrooveError):
    """The run history lock could not be acquired within the retry budget."""


class RunStartError(GrooveError):
    """The ``running`` record could not be written, so the agent was never started."""


class CommandError(GrooveError):
    """An external scheduler tool (launchctl, crontab) exited non-zero."""

    def __init__(self, command: str, returncode: Optional[int], output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command failed (exit {returncode}): {command}: {output.strip()}")


class GrooveNotFoundError(GrooveError, LookupError):
    """No groove definition exists under the requested name."""


class AgentNotFoundError(GrooveError, LookupError):
    """No agent matches the requested identifier."""
