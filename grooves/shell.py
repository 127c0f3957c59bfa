"""
Helpers for invoking external scheduler tools (launchctl, crontab).

Commands run without a shell; blocking ``subprocess.run`` calls are pushed
to a worker thread so the event loop keeps serving other work.
"""

import asyncio
import subprocess
from typing import Optional, Sequence

from grooves.errors import CommandError

DEFAULT_TIMEOUT = 30


def _run(argv: Sequence[str], stdin: Optional[str], timeout: float) -> str:
    command = " ".join(argv)
    try:
        result = subprocess.run(
            list(argv),
            input=stdin,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise CommandError(command, None, str(e)) from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(command, None, f"timed out after {timeout}s") from e

    if result.returncode != 0:
        raise CommandError(command, result.returncode, result.stderr or result.stdout)
    return result.stdout


async def exec_command(argv: Sequence[str], timeout: float = DEFAULT_TIMEOUT) -> str:
    """Run a command and return its stdout. Raises CommandError on non-zero exit."""
    return await asyncio.to_thread(_run, argv, None, timeout)


async def exec_command_with_stdin(argv: Sequence[str], stdin: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Run a command feeding ``stdin`` (e.g. ``crontab -``)."""
    return await asyncio.to_thread(_run, argv, stdin, timeout)
