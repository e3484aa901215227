"""Async subprocess helper shared by the local provider and diagnostics."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0


@dataclass
class CommandResult:
    """Captured result of one external command."""

    args: tuple
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(
    *args: str,
    cwd: Optional[Path] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> CommandResult:
    """Run a command without blocking the event loop.

    Args:
        *args: Program and arguments.
        cwd: Working directory.
        timeout: Seconds before the process is killed.

    Returns:
        CommandResult with decoded output.

    Raises:
        FileNotFoundError: If the program is not installed.
        TimeoutError: If the command exceeds ``timeout``.
    """
    logger.debug("Running: %s (cwd=%s)", " ".join(args), cwd)
    proc = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd) if cwd else None,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise TimeoutError(f"{args[0]} timed out after {timeout:.0f}s")

    return CommandResult(
        args=args,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
