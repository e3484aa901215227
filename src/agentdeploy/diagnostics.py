"""
Best-effort diagnostics for agents that fail to come up.

Nothing here influences a readiness verdict. Every helper swallows its
own failures and returns whatever it managed to learn, so the
orchestrator can log it and move on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from .commands import run_command

logger = logging.getLogger(__name__)

CDP_VARS = ("CDP_API_KEY_NAME", "CDP_API_KEY_PRIVATE_KEY")

# (signature in container logs, explanation)
LOG_SIGNATURES = (
    ("Failed to initialize wallet", "Wallet initialization failed - CDP credentials may be invalid"),
    ("EADDRINUSE", "Port already in use - container cannot bind to the required port"),
    ("Out of memory", "Container terminated due to memory constraints"),
    ("Killed", "Container terminated due to memory constraints"),
)


async def tcp_reachable(host: str, port: int, timeout: float = 2.0) -> bool:
    """Whether a TCP connection to host:port can be opened."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError) as exc:
        logger.warning("TCP connection to %s:%d failed: %s", host, port, exc)
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError as exc:
        logger.debug("Closing probe connection to %s:%d: %s", host, port, exc)
    logger.info("TCP connection to %s:%d succeeded", host, port)
    return True


def scan_logs(logs: str) -> List[str]:
    """Known failure explanations found in container logs, deduplicated."""
    found: List[str] = []
    for signature, explanation in LOG_SIGNATURES:
        if signature in logs and explanation not in found:
            found.append(explanation)
    return found


async def _docker(*args: str) -> str:
    try:
        result = await run_command("docker", *args, timeout=30)
    except (OSError, TimeoutError) as exc:
        logger.debug("docker %s failed: %s", " ".join(args), exc)
        return ""
    return result.stdout.strip()


async def container_logs(container: str, tail: int = 200) -> str:
    """Recent stdout of a container, or an empty string."""
    try:
        result = await run_command("docker", "logs", "--tail", str(tail), container, timeout=30)
    except (OSError, TimeoutError) as exc:
        logger.debug("docker logs %s failed: %s", container, exc)
        return ""
    # docker logs replays the container's stderr on our stderr
    return result.stdout + result.stderr


async def collect_container_diagnostics(container: str, port: int) -> str:
    """Human-readable report on a container's state and port binding."""
    lines: List[str] = []

    state = await _docker("inspect", "--format", "{{.State.Status}}", container)
    lines.append(f"Container state: {state or 'unknown'}")

    listening = await _docker("exec", container, "netstat", "-tuln")
    if listening:
        lines.append(f"Container ports:\n{listening}")
        if f":{port}" not in listening:
            lines.append(f"WARNING: Expected port {port} not found in netstat output")

    restarts = await _docker("inspect", "--format", "{{.RestartCount}}", container)
    if restarts:
        lines.append(f"Container restart count: {restarts}")
        if restarts != "0":
            lines.append("WARNING: Container has restarted, indicating potential issues")

    return "\n".join(lines)


async def inspect_container_env(container: str) -> str:
    """Report which CDP credentials are present in a running container.

    Values are never included, only presence.
    """
    state = await _docker("inspect", "--format", "{{.State.Status}}", container)
    if state != "running":
        return f"Container is not running, current status: {state or 'unknown'}"

    env_output = await _docker("exec", container, "env")
    names = {line.split("=", 1)[0] for line in env_output.splitlines() if "=" in line}

    lines = [f"Environment variables in container '{container}':"]
    for var in CDP_VARS:
        if var in names:
            lines.append(f"{var}=***REDACTED***")
        else:
            lines.append(f"{var} not found in container environment!")
            logger.error("%s not found in container environment", var)
    return "\n".join(lines)
