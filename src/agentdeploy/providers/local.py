"""
Local Provider: run agents as Docker Compose projects on this host.

Launch sequence
---------------
1. ``docker-compose down --remove-orphans`` (stale containers, best effort)
2. resolve ports (port store, then docker-compose.yml)
3. write the deploy-time ``.env`` (secrets redacted in logs)
4. ``docker-compose up -d``
5. log ``docker-compose ps`` / ``logs`` for the record

The endpoint is always ``http://localhost:<http_port>``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..commands import run_command
from ..compose import COMPOSE_FILE, container_name
from ..diagnostics import (
    collect_container_diagnostics,
    container_logs,
    inspect_container_env,
    scan_logs,
)
from ..health import Endpoint, PollVerdict
from ..models import DeployAgentParams, DeploymentKind
from ..ports import PortStore, resolve_ports
from ..scaffold import build_deploy_env, write_deploy_env
from .base import DeploymentError, LaunchResult, ProviderBackend

logger = logging.getLogger(__name__)

_COMPOSE_TIMEOUT = 600.0


class LocalProvider(ProviderBackend):
    """Deploy agents with a Compose-compatible CLI.

    Args:
        port_store: Shared port store written by the create job.
        compose_cmd: Compose executable, e.g. ``docker-compose`` or
            ``docker compose`` (split on whitespace).
        collect_diagnostics: Whether diagnose() inspects the container.
    """

    kind = DeploymentKind.LOCAL

    def __init__(
        self,
        port_store: Optional[PortStore] = None,
        compose_cmd: str = "docker-compose",
        collect_diagnostics: bool = True,
    ) -> None:
        self._ports = port_store
        self._compose = tuple(compose_cmd.split())
        self._collect_diagnostics = collect_diagnostics

    async def _compose_run(self, agent_dir: Path, *args: str):
        return await run_command(*self._compose, *args, cwd=agent_dir, timeout=_COMPOSE_TIMEOUT)

    async def _cleanup(self, agent_dir: Path) -> None:
        logger.info("Cleaning up any existing containers in %s", agent_dir)
        try:
            result = await self._compose_run(agent_dir, "down", "--remove-orphans")
        except (OSError, TimeoutError) as exc:
            logger.warning("Cleanup warning (non-critical): %s", exc)
            return
        if not result.ok:
            logger.warning("Cleanup warning (non-critical): %s", result.stderr.strip())

    async def _log_status(self, agent_dir: Path) -> None:
        for args in (("ps",), ("logs",)):
            try:
                result = await self._compose_run(agent_dir, *args)
            except (OSError, TimeoutError) as exc:
                logger.debug("%s %s failed: %s", self._compose[0], args[0], exc)
                continue
            logger.info("Compose %s output:\n%s", args[0], result.stdout)

    async def launch(
        self,
        agent_id: str,
        agent_dir: Path,
        params: DeployAgentParams,
        deployment_id: str,
    ) -> LaunchResult:
        """Bring the agent's compose project up in the background."""
        container = container_name(agent_id)
        logger.info("Using container name: %s", container)

        await self._cleanup(agent_dir)

        try:
            ports = resolve_ports(agent_id, agent_dir, self._ports)
            env = build_deploy_env(ports, container, params.api_key_config)
        except ValueError as exc:
            raise DeploymentError(str(exc)) from exc
        logger.info("Using ports - HTTP: %d, WebSocket: %d", ports.http_port, ports.websocket_port)

        write_deploy_env(agent_dir, env)

        if not (agent_dir / COMPOSE_FILE).exists():
            raise DeploymentError(f"{COMPOSE_FILE} not found in {agent_dir}")

        logger.info("Starting Docker container for agent %s", agent_id)
        try:
            result = await self._compose_run(agent_dir, "up", "-d")
        except (OSError, TimeoutError) as exc:
            raise DeploymentError(f"Failed to start Docker container: {exc}") from exc
        if not result.ok:
            logger.error("Docker compose error: %s", result.stderr.strip())
            raise DeploymentError(f"Failed to start Docker container: {result.stderr.strip()}")

        await self._log_status(agent_dir)

        endpoint = Endpoint.from_port(ports.http_port)
        logger.info("Agent deployed with endpoint: %s", endpoint)
        return LaunchResult(
            endpoint=str(endpoint),
            container_name=container,
            ports=ports,
        )

    async def diagnose(self, launch: LaunchResult, verdict: PollVerdict) -> None:
        """Inspect the container after a failed health check."""
        if not self._collect_diagnostics or not launch.container_name:
            return
        container = launch.container_name
        port = launch.ports.http_port if launch.ports else 0

        report = await collect_container_diagnostics(container, port)
        logger.info("Container diagnostics:\n%s", report)

        logs = await container_logs(container)
        if logs:
            logger.info("Latest container logs after health check failure:\n%s", logs)
        for finding in scan_logs(logs):
            logger.error("DETECTED ERROR: %s", finding)
            if finding.startswith("Wallet"):
                logger.info("Container environment:\n%s", await inspect_container_env(container))
