"""
Provider interface: how an agent workload gets launched.

The orchestrator does not care whether an agent lands in a local Docker
Compose project or a remote TEE. Each provider implements launch(); the
orchestrator then polls the endpoint the provider reports.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from ..health import PollVerdict
from ..models import AgentPorts, DeployAgentParams, DeploymentKind


class DeploymentError(Exception):
    """A create or deploy job could not complete."""


class LaunchResult(BaseModel):
    """What a provider knows once the launch call has returned."""

    endpoint: Optional[str] = None
    app_id: Optional[str] = None
    container_name: Optional[str] = None
    ports: Optional[AgentPorts] = None


class ProviderBackend:
    """Abstract base for deployment targets.

    Subclasses set ``kind`` and implement launch(). diagnose() is
    optional.
    """

    kind: DeploymentKind = DeploymentKind.LOCAL

    async def launch(
        self,
        agent_id: str,
        agent_dir: Path,
        params: DeployAgentParams,
        deployment_id: str,
    ) -> LaunchResult:
        """Start the workload and return as soon as the target accepted it.

        Args:
            agent_id: Agent identifier.
            agent_dir: Directory created by the create job.
            params: Deploy job parameters.
            deployment_id: Identifier of this deployment attempt.

        Returns:
            LaunchResult with at least an endpoint when one is known.

        Raises:
            DeploymentError: If the workload could not be launched.
        """
        raise NotImplementedError

    async def diagnose(self, launch: LaunchResult, verdict: PollVerdict) -> None:
        """Log whatever helps explain a failed health check."""
