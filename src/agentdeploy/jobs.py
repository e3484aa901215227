"""
Job handlers: JSON bytes in, JSON bytes out.

A job framework hands each job its raw argument payload. These handlers
validate it into the parameter models, run the orchestrator, and
serialise the result. Invalid payloads and failed jobs raise; the
framework decides how to report them.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from .models import CreateAgentParams, DeployAgentParams
from .orchestrator import AgentOrchestrator
from .providers import DeploymentError

logger = logging.getLogger(__name__)


def _parse(model, payload: bytes):
    try:
        return model.model_validate_json(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid {model.__name__}: {exc}") from exc


async def handle_create_agent(
    payload: bytes,
    orchestrator: Optional[AgentOrchestrator] = None,
) -> bytes:
    """Run a create-agent job.

    Args:
        payload: JSON-encoded CreateAgentParams.
        orchestrator: Orchestrator to use; a default one otherwise.

    Returns:
        JSON-encoded AgentCreationResult.

    Raises:
        ValueError: If the payload does not validate.
        DeploymentError: If the job fails.
    """
    params = _parse(CreateAgentParams, payload)
    orchestrator = orchestrator or AgentOrchestrator()
    try:
        result = await orchestrator.create_agent(params)
    except DeploymentError:
        logger.exception("Create job for %s failed", params.name)
        raise
    return result.model_dump_json().encode("utf-8")


async def handle_deploy_agent(
    payload: bytes,
    orchestrator: Optional[AgentOrchestrator] = None,
) -> bytes:
    """Run a deploy-agent job. Same contract as handle_create_agent()."""
    params = _parse(DeployAgentParams, payload)
    orchestrator = orchestrator or AgentOrchestrator()
    try:
        result = await orchestrator.deploy_agent(params)
    except DeploymentError:
        logger.exception("Deploy job for %s failed", params.agent_id)
        raise
    return result.model_dump_json().encode("utf-8")
