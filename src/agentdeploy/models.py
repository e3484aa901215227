"""
Pydantic models for agent job parameters and results.

The create and deploy jobs exchange these as JSON. Anything the job
framework hands us is validated here before the orchestrator touches
the filesystem, Docker, or the TEE API.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_HTTP_PORT = 3000


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AgentMode(str, Enum):
    """How the agent runs once started."""

    AUTONOMOUS = "autonomous"
    CHAT = "chat"


class DeploymentKind(str, Enum):
    """Where a deployed agent lives."""

    LOCAL = "local"
    TEE = "tee"


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------

class AgentConfig(BaseModel):
    """Runtime behaviour of the agent."""

    mode: AgentMode = Field(default=AgentMode.CHAT)
    model: str = Field(default="gpt-4o-mini", description="LLM model name")


class DeploymentConfig(BaseModel):
    """Deployment options chosen at creation time."""

    tee_enabled: bool = False
    docker_compose_path: Optional[Path] = None
    http_port: Optional[int] = Field(
        default=None,
        ge=1,
        le=65534,
        description="Host HTTP port; the WebSocket port is always http_port + 1",
    )


class ApiKeyConfig(BaseModel):
    """Credentials injected into the agent environment."""

    openai_api_key: Optional[str] = None
    cdp_api_key_name: Optional[str] = None
    cdp_api_key_private_key: Optional[str] = None


class AgentPorts(BaseModel):
    """HTTP and WebSocket ports allocated to one agent."""

    model_config = {"frozen": True}

    http_port: int = Field(ge=1, le=65535)
    websocket_port: int = Field(ge=1, le=65535)

    @classmethod
    def from_http_port(cls, http_port: Optional[int] = None) -> "AgentPorts":
        """Derive the port pair from an HTTP port (default 3000).

        Args:
            http_port: Host HTTP port, or None for the default.

        Returns:
            AgentPorts with websocket_port = http_port + 1.
        """
        port = DEFAULT_HTTP_PORT if http_port is None else http_port
        if not 1 <= port <= 65534:
            raise ValueError(f"HTTP port out of range: {port}")
        return cls(http_port=port, websocket_port=port + 1)


# ---------------------------------------------------------------------------
# Job parameters
# ---------------------------------------------------------------------------

class CreateAgentParams(BaseModel):
    """Input of the create-agent job."""

    name: str
    agent_config: AgentConfig = Field(default_factory=AgentConfig)
    deployment_config: DeploymentConfig = Field(default_factory=DeploymentConfig)
    api_key_config: ApiKeyConfig = Field(default_factory=ApiKeyConfig)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        """Reject empty agent names."""
        if not v.strip():
            raise ValueError("agent name must not be empty")
        return v


class DeployAgentParams(BaseModel):
    """Input of the deploy-agent job.

    ``tee_pubkey``, ``tee_app_id`` and ``tee_salt`` are carried only for the
    job payload format; deployment does not read them.
    """

    agent_id: str
    api_key_config: Optional[ApiKeyConfig] = None
    encrypted_env: Optional[str] = Field(
        default=None,
        description="Environment already encrypted with the TEE public key",
    )
    tee_pubkey: Optional[str] = None
    tee_app_id: Optional[str] = None
    tee_salt: Optional[str] = None
    fail_on_unhealthy: Optional[bool] = Field(
        default=None,
        description="Override the configured policy for a failed health check",
    )


# ---------------------------------------------------------------------------
# Job results
# ---------------------------------------------------------------------------

class AgentCreationResult(BaseModel):
    """Output of the create-agent job."""

    agent_id: str
    files_created: List[str] = Field(default_factory=list)
    ports: Optional[AgentPorts] = None
    tee_pubkey: Optional[str] = None
    tee_salt: Optional[str] = None


class AgentDeploymentResult(BaseModel):
    """Output of the deploy-agent job.

    ``tee_pubkey`` is kept for the job payload format and is never set.
    """

    agent_id: str
    deployment_id: str
    kind: DeploymentKind = DeploymentKind.LOCAL
    endpoint: Optional[str] = None
    healthy: bool = False
    health_attempts: int = 0
    health_failure: Optional[str] = None
    tee_pubkey: Optional[str] = None
    tee_app_id: Optional[str] = None
