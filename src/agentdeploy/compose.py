"""
docker-compose generation for a single agent.

The same compose document is used for local deployments and as the
source of the TEE VM configuration, so it builds from the agent
directory rather than pulling a prebuilt image.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import AgentPorts

logger = logging.getLogger(__name__)

COMPOSE_FILE = "docker-compose.yml"
CONTAINER_PREFIX = "coinbase-agent-"
SERVICE_NAME = "agent"


def container_name(agent_id: str) -> str:
    """Docker container name for an agent."""
    return f"{CONTAINER_PREFIX}{agent_id}"


def build_compose_config(
    agent_id: str,
    ports: Optional[AgentPorts] = None,
    env_vars: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Build the compose document as a plain dict.

    Args:
        agent_id: Agent identifier, used for the container name.
        ports: Port pair; defaults to 3000/3001.
        env_vars: Extra environment variables, overriding the defaults.

    Returns:
        Compose dict ready for YAML serialisation.
    """
    ports = ports or AgentPorts.from_http_port()
    http, ws = ports.http_port, ports.websocket_port

    environment: Dict[str, str] = {
        "PORT": str(http),
        "WEBSOCKET_PORT": str(ws),
        "CONTAINER_NAME": container_name(agent_id),
        "NODE_ENV": "production",
        "AGENT_MODE": "http",
        "MODEL": "gpt-4o-mini",
        "LOG_LEVEL": "info",
    }
    environment.update(env_vars or {})

    service: Dict[str, Any] = {
        "build": {"context": "."},
        "ports": [f"{http}:{http}", f"{ws}:{ws}"],
        "environment": [f"{k}={v}" for k, v in environment.items()],
        "restart": "unless-stopped",
    }

    return {
        "version": "3",
        "services": {SERVICE_NAME: service},
    }


def render_compose(
    agent_id: str,
    ports: Optional[AgentPorts] = None,
    env_vars: Optional[Dict[str, str]] = None,
) -> str:
    """Compose document as a YAML string."""
    config = build_compose_config(agent_id, ports, env_vars)
    return yaml.dump(config, default_flow_style=False, sort_keys=False)


def write_compose_file(
    agent_dir: Path,
    agent_id: str,
    ports: Optional[AgentPorts] = None,
    env_vars: Optional[Dict[str, str]] = None,
) -> Path:
    """Write docker-compose.yml into the agent directory.

    Returns:
        Path to the written file.
    """
    compose_path = Path(agent_dir) / COMPOSE_FILE
    compose_path.write_text(render_compose(agent_id, ports, env_vars), encoding="utf-8")
    logger.info("docker-compose.yml written to %s", compose_path)
    return compose_path
