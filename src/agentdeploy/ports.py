"""
Port bookkeeping for agents.

The create job decides an agent's ports; the deploy job needs them again.
PortStore keeps that mapping in memory and is handed to whoever needs it.
The lock only ever guards the dict access, never I/O.

When the store has no entry (different process, restart), the ports are
recovered from the agent's docker-compose.yml.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

from .models import DEFAULT_HTTP_PORT, AgentPorts

logger = logging.getLogger(__name__)


class PortStore:
    """Thread-safe agent-id -> AgentPorts map."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ports: Dict[str, AgentPorts] = {}

    def get(self, agent_id: str) -> Optional[AgentPorts]:
        with self._lock:
            return self._ports.get(agent_id)

    def set(self, agent_id: str, ports: AgentPorts) -> None:
        with self._lock:
            self._ports[agent_id] = ports


def _host_port(mapping: Union[str, int, dict]) -> int:
    """Host side of a compose port entry.

    Accepts ``"HOST:CONTAINER"``, ``"IP:HOST:CONTAINER"``, a bare port,
    or the long syntax ``{"published": ..., "target": ...}``.
    """
    if isinstance(mapping, dict):
        value = mapping.get("published", mapping.get("target"))
        if value is None:
            raise ValueError(f"Port mapping has no published/target port: {mapping}")
        return int(value)

    text = str(mapping).strip().split("/", 1)[0]
    parts = text.split(":")
    candidate = parts[-2] if len(parts) >= 2 else parts[0]
    try:
        return int(candidate)
    except ValueError as exc:
        raise ValueError(f"Failed to parse host port from '{mapping}'") from exc


def extract_port_config(compose_path: Union[str, Path]) -> AgentPorts:
    """Read the agent's ports back out of a docker-compose file.

    The HTTP port is the host side of the first service's first port
    mapping; the WebSocket port is HTTP + 1. A service without ports
    falls back to the default HTTP port.

    Args:
        compose_path: Path to docker-compose.yml.

    Returns:
        AgentPorts.

    Raises:
        ValueError: If the file is missing, unparseable, or has no services.
    """
    path = Path(compose_path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ValueError(f"Failed to read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Failed to parse {path}: {exc}") from exc

    services = data.get("services") if isinstance(data, dict) else None
    if not services:
        raise ValueError(f"No services found in {path}")

    service_name, service = next(iter(services.items()))
    logger.debug("Extracting ports from service: %s", service_name)

    ports = (service or {}).get("ports") or []
    if not ports:
        logger.warning("No ports in %s, using default port %d", path, DEFAULT_HTTP_PORT)
        return AgentPorts.from_http_port(DEFAULT_HTTP_PORT)

    return AgentPorts.from_http_port(_host_port(ports[0]))


def resolve_ports(
    agent_id: str,
    agent_dir: Path,
    store: Optional[PortStore] = None,
) -> AgentPorts:
    """Ports for an agent: the store first, then its compose file."""
    if store is not None:
        ports = store.get(agent_id)
        if ports is not None:
            logger.info(
                "Using stored ports for agent %s: HTTP:%d, WS:%d",
                agent_id, ports.http_port, ports.websocket_port,
            )
            return ports

    logger.info("Extracting ports from docker-compose for agent %s", agent_id)
    return extract_port_config(agent_dir / "docker-compose.yml")
