"""
Service configuration.

Loaded from ``<home>/config.yaml`` when present, then overlaid with
environment variables so containers and CI can configure the service
without a file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .health import PollPolicy
from .providers.tee import DEFAULT_API_ENDPOINT

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"


def default_local_policy() -> PollPolicy:
    """Local containers: quick, tight backoff."""
    return PollPolicy(
        max_attempts=15,
        initial_delay=1.0,
        backoff_multiplier=1.5,
        max_delay=5.0,
        per_attempt_timeout=5.0,
    )


def default_tee_policy() -> PollPolicy:
    """Remote TEEs boot a whole VM: wait before the first probe, back off further."""
    return PollPolicy(
        max_attempts=30,
        initial_delay=2.0,
        backoff_multiplier=1.5,
        max_delay=30.0,
        per_attempt_timeout=10.0,
        startup_delay=5.0,
    )


class ServiceConfig(BaseModel):
    """Runtime configuration for create and deploy jobs."""

    agents_base_dir: Path = Path("./agents")
    template_dir: Path = Path("templates/starter")
    install_dependencies: bool = True
    compose_cmd: str = "docker-compose"

    tee_enabled: bool = False
    tee_api_endpoint: str = DEFAULT_API_ENDPOINT
    tee_api_key: Optional[str] = None

    local_health: PollPolicy = Field(default_factory=default_local_policy)
    tee_health: PollPolicy = Field(default_factory=default_tee_policy)
    # a local agent that never turns healthy is still reported as deployed
    local_fail_on_unhealthy: bool = False
    tee_fail_on_unhealthy: bool = True
    collect_diagnostics: bool = True


# env var -> config field
ENV_OVERRIDES: Dict[str, str] = {
    "AGENTDEPLOY_AGENTS_DIR": "agents_base_dir",
    "AGENTDEPLOY_TEMPLATE_DIR": "template_dir",
    "TEE_ENABLED": "tee_enabled",
    "PHALA_CLOUD_API_ENDPOINT": "tee_api_endpoint",
    "PHALA_CLOUD_API_KEY": "tee_api_key",
}


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(home: Optional[Path] = None) -> ServiceConfig:
    """Load configuration from disk and the environment.

    Args:
        home: Service home directory holding ``config.yaml``. Missing or
            unreadable files fall back to defaults.

    Returns:
        The effective ServiceConfig.
    """
    data: Dict = {}
    if home is not None:
        config_file = Path(home).expanduser() / CONFIG_FILE
        if config_file.exists():
            try:
                data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as exc:
                logger.warning("Failed to load config (%s), using defaults", exc)
                data = {}
            if not isinstance(data, dict):
                logger.warning("Ignoring %s: expected a mapping", config_file)
                data = {}

    for env_name, field in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value is None or value == "":
            continue
        data[field] = _env_flag(value) if field == "tee_enabled" else value

    try:
        return ServiceConfig(**data)
    except ValueError as exc:
        logger.warning("Invalid config (%s), using defaults", exc)
        return ServiceConfig()
