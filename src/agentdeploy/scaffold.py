"""
Agent directory scaffolding and .env handling.

Create flow:
  1. make ``<agents_base_dir>/<agent_id>``
  2. copy the starter template into it (minus node_modules / .yarn)
  3. install JS dependencies (yarn, then npm; failures are tolerated)
  4. render ``.env`` from ``.env.example``

Deploy flow rewrites ``.env`` with the runtime ports and credentials.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from .models import AgentPorts, ApiKeyConfig, CreateAgentParams

logger = logging.getLogger(__name__)

ENV_FILE = ".env"
ENV_TEMPLATE = ".env.example"
_SKIP_DIRS = {"node_modules", ".yarn"}
_SECRET_MARKERS = ("API_KEY", "PRIVATE_KEY")
_INSTALL_TIMEOUT = 600


# ---------------------------------------------------------------------------
# Directory setup
# ---------------------------------------------------------------------------

def copy_template(template_dir: Path, agent_dir: Path) -> List[Path]:
    """Recursively copy the starter template into the agent directory.

    Args:
        template_dir: Source template directory.
        agent_dir: Existing destination directory.

    Returns:
        Destination paths of the copied files.

    Raises:
        FileNotFoundError: If the template directory does not exist.
    """
    if not template_dir.is_dir():
        raise FileNotFoundError(f"Starter template directory not found: {template_dir}")

    copied: List[Path] = []
    for src in sorted(template_dir.iterdir()):
        if src.name in _SKIP_DIRS:
            continue
        dst = agent_dir / src.name
        if src.is_dir():
            dst.mkdir(parents=True, exist_ok=True)
            copied.extend(copy_template(src, dst))
        else:
            shutil.copy2(src, dst)
            copied.append(dst)
    return copied


def install_dependencies(agent_dir: Path) -> bool:
    """Install the agent's JS dependencies, yarn first then npm.

    Never raises: a failed install is logged and the caller carries on.

    Returns:
        True if one of the package managers succeeded.
    """
    for tool in ("yarn", "npm"):
        if shutil.which(tool) is None:
            logger.warning("%s not found on PATH, skipping", tool)
            continue
        logger.info("Installing dependencies in %s with %s", agent_dir, tool)
        try:
            result = subprocess.run(
                [tool, "install"],
                cwd=agent_dir,
                capture_output=True,
                text=True,
                timeout=_INSTALL_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("Error running %s install: %s", tool, exc)
            continue
        if result.returncode == 0:
            logger.info("Successfully installed dependencies with %s", tool)
            return True
        logger.warning(
            "%s install failed (exit %d): %s",
            tool, result.returncode, result.stderr[-300:],
        )
    logger.warning("Dependency install failed, continuing without node_modules")
    return False


def setup_agent_directory(
    agent_id: str,
    base_dir: Path,
    template_dir: Path,
    install: bool = True,
) -> Path:
    """Create the agent directory and fill it from the template.

    Args:
        agent_id: New agent identifier (directory name).
        base_dir: Parent directory for all agents.
        template_dir: Starter template to copy.
        install: Whether to run the dependency install step.

    Returns:
        Path of the new agent directory.

    Raises:
        FileExistsError: If the agent directory already exists.
        FileNotFoundError: If the template is missing.
    """
    base_dir.mkdir(parents=True, exist_ok=True)
    agent_dir = base_dir / agent_id
    agent_dir.mkdir()

    try:
        copy_template(template_dir, agent_dir)
    except FileNotFoundError:
        shutil.rmtree(agent_dir, ignore_errors=True)
        raise

    if install:
        install_dependencies(agent_dir)
    return agent_dir


# ---------------------------------------------------------------------------
# .env files
# ---------------------------------------------------------------------------

def render_env_template(template: str, params: CreateAgentParams) -> str:
    """Fill the placeholders of ``.env.example`` from create params."""
    content = template

    api_key = params.api_key_config.openai_api_key
    if api_key:
        content = content.replace(
            "OPENAI_API_KEY=your_openai_api_key_here", f"OPENAI_API_KEY={api_key}",
        )

    content = content.replace(
        "AGENT_MODE=cli-chat", f"AGENT_MODE={params.agent_config.mode.value}",
    )
    content = content.replace("# MODEL=gpt-4o-mini", f"MODEL={params.agent_config.model}")

    port = params.deployment_config.http_port
    if port is not None:
        content = content.replace("AGENT_PORT=3000", f"AGENT_PORT={port}")

    return content


def create_env_file(params: CreateAgentParams, agent_dir: Path) -> Path:
    """Write ``.env`` from the template in the agent directory.

    Raises:
        FileNotFoundError: If ``.env.example`` is missing.
    """
    template_path = agent_dir / ENV_TEMPLATE
    if not template_path.exists():
        raise FileNotFoundError(f"Failed to read {ENV_TEMPLATE} in {agent_dir}")

    env_path = agent_dir / ENV_FILE
    env_path.write_text(
        render_env_template(template_path.read_text(encoding="utf-8"), params),
        encoding="utf-8",
    )
    return env_path


def _credential(value: Optional[str], env_name: str) -> str:
    resolved = value or os.environ.get(env_name)
    if resolved is None:
        raise ValueError(f"{env_name} not found in config or environment")
    if not resolved.strip():
        raise ValueError(f"{env_name} is empty")
    return resolved


def build_deploy_env(
    ports: AgentPorts,
    container: str,
    api_keys: Optional[ApiKeyConfig],
) -> Dict[str, str]:
    """Environment for a local deployment.

    Credentials come from ``api_keys`` first, then the process environment.

    Raises:
        ValueError: If the key config is absent or a credential is missing
            or blank.
    """
    if api_keys is None:
        raise ValueError("API key configuration is required")

    return {
        "PORT": str(ports.http_port),
        "WEBSOCKET_PORT": str(ports.websocket_port),
        "CONTAINER_NAME": container,
        "NODE_ENV": "development",
        "AGENT_MODE": "http",
        "MODEL": "gpt-4o-mini",
        "LOG_LEVEL": "debug",
        "WEBSOCKET_URL": f"ws://localhost:{ports.websocket_port}",
        "OPENAI_API_KEY": _credential(api_keys.openai_api_key, "OPENAI_API_KEY"),
        "CDP_API_KEY_NAME": _credential(api_keys.cdp_api_key_name, "CDP_API_KEY_NAME"),
        "CDP_API_KEY_PRIVATE_KEY": _credential(
            api_keys.cdp_api_key_private_key, "CDP_API_KEY_PRIVATE_KEY",
        ),
        "RUN_TESTS": "false",
    }


def format_env(env: Dict[str, str]) -> str:
    return "".join(f"{key}={value}\n" for key, value in env.items())


def redact_env(env: Dict[str, str]) -> Dict[str, str]:
    """Copy of ``env`` with credential values masked."""
    return {
        key: "***REDACTED***" if any(m in key for m in _SECRET_MARKERS) else value
        for key, value in env.items()
    }


def write_deploy_env(agent_dir: Path, env: Dict[str, str]) -> Path:
    """Write the deploy-time ``.env``, logging it with secrets redacted."""
    env_path = agent_dir / ENV_FILE
    logger.info("Writing %s (%d variables, secrets redacted):", env_path, len(env))
    for key, value in redact_env(env).items():
        logger.info("  %s=%s", key, value)
    env_path.write_text(format_env(env), encoding="utf-8")
    return env_path
