"""Shared test fixtures for agentdeploy."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from agentdeploy.config import ServiceConfig
from agentdeploy.health import PollPolicy

ENV_EXAMPLE = """\
OPENAI_API_KEY=your_openai_api_key_here
AGENT_MODE=cli-chat
# MODEL=gpt-4o-mini
AGENT_PORT=3000
"""


class SleepRecorder:
    """Stand-in for asyncio.sleep that records durations and returns at once."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def template_dir(tmp_path: Path) -> Path:
    """A minimal starter template."""
    template = tmp_path / "templates" / "starter"
    (template / "src").mkdir(parents=True)
    (template / "node_modules" / "left-pad").mkdir(parents=True)
    (template / ".yarn").mkdir()
    (template / "package.json").write_text('{"name": "starter"}')
    (template / "Dockerfile").write_text("FROM node:20\n")
    (template / "src" / "index.ts").write_text("console.log('hi')\n")
    (template / "node_modules" / "left-pad" / "index.js").write_text("")
    (template / ".yarn" / "cache").write_text("")
    (template / ".env.example").write_text(ENV_EXAMPLE)
    return template


@pytest.fixture
def fast_policy() -> PollPolicy:
    return PollPolicy(
        max_attempts=3,
        initial_delay=0.1,
        backoff_multiplier=2.0,
        max_delay=1.0,
        per_attempt_timeout=0.5,
    )


@pytest.fixture
def service_config(tmp_path: Path, template_dir: Path, fast_policy: PollPolicy) -> ServiceConfig:
    """Config pointing at tmp dirs, with installs off and quick polling."""
    return ServiceConfig(
        agents_base_dir=tmp_path / "agents",
        template_dir=template_dir,
        install_dependencies=False,
        local_health=fast_policy,
        tee_health=fast_policy,
        tee_api_key="test-key",
        tee_api_endpoint="https://tee.test/api/v1",
        collect_diagnostics=False,
    )
