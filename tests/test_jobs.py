"""Tests for the JSON job handlers."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentdeploy.jobs import handle_create_agent, handle_deploy_agent
from agentdeploy.models import AgentDeploymentResult, DeploymentKind
from agentdeploy.orchestrator import AgentOrchestrator
from agentdeploy.providers import DeploymentError


class TestCreateJob:
    """Tests for handle_create_agent()."""

    @pytest.mark.asyncio
    async def test_round_trip(self, service_config):
        payload = json.dumps({
            "name": "trader",
            "agent_config": {"mode": "autonomous", "model": "gpt-4o"},
            "deployment_config": {"http_port": 3900},
        }).encode()

        out = json.loads(await handle_create_agent(payload, AgentOrchestrator(service_config)))

        assert out["agent_id"]
        assert out["ports"] == {"http_port": 3900, "websocket_port": 3901}
        assert out["tee_pubkey"] is None

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        with pytest.raises(ValueError, match="CreateAgentParams"):
            await handle_create_agent(b"{not json", MagicMock())

    @pytest.mark.asyncio
    async def test_blank_name(self):
        with pytest.raises(ValueError, match="empty"):
            await handle_create_agent(b'{"name": "  "}', MagicMock())

    @pytest.mark.asyncio
    async def test_bad_mode(self):
        with pytest.raises(ValueError):
            await handle_create_agent(b'{"name": "a", "agent_config": {"mode": "sleepy"}}', MagicMock())


class TestDeployJob:
    """Tests for handle_deploy_agent()."""

    @pytest.mark.asyncio
    async def test_serialises_result(self):
        orch = MagicMock()
        orch.deploy_agent = AsyncMock(return_value=AgentDeploymentResult(
            agent_id="a1",
            deployment_id="d1",
            kind=DeploymentKind.LOCAL,
            endpoint="http://localhost:3000",
            healthy=True,
            health_attempts=2,
        ))

        out = json.loads(await handle_deploy_agent(b'{"agent_id": "a1"}', orch))

        assert out["endpoint"] == "http://localhost:3000"
        assert out["kind"] == "local"
        assert out["healthy"] is True
        params = orch.deploy_agent.await_args.args[0]
        assert params.agent_id == "a1"

    @pytest.mark.asyncio
    async def test_missing_agent_id(self):
        with pytest.raises(ValueError, match="DeployAgentParams"):
            await handle_deploy_agent(b"{}", MagicMock())

    @pytest.mark.asyncio
    async def test_failure_propagates(self, service_config):
        with pytest.raises(DeploymentError, match="not found"):
            await handle_deploy_agent(b'{"agent_id": "ghost"}', AgentOrchestrator(service_config))
