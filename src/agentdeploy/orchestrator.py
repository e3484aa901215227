"""
Agent Orchestrator: the create and deploy jobs.

create_agent():
    scaffold the agent directory, write ``.env`` and
    ``docker-compose.yml``, remember the port pair, and fetch a TEE
    encryption key when the agent is TEE-enabled.

deploy_agent():
    launch through a provider (local Compose or TEE), then poll the
    reported endpoint with the policy for that deployment kind. An
    unhealthy verdict is fatal only when the fail-on-unhealthy flag for
    that kind (or the per-deploy override) says so.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from .compose import write_compose_file
from .config import ServiceConfig
from .diagnostics import tcp_reachable
from .endpoint import AgentEndpoint
from .health import Endpoint, PollPolicy, PollVerdict
from .health.poller import SleepFn
from .models import (
    AgentCreationResult,
    AgentDeploymentResult,
    AgentPorts,
    CreateAgentParams,
    DeployAgentParams,
    DeploymentKind,
)
from .ports import PortStore
from .providers import (
    DeploymentError,
    LaunchResult,
    LocalProvider,
    ProviderBackend,
    TeeApiError,
    TeeClient,
    TeeProvider,
    fetch_tee_pubkey,
)
from .scaffold import create_env_file, setup_agent_directory

logger = logging.getLogger(__name__)

TeeClientFactory = Callable[[], TeeClient]


def _discard_agent_dir(agent_dir: Path) -> None:
    logger.warning("Removing partially created agent directory %s", agent_dir)
    shutil.rmtree(agent_dir, ignore_errors=True)


class AgentOrchestrator:
    """Runs create and deploy jobs against one service configuration.

    Args:
        config: Service configuration.
        port_store: Shared agent-id to port-pair store. A private one is
            created when omitted.
        http_client: Optional shared httpx client for health polling.
        tee_client_factory: Builds a TeeClient; defaults to one built
            from the configured endpoint and key.
        providers: Override the provider used per deployment kind. Each
            provider's ``kind`` must match the slot it fills.
        sleep: Sleep used by the readiness poller.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        port_store: Optional[PortStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        tee_client_factory: Optional[TeeClientFactory] = None,
        providers: Optional[Dict[DeploymentKind, ProviderBackend]] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config or ServiceConfig()
        self.port_store = port_store if port_store is not None else PortStore()
        self._http = http_client
        self._tee_client_factory = tee_client_factory or self._default_tee_client
        self._providers = dict(providers or {})
        for kind, provider in self._providers.items():
            if provider.kind != kind:
                raise ValueError(
                    f"{type(provider).__name__} deploys {provider.kind.value}, "
                    f"cannot serve {kind.value} deployments"
                )
        self._sleep = sleep

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def agent_dir(self, agent_id: str) -> Path:
        return Path(self.config.agents_base_dir) / agent_id

    def _default_tee_client(self) -> TeeClient:
        return TeeClient(
            self.config.tee_api_key or "",
            self.config.tee_api_endpoint,
            client=self._http,
        )

    def _open_tee_client(self) -> TeeClient:
        try:
            return self._tee_client_factory()
        except TeeApiError as exc:
            raise DeploymentError(str(exc)) from exc

    def policy_for(self, kind: DeploymentKind) -> PollPolicy:
        """Poll policy for a deployment kind."""
        if kind == DeploymentKind.TEE:
            return self.config.tee_health
        return self.config.local_health

    def fails_on_unhealthy(self, kind: DeploymentKind, override: Optional[bool] = None) -> bool:
        """Whether an unhealthy verdict aborts a deployment of this kind."""
        if override is not None:
            return override
        if kind == DeploymentKind.TEE:
            return self.config.tee_fail_on_unhealthy
        return self.config.local_fail_on_unhealthy

    # -------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------

    async def create_agent(self, params: CreateAgentParams) -> AgentCreationResult:
        """Scaffold a new agent.

        Args:
            params: Create job parameters.

        Returns:
            AgentCreationResult with the new agent id and written files.

        Raises:
            DeploymentError: If the template or ``.env.example`` is missing,
                or the TEE key could not be obtained.
        """
        agent_id = str(uuid.uuid4())
        logger.info("Creating agent %s (%s)", params.name, agent_id)

        try:
            ports = AgentPorts.from_http_port(params.deployment_config.http_port)
        except ValueError as exc:
            raise DeploymentError(str(exc)) from exc

        try:
            agent_dir, files = await asyncio.to_thread(self._scaffold, agent_id, params, ports)
        except (FileNotFoundError, FileExistsError) as exc:
            raise DeploymentError(f"Failed to set up agent directory: {exc}") from exc

        tee_pubkey: Optional[str] = None
        tee_salt: Optional[str] = None
        if params.deployment_config.tee_enabled:
            try:
                tee_pubkey, tee_salt = await self._create_tee_key(agent_id, agent_dir)
            except DeploymentError:
                _discard_agent_dir(agent_dir)
                raise

        self.port_store.set(agent_id, ports)
        logger.info(
            "Agent %s created in %s (HTTP:%d, WS:%d)",
            agent_id, agent_dir, ports.http_port, ports.websocket_port,
        )
        return AgentCreationResult(
            agent_id=agent_id,
            files_created=files,
            ports=ports,
            tee_pubkey=tee_pubkey,
            tee_salt=tee_salt,
        )

    def _scaffold(
        self,
        agent_id: str,
        params: CreateAgentParams,
        ports: AgentPorts,
    ) -> Tuple[Path, List[str]]:
        """Build the agent directory with its ``.env`` and compose file.

        A directory left behind by a failed step is removed before the
        error propagates.
        """
        agent_dir = setup_agent_directory(
            agent_id,
            Path(self.config.agents_base_dir),
            Path(self.config.template_dir),
            self.config.install_dependencies,
        )
        try:
            env_path = create_env_file(params, agent_dir)
            compose_path = write_compose_file(agent_dir, agent_id, ports)
        except Exception:
            _discard_agent_dir(agent_dir)
            raise
        return agent_dir, [env_path.name, compose_path.name]

    async def _create_tee_key(self, agent_id: str, agent_dir: Path):
        logger.info("Initializing TEE client for public key retrieval")
        client = self._open_tee_client()
        try:
            return await fetch_tee_pubkey(client, agent_id, agent_dir)
        except TeeApiError as exc:
            raise DeploymentError(f"Failed to get TEE public key: {exc}") from exc
        finally:
            await client.aclose()

    # -------------------------------------------------------------------
    # Deploy
    # -------------------------------------------------------------------

    async def deploy_agent(self, params: DeployAgentParams) -> AgentDeploymentResult:
        """Launch an agent and wait for it to report healthy.

        Args:
            params: Deploy job parameters.

        Returns:
            AgentDeploymentResult. ``healthy`` is False when the poll failed
            and the failure was not fatal for this deployment kind.

        Raises:
            DeploymentError: If the agent is unknown, the launch fails, or
                the agent stays unhealthy and failure is fatal.
        """
        agent_dir = self.agent_dir(params.agent_id)
        if not agent_dir.is_dir():
            raise DeploymentError(f"Agent directory not found: {agent_dir}")

        deployment_id = str(uuid.uuid4())
        kind = DeploymentKind.TEE if self.config.tee_enabled else DeploymentKind.LOCAL
        logger.info(
            "Deploying agent %s (deployment %s, %s)",
            params.agent_id, deployment_id, kind.value,
        )

        provider, tee_client = self._provider(kind)
        try:
            launch = await provider.launch(params.agent_id, agent_dir, params, deployment_id)
        finally:
            if tee_client is not None:
                await tee_client.aclose()

        result = AgentDeploymentResult(
            agent_id=params.agent_id,
            deployment_id=deployment_id,
            kind=kind,
            endpoint=launch.endpoint,
            tee_app_id=launch.app_id,
        )

        fatal = self.fails_on_unhealthy(kind, params.fail_on_unhealthy)
        if launch.endpoint is None:
            logger.warning("Deployment %s reported no endpoint, skipping health check", deployment_id)
            result.health_failure = "no endpoint reported"
            if fatal:
                raise DeploymentError(f"Deployment {deployment_id} reported no endpoint")
            return result

        try:
            endpoint = Endpoint(launch.endpoint)
        except ValueError as exc:
            raise DeploymentError(f"Invalid agent endpoint: {exc}") from exc

        verdict = await self._wait_for_health(kind, endpoint)
        result.healthy = verdict.ready
        result.health_attempts = verdict.attempts_made
        if verdict.ready:
            logger.info("Agent %s is healthy at %s", params.agent_id, launch.endpoint)
            return result

        result.health_failure = verdict.describe()
        logger.error("Agent %s health check %s", params.agent_id, verdict.describe())
        await self._diagnose(provider, launch, verdict)

        if fatal:
            raise DeploymentError(f"Agent health check failed: {verdict.describe()}")
        logger.warning(
            "Continuing with deployment of %s despite failed health check", params.agent_id,
        )
        return result

    def _provider(self, kind: DeploymentKind) -> Tuple[ProviderBackend, Optional[TeeClient]]:
        """Provider for a deployment kind, plus a TEE client to close after launch."""
        provider = self._providers.get(kind)
        if provider is not None:
            return provider, None
        if kind == DeploymentKind.TEE:
            client = self._open_tee_client()
            return TeeProvider(client), client
        provider = LocalProvider(
            port_store=self.port_store,
            compose_cmd=self.config.compose_cmd,
            collect_diagnostics=self.config.collect_diagnostics,
        )
        self._providers[kind] = provider
        return provider, None

    async def _wait_for_health(self, kind: DeploymentKind, endpoint: Endpoint) -> PollVerdict:
        if kind == DeploymentKind.LOCAL and self.config.collect_diagnostics:
            await tcp_reachable(endpoint.host, endpoint.port)

        async with AgentEndpoint(endpoint, client=self._http) as agent:
            return await agent.wait_for_health(self.policy_for(kind), sleep=self._sleep)

    async def _diagnose(
        self,
        provider: ProviderBackend,
        launch: LaunchResult,
        verdict: PollVerdict,
    ) -> None:
        try:
            await provider.diagnose(launch, verdict)
        except Exception as exc:
            logger.warning("Diagnostics failed: %s", exc)
