"""
TEE Provider: deploy agents into a Phala Cloud confidential VM.

The cloud API is used in three steps:

1. pick an available TEEPod (``GET /teepods/available``)
2. ask for the env-encryption public key of a VM configuration
   (``POST /cvms/pubkey/from_cvm_configuration``)
3. create the CVM with the caller's pre-encrypted environment
   (``POST /cvms/from_cvm_configuration``)

Environment encryption happens client-side; this module only forwards
the ciphertext.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import httpx

from ..compose import COMPOSE_FILE, CONTAINER_PREFIX
from ..models import DeployAgentParams, DeploymentKind
from .base import DeploymentError, LaunchResult, ProviderBackend

logger = logging.getLogger(__name__)

DEFAULT_API_ENDPOINT = "https://cloud-api.phala.network/api/v1"


class TeeApiError(RuntimeError):
    """The TEE cloud API rejected a call or returned something unusable."""


class TeeClient:
    """Thin async client for the Phala Cloud API.

    Args:
        api_key: Cloud API key.
        api_endpoint: API base URL.
        client: Optional shared httpx client; one is created otherwise.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        api_endpoint: str = DEFAULT_API_ENDPOINT,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        if not api_key:
            raise TeeApiError("TEE not configured. Set PHALA_CLOUD_API_KEY.")
        self._api_key = api_key
        self._base = api_endpoint.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._timeout = timeout
        self.teepod_id: Optional[int] = None
        self.image: Optional[str] = None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TeeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _api_call(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make an authenticated API call.

        Raises:
            TeeApiError: On transport failure, HTTP error or non-JSON body.
        """
        url = f"{self._base}{endpoint}"
        headers = {
            "X-API-Key": self._api_key,
            "Content-Type": "application/json",
        }
        try:
            resp = await self._client.request(
                method, url, headers=headers, json=data, timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise TeeApiError(f"TEE API {method} {endpoint}: {exc}") from exc

        if resp.status_code >= 400:
            raise TeeApiError(
                f"TEE API {method} {endpoint}: {resp.status_code} {resp.text}"
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise TeeApiError(f"TEE API {method} {endpoint}: invalid JSON response") from exc

    async def discover_teepod(self) -> int:
        """Select the first available TEEPod and remember it.

        Returns:
            The selected TEEPod id.
        """
        result = await self._api_call("GET", "/teepods/available")
        nodes = result.get("nodes") or []
        if not nodes:
            raise TeeApiError("No available TEEPods found")

        node = nodes[0]
        self.teepod_id = node.get("teepod_id")
        images = node.get("images") or []
        self.image = images[0].get("name") if images else None
        logger.info("Selected TEEPod %s (image=%s)", self.teepod_id, self.image)
        return self.teepod_id

    def create_vm_config(
        self,
        compose_yaml: str,
        app_name: str,
        vcpu: int = 2,
        memory_mb: int = 2048,
        disk_gb: int = 10,
    ) -> Dict[str, Any]:
        """Build a CVM configuration around a docker-compose manifest.

        Raises:
            TeeApiError: If no TEEPod has been discovered yet.
        """
        if self.teepod_id is None:
            raise TeeApiError("No TEEPod selected; call discover_teepod() first")
        return {
            "name": app_name,
            "compose_manifest": {
                "name": app_name,
                "docker_compose_file": compose_yaml,
                "features": ["kms", "tproxy-net"],
                "kms_enabled": True,
                "tproxy_enabled": True,
            },
            "vcpu": vcpu,
            "memory": memory_mb,
            "disk_size": disk_gb,
            "teepod_id": self.teepod_id,
            "image": self.image,
        }

    async def get_pubkey_for_config(self, vm_config: Dict[str, Any]) -> Tuple[str, str]:
        """Fetch the env-encryption public key and app-id salt for a config.

        Returns:
            (pubkey, salt)
        """
        result = await self._api_call(
            "POST", "/cvms/pubkey/from_cvm_configuration", data=vm_config,
        )
        pubkey = result.get("app_env_encrypt_pubkey")
        salt = result.get("app_id_salt")
        if not isinstance(pubkey, str):
            raise TeeApiError("Missing public key in response")
        if not isinstance(salt, str):
            raise TeeApiError("Missing salt in response")
        return pubkey, salt

    async def deploy_with_encrypted_env(
        self,
        vm_config: Dict[str, Any],
        encrypted_env: str,
        pubkey: str,
        salt: str,
    ) -> Dict[str, Any]:
        """Create the CVM. The response carries ``id`` and ``endpoint``."""
        data = dict(vm_config)
        data.update({
            "encrypted_env": encrypted_env,
            "app_env_encrypt_pubkey": pubkey,
            "app_id_salt": salt,
        })
        return await self._api_call("POST", "/cvms/from_cvm_configuration", data=data)


def _read_compose(agent_dir: Path) -> str:
    path = agent_dir / COMPOSE_FILE
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DeploymentError(f"Failed to read {COMPOSE_FILE}: {exc}") from exc


async def fetch_tee_pubkey(client: TeeClient, agent_id: str, agent_dir: Path) -> Tuple[str, str]:
    """Public key and salt a caller needs to encrypt this agent's env.

    Raises:
        DeploymentError: If the compose file is unreadable.
        TeeApiError: On any API failure.
    """
    compose_yaml = _read_compose(agent_dir)
    logger.info("Discovering available TEEPods...")
    await client.discover_teepod()
    vm_config = client.create_vm_config(compose_yaml, f"{CONTAINER_PREFIX}{agent_id}")
    logger.info("Requesting encryption public key...")
    pubkey, salt = await client.get_pubkey_for_config(vm_config)
    logger.info("Successfully obtained TEE public key")
    return pubkey, salt


class TeeProvider(ProviderBackend):
    """Deploy agents to a remote TEE.

    Args:
        client: Configured TeeClient.
    """

    kind = DeploymentKind.TEE

    def __init__(self, client: TeeClient) -> None:
        self._client = client

    async def launch(
        self,
        agent_id: str,
        agent_dir: Path,
        params: DeployAgentParams,
        deployment_id: str,
    ) -> LaunchResult:
        """Create a CVM from the agent's compose file and encrypted env."""
        compose_yaml = _read_compose(agent_dir)
        if not params.encrypted_env:
            raise DeploymentError(
                "No encrypted environment variables provided for TEE deployment"
            )

        try:
            logger.info("Discovering available TEEPods...")
            await self._client.discover_teepod()
            vm_config = self._client.create_vm_config(
                compose_yaml, f"{CONTAINER_PREFIX}{deployment_id}",
            )
            logger.info("Requesting encryption public key...")
            pubkey, salt = await self._client.get_pubkey_for_config(vm_config)
            logger.info("Deploying agent to TEE with pre-encrypted environment variables")
            deployment = await self._client.deploy_with_encrypted_env(
                vm_config, params.encrypted_env, pubkey, salt,
            )
        except TeeApiError as exc:
            raise DeploymentError(f"Failed to deploy to TEE: {exc}") from exc

        endpoint = deployment.get("endpoint")
        app_id = deployment.get("id")
        logger.info("TEE deployment completed. Endpoint: %s, App ID: %s", endpoint, app_id)
        return LaunchResult(
            endpoint=endpoint if isinstance(endpoint, str) else None,
            app_id=str(app_id) if app_id is not None else None,
        )
