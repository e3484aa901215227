"""
AgentEndpoint: async client for a deployed agent's HTTP surface.

Wraps the two routes every agent exposes:

    GET  /health     readiness (see health.probe)
    POST /interact   {"message": "..."} -> JSON reply
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Union

import httpx

from .health import (
    HEALTH_PATH,
    Endpoint,
    PollPolicy,
    PollVerdict,
    ProbeOutcome,
    ReadinessPoller,
    probe,
)
from .health.poller import AttemptObserver, SleepFn

logger = logging.getLogger(__name__)

INTERACT_PATH = "/interact"


class AgentInteractionError(Exception):
    """The agent did not answer an /interact request usefully."""


class AgentEndpoint:
    """Client bound to one agent endpoint.

    Args:
        endpoint: Agent base URL as an Endpoint or string.
        client: Optional shared httpx.AsyncClient. When omitted the
            endpoint owns its own client; close it with aclose() or use
            ``async with``.
    """

    def __init__(
        self,
        endpoint: Union[Endpoint, str],
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint if isinstance(endpoint, Endpoint) else Endpoint(endpoint)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    @classmethod
    def from_port(cls, port: int, client: Optional[httpx.AsyncClient] = None) -> "AgentEndpoint":
        return cls(Endpoint.from_port(port), client=client)

    @property
    def base_url(self) -> str:
        return self.endpoint.base_url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AgentEndpoint":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def check_health(self, timeout: float = 5.0) -> ProbeOutcome:
        """Single health probe against ``/health``."""
        return await probe(self._client, self.endpoint, HEALTH_PATH, timeout)

    async def wait_for_health(
        self,
        policy: Optional[PollPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
        on_attempt: Optional[AttemptObserver] = None,
    ) -> PollVerdict:
        """Poll ``/health`` until ready or the policy is exhausted.

        Args:
            policy: Poll policy; defaults to PollPolicy().
            sleep: Injectable sleep, mainly for tests.
            on_attempt: Optional per-attempt observer.

        Returns:
            PollVerdict for the session.
        """
        policy = policy or PollPolicy()
        logger.info(
            "Waiting for %s to become healthy (%d attempts, %.1fs timeout)",
            self.base_url, policy.max_attempts, policy.per_attempt_timeout,
        )
        poller = ReadinessPoller(policy, sleep=sleep, on_attempt=on_attempt)
        return await poller.run(self.check_health)

    async def interact(self, message: str, timeout: float = 30.0) -> Dict[str, Any]:
        """Send a message to the agent and return its JSON reply.

        Args:
            message: Text to send.
            timeout: Request deadline in seconds.

        Returns:
            Parsed JSON response.

        Raises:
            AgentInteractionError: On transport failure, non-2xx status,
                or a non-JSON body.
        """
        url = self.endpoint.url(INTERACT_PATH)
        try:
            resp = await self._client.post(url, json={"message": message}, timeout=timeout)
        except httpx.HTTPError as exc:
            raise AgentInteractionError(f"Interaction request failed: {exc}") from exc

        if not resp.is_success:
            raise AgentInteractionError(
                f"Interaction returned {resp.status_code}: {resp.text[:200]}"
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise AgentInteractionError(
                f"Failed to parse interaction response: {exc}"
            ) from exc
