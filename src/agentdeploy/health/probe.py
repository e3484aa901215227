"""
HTTP probe: one bounded attempt at an agent's health endpoint.

A probe never raises for network trouble. Every way the request can go
wrong is folded into a ProbeOutcome so the readiness poller can treat it
as a retryable event:

    HEALTHY             2xx with a JSON body
    UNHEALTHY           non-2xx (status + body kept)
    MALFORMED           2xx but the body is not JSON
    TIMEOUT             no answer within the deadline
    CONNECTION_REFUSED  nothing accepted the connection
    CONNECTION_RESET    connection dropped mid-request
    OTHER               anything else (raw message kept)

Transport failures are classified from httpx's exception classes and the
OSError subclasses in their cause chain, never from message text.
"""

from __future__ import annotations

import asyncio
import json
import logging
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
UNREADABLE_BODY = "<unreadable body>"

_RESET_ERRORS = (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Endpoint:
    """Base URL (scheme + host + port) of a deployed agent."""

    base_url: str

    def __post_init__(self) -> None:
        base = self.base_url.strip().rstrip("/")
        parts = urlsplit(base)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"Invalid endpoint URL: {self.base_url!r}")
        object.__setattr__(self, "base_url", base)

    @classmethod
    def from_port(cls, port: int, host: str = "localhost") -> "Endpoint":
        """Endpoint for an agent listening on a local port."""
        return cls(f"http://{host}:{port}")

    @property
    def host(self) -> str:
        return urlsplit(self.base_url).hostname or ""

    @property
    def port(self) -> int:
        parts = urlsplit(self.base_url)
        if parts.port is not None:
            return parts.port
        return 443 if parts.scheme == "https" else 80

    def url(self, path: str) -> str:
        """Join a sub-path onto the base URL."""
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    def __str__(self) -> str:
        return self.base_url


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

class ProbeKind(str, Enum):
    """Classification of a single probe attempt."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    MALFORMED = "malformed"
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_RESET = "connection_reset"
    OTHER = "other"


_TRANSPORT_KINDS = frozenset({
    ProbeKind.TIMEOUT,
    ProbeKind.CONNECTION_REFUSED,
    ProbeKind.CONNECTION_RESET,
    ProbeKind.OTHER,
})


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of one probe attempt.

    Attributes:
        kind: What happened.
        status: HTTP status when the server answered, else None.
        body: Parsed JSON for HEALTHY, response text for UNHEALTHY and
            MALFORMED, None for transport errors.
        message: Human-readable detail (raw error text for transport errors).
    """

    kind: ProbeKind
    status: Optional[int] = None
    body: Any = None
    message: str = ""

    @classmethod
    def healthy(cls, body: Any, status: int = 200) -> "ProbeOutcome":
        return cls(ProbeKind.HEALTHY, status=status, body=body)

    @classmethod
    def unhealthy(cls, status: int, body: str) -> "ProbeOutcome":
        return cls(
            ProbeKind.UNHEALTHY,
            status=status,
            body=body,
            message=f"HTTP {status}: {body[:200]}",
        )

    @classmethod
    def malformed(cls, status: int, body: str, detail: str = "") -> "ProbeOutcome":
        return cls(
            ProbeKind.MALFORMED,
            status=status,
            body=body,
            message=f"non-JSON health response ({detail})" if detail else "non-JSON health response",
        )

    @classmethod
    def transport_error(cls, kind: ProbeKind, message: str) -> "ProbeOutcome":
        if kind not in _TRANSPORT_KINDS:
            raise ValueError(f"{kind.value} is not a transport error kind")
        return cls(kind, message=message)

    @property
    def is_healthy(self) -> bool:
        return self.kind == ProbeKind.HEALTHY

    @property
    def is_transport_error(self) -> bool:
        return self.kind in _TRANSPORT_KINDS

    def describe(self) -> str:
        """One-line summary for logs and results."""
        if self.kind == ProbeKind.HEALTHY:
            return "healthy"
        if self.message:
            return f"{self.kind.value}: {self.message}"
        return self.kind.value


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _exception_chain(exc: BaseException):
    """Yield exc and every exception linked through __cause__/__context__."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_transport_error(exc: BaseException) -> ProbeKind:
    """Map an HTTP client exception to a transport ProbeKind.

    Args:
        exc: Exception raised while sending the request or reading the
            response.

    Returns:
        TIMEOUT, CONNECTION_REFUSED, CONNECTION_RESET or OTHER.
    """
    if isinstance(exc, httpx.TimeoutException):
        return ProbeKind.TIMEOUT

    for link in _exception_chain(exc):
        if isinstance(link, ConnectionRefusedError):
            return ProbeKind.CONNECTION_REFUSED
        if isinstance(link, _RESET_ERRORS):
            return ProbeKind.CONNECTION_RESET
        if isinstance(link, socket.gaierror):
            # Name resolution failed; the host never existed to refuse us.
            return ProbeKind.OTHER
        if isinstance(link, TimeoutError):
            return ProbeKind.TIMEOUT

    if isinstance(exc, httpx.ConnectError):
        return ProbeKind.CONNECTION_REFUSED
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError)):
        return ProbeKind.CONNECTION_RESET
    return ProbeKind.OTHER


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------

async def probe(
    client: httpx.AsyncClient,
    endpoint: Endpoint,
    path: str = HEALTH_PATH,
    timeout: float = 5.0,
) -> ProbeOutcome:
    """Issue one GET against ``endpoint + path`` and classify the result.

    Args:
        client: Shared async HTTP client.
        endpoint: Agent base URL.
        path: Health-check sub-path.
        timeout: Per-attempt deadline in seconds, must be > 0.

    Returns:
        ProbeOutcome describing the attempt. Never raises for network
        or protocol failures.
    """
    if timeout <= 0:
        raise ValueError(f"probe timeout must be > 0, got {timeout}")

    url = endpoint.url(path)
    logger.debug("Probing %s (timeout %.1fs)", url, timeout)

    # One deadline covers the whole exchange; httpx timeouts are per phase.
    try:
        response = await asyncio.wait_for(client.get(url, timeout=timeout), timeout)
    except asyncio.TimeoutError:
        logger.debug("Probe %s exceeded its %.1fs deadline", url, timeout)
        return ProbeOutcome.transport_error(
            ProbeKind.TIMEOUT, f"no complete response within {timeout}s",
        )
    except httpx.HTTPError as exc:
        kind = classify_transport_error(exc)
        logger.debug("Probe %s failed: %s (%s)", url, kind.value, exc)
        return ProbeOutcome.transport_error(kind, str(exc) or type(exc).__name__)
    except OSError as exc:
        kind = classify_transport_error(exc)
        return ProbeOutcome.transport_error(kind, str(exc) or type(exc).__name__)

    status = response.status_code
    try:
        text = response.text
    except (UnicodeDecodeError, httpx.HTTPError):
        text = UNREADABLE_BODY

    if not response.is_success:
        return ProbeOutcome.unhealthy(status, text)

    try:
        body = json.loads(text)
    except ValueError as exc:
        return ProbeOutcome.malformed(status, text, str(exc))

    return ProbeOutcome.healthy(body, status=status)
