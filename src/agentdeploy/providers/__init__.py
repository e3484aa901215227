"""Deployment targets for agent workloads."""

from .base import DeploymentError, LaunchResult, ProviderBackend
from .local import LocalProvider
from .tee import TeeApiError, TeeClient, TeeProvider, fetch_tee_pubkey

__all__ = [
    "DeploymentError",
    "LaunchResult",
    "LocalProvider",
    "ProviderBackend",
    "TeeApiError",
    "TeeClient",
    "TeeProvider",
    "fetch_tee_pubkey",
]
