"""
Agent readiness: HTTP probe plus bounded backoff polling.
"""

from .poller import (
    PollPolicy,
    PollVerdict,
    ReadinessPoller,
    VerdictStatus,
    backoff_delay,
    wait_until_ready,
)
from .probe import (
    HEALTH_PATH,
    Endpoint,
    ProbeKind,
    ProbeOutcome,
    classify_transport_error,
    probe,
)

__all__ = [
    "HEALTH_PATH",
    "Endpoint",
    "PollPolicy",
    "PollVerdict",
    "ProbeKind",
    "ProbeOutcome",
    "ReadinessPoller",
    "VerdictStatus",
    "backoff_delay",
    "classify_transport_error",
    "probe",
    "wait_until_ready",
]
