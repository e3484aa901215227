"""
Readiness poller: bounded, backoff-governed health polling.

Turns an unreliable single probe into a Ready/Failed verdict:

    startup_delay (once)
    attempt 1 ─ healthy? ──────────────────────────► READY
        │ no
        ├─ attempt == max_attempts? ───────────────► FAILED
        │ no
        sleep backoff_delay(attempt) ──► attempt + 1

Success is checked before exhaustion, so a healthy answer on the last
allowed attempt still counts. Probe failures never escape the loop; only
running out of attempts is terminal.

The sleep function is injectable, which makes a poll session fully
deterministic for a scripted sequence of probe outcomes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .probe import ProbeKind, ProbeOutcome

logger = logging.getLogger(__name__)

ProbeFn = Callable[[float], Awaitable[ProbeOutcome]]
SleepFn = Callable[[float], Awaitable[None]]
AttemptObserver = Callable[[int, ProbeOutcome], None]


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class PollPolicy(BaseModel):
    """Knobs for one poll session. All durations are in seconds."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=15, ge=1, description="Probe attempts before giving up")
    initial_delay: float = Field(default=1.0, ge=0, description="Backoff after the first failure")
    backoff_multiplier: float = Field(default=1.5, ge=1.0, description="Growth factor per failure")
    max_delay: Optional[float] = Field(default=5.0, ge=0, description="Cap on any single backoff")
    per_attempt_timeout: float = Field(default=5.0, gt=0, description="Deadline for each probe")
    startup_delay: float = Field(
        default=0.0,
        ge=0,
        description="One-off wait before attempt 1 for a just-launched workload",
    )

    @model_validator(mode="after")
    def cap_not_below_initial(self) -> "PollPolicy":
        """A cap smaller than the first delay would make backoff shrink."""
        if self.max_delay is not None and self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        return self


def backoff_delay(attempt: int, policy: PollPolicy) -> float:
    """Delay to sleep after failed attempt number ``attempt`` (1-based).

    delay = min(initial_delay * backoff_multiplier ** (attempt - 1), max_delay)

    Args:
        attempt: The attempt that just failed, starting at 1.
        policy: Poll policy supplying the base, factor and cap.

    Returns:
        Seconds to wait before the next attempt.
    """
    if attempt < 1:
        raise ValueError(f"attempt numbers start at 1, got {attempt}")
    delay = policy.initial_delay * (policy.backoff_multiplier ** (attempt - 1))
    if policy.max_delay is not None:
        delay = min(delay, policy.max_delay)
    return delay


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------

class VerdictStatus(str, Enum):
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class PollVerdict:
    """Terminal result of a poll session.

    Attributes:
        status: READY or FAILED.
        attempts_made: Number of probes issued.
        last_outcome: Outcome of the final probe.
        delays: Backoff sleeps taken between attempts, in order. The
            startup delay is not included.
    """

    status: VerdictStatus
    attempts_made: int
    last_outcome: Optional[ProbeOutcome] = None
    delays: Tuple[float, ...] = field(default_factory=tuple)

    @property
    def ready(self) -> bool:
        return self.status == VerdictStatus.READY

    @property
    def total_wait(self) -> float:
        return sum(self.delays)

    def describe(self) -> str:
        if self.ready:
            return f"ready after {self.attempts_made} attempt(s)"
        cause = self.last_outcome.describe() if self.last_outcome else "no outcome"
        return f"failed after {self.attempts_made} attempt(s), last: {cause}"


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------

class ReadinessPoller:
    """Drive a probe until it reports healthy or attempts run out.

    Args:
        policy: Poll policy for this session.
        sleep: Awaitable sleep used for the startup and backoff delays.
        on_attempt: Optional observer called with (attempt, outcome) after
            every probe. Errors raised by the observer are logged and
            ignored.
    """

    def __init__(
        self,
        policy: PollPolicy,
        sleep: SleepFn = asyncio.sleep,
        on_attempt: Optional[AttemptObserver] = None,
    ) -> None:
        self.policy = policy
        self._sleep = sleep
        self._on_attempt = on_attempt

    async def _probe_once(self, probe: ProbeFn) -> ProbeOutcome:
        try:
            return await probe(self.policy.per_attempt_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return ProbeOutcome.transport_error(
                ProbeKind.OTHER, f"{type(exc).__name__}: {exc}",
            )

    def _notify(self, attempt: int, outcome: ProbeOutcome) -> None:
        if self._on_attempt is None:
            return
        try:
            self._on_attempt(attempt, outcome)
        except Exception as exc:
            logger.debug("Attempt observer raised: %s", exc)

    async def run(self, probe: ProbeFn) -> PollVerdict:
        """Poll until ready or exhausted.

        Args:
            probe: Async callable taking the per-attempt timeout and
                returning a ProbeOutcome.

        Returns:
            PollVerdict, produced exactly once.
        """
        policy = self.policy
        if policy.startup_delay > 0:
            logger.debug("Waiting %.2fs before first health probe", policy.startup_delay)
            await self._sleep(policy.startup_delay)

        delays = []
        outcome: Optional[ProbeOutcome] = None

        for attempt in range(1, policy.max_attempts + 1):
            outcome = await self._probe_once(probe)
            self._notify(attempt, outcome)

            if outcome.is_healthy:
                logger.info(
                    "Health check passed on attempt %d of %d",
                    attempt, policy.max_attempts,
                )
                return PollVerdict(
                    VerdictStatus.READY, attempt, outcome, tuple(delays),
                )

            logger.warning(
                "Health check attempt %d of %d failed: %s",
                attempt, policy.max_attempts, outcome.describe(),
            )

            if attempt < policy.max_attempts:
                delay = backoff_delay(attempt, policy)
                delays.append(delay)
                await self._sleep(delay)

        logger.error(
            "Agent failed to become healthy after %d attempts", policy.max_attempts,
        )
        return PollVerdict(
            VerdictStatus.FAILED, policy.max_attempts, outcome, tuple(delays),
        )


async def wait_until_ready(
    probe: ProbeFn,
    policy: PollPolicy,
    sleep: SleepFn = asyncio.sleep,
    on_attempt: Optional[AttemptObserver] = None,
) -> PollVerdict:
    """Convenience wrapper around ReadinessPoller.run()."""
    return await ReadinessPoller(policy, sleep=sleep, on_attempt=on_attempt).run(probe)
