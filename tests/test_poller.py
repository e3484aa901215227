"""Tests for the readiness poller.

Probes are scripted stubs and sleeps are recorded instead of awaited, so
every session here is deterministic and instant.
"""

from __future__ import annotations

import asyncio
from typing import List

import pytest
from pydantic import ValidationError

from agentdeploy.health import (
    PollPolicy,
    ProbeKind,
    ProbeOutcome,
    ReadinessPoller,
    VerdictStatus,
    backoff_delay,
    wait_until_ready,
)

HEALTHY = ProbeOutcome.healthy({"status": "ok"})
UNHEALTHY = ProbeOutcome.unhealthy(503, "starting")
TIMEOUT = ProbeOutcome.transport_error(ProbeKind.TIMEOUT, "timed out")
REFUSED = ProbeOutcome.transport_error(ProbeKind.CONNECTION_REFUSED, "refused")


class ScriptedProbe:
    """Returns a fixed sequence of outcomes, repeating the last one."""

    def __init__(self, outcomes: List[ProbeOutcome]) -> None:
        self.outcomes = list(outcomes)
        self.timeouts: List[float] = []

    @property
    def calls(self) -> int:
        return len(self.timeouts)

    async def __call__(self, timeout: float) -> ProbeOutcome:
        self.timeouts.append(timeout)
        index = min(len(self.timeouts), len(self.outcomes)) - 1
        return self.outcomes[index]


def _policy(**overrides) -> PollPolicy:
    settings = dict(
        max_attempts=5,
        initial_delay=0.5,
        backoff_multiplier=2.0,
        max_delay=3.0,
        per_attempt_timeout=1.0,
    )
    settings.update(overrides)
    return PollPolicy(**settings)


# ---------------------------------------------------------------------------
# PollPolicy / backoff_delay
# ---------------------------------------------------------------------------


class TestPollPolicy:
    """Tests for policy validation."""

    def test_defaults(self):
        policy = PollPolicy()
        assert policy.max_attempts == 15
        assert policy.initial_delay == 1.0
        assert policy.backoff_multiplier == 1.5
        assert policy.max_delay == 5.0
        assert policy.per_attempt_timeout == 5.0
        assert policy.startup_delay == 0.0

    @pytest.mark.parametrize("field, value", [
        ("max_attempts", 0),
        ("per_attempt_timeout", 0),
        ("backoff_multiplier", 0.5),
        ("initial_delay", -1),
    ])
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            _policy(**{field: value})

    def test_cap_below_initial_rejected(self):
        with pytest.raises(ValidationError):
            _policy(initial_delay=2.0, max_delay=1.0)

    def test_frozen(self):
        policy = _policy()
        with pytest.raises(ValidationError):
            policy.max_attempts = 99


class TestBackoffDelay:
    """Tests for the pure backoff function."""

    def test_exponential_growth(self):
        policy = _policy(initial_delay=0.1, backoff_multiplier=2.0, max_delay=None)
        delays = [backoff_delay(i, policy) for i in range(1, 5)]
        assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8])

    def test_capped(self):
        policy = _policy(initial_delay=1.0, backoff_multiplier=3.0, max_delay=5.0)
        assert backoff_delay(1, policy) == 1.0
        assert backoff_delay(2, policy) == 3.0
        assert backoff_delay(3, policy) == 5.0
        assert backoff_delay(10, policy) == 5.0

    def test_monotonic_and_bounded(self):
        policy = _policy(initial_delay=0.3, backoff_multiplier=1.7, max_delay=4.0)
        delays = [backoff_delay(i, policy) for i in range(1, 30)]
        assert all(b >= a for a, b in zip(delays, delays[1:]))
        assert max(delays) <= 4.0

    def test_multiplier_one_is_constant(self):
        policy = _policy(initial_delay=0.25, backoff_multiplier=1.0)
        assert {backoff_delay(i, policy) for i in range(1, 6)} == {0.25}

    def test_attempt_zero_rejected(self):
        with pytest.raises(ValueError):
            backoff_delay(0, _policy())


# ---------------------------------------------------------------------------
# ReadinessPoller.run()
# ---------------------------------------------------------------------------


class TestPollerOutcomes:
    """Tests for verdicts and probe counts."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n", [1, 2, 5, 8])
    async def test_always_unhealthy_fails_after_n_probes(self, n, sleep):
        stub = ScriptedProbe([UNHEALTHY])
        verdict = await ReadinessPoller(_policy(max_attempts=n), sleep=sleep).run(stub)

        assert verdict.status == VerdictStatus.FAILED
        assert verdict.attempts_made == n
        assert verdict.last_outcome == UNHEALTHY
        assert stub.calls == n

    @pytest.mark.asyncio
    @pytest.mark.parametrize("k", [1, 3, 5])
    async def test_ready_on_attempt_k(self, k, sleep):
        stub = ScriptedProbe([UNHEALTHY] * (k - 1) + [HEALTHY, UNHEALTHY])
        verdict = await ReadinessPoller(_policy(max_attempts=5), sleep=sleep).run(stub)

        assert verdict.ready
        assert verdict.attempts_made == k
        assert stub.calls == k

    @pytest.mark.asyncio
    async def test_healthy_on_last_allowed_attempt_is_ready(self, sleep):
        stub = ScriptedProbe([TIMEOUT, TIMEOUT, HEALTHY])
        verdict = await ReadinessPoller(_policy(max_attempts=3), sleep=sleep).run(stub)

        assert verdict.ready
        assert verdict.attempts_made == 3

    @pytest.mark.asyncio
    async def test_single_attempt_no_sleep(self, sleep):
        stub = ScriptedProbe([REFUSED])
        verdict = await ReadinessPoller(_policy(max_attempts=1), sleep=sleep).run(stub)

        assert verdict.status == VerdictStatus.FAILED
        assert verdict.attempts_made == 1
        assert stub.calls == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_single_attempt_healthy(self, sleep):
        stub = ScriptedProbe([HEALTHY])
        verdict = await ReadinessPoller(_policy(max_attempts=1), sleep=sleep).run(stub)

        assert verdict.ready
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_malformed_is_retried(self, sleep):
        malformed = ProbeOutcome.malformed(200, "OK")
        stub = ScriptedProbe([malformed, HEALTHY])
        verdict = await ReadinessPoller(_policy(), sleep=sleep).run(stub)

        assert verdict.ready
        assert verdict.attempts_made == 2

    @pytest.mark.asyncio
    async def test_per_attempt_timeout_passed_to_probe(self, sleep):
        stub = ScriptedProbe([TIMEOUT, HEALTHY])
        await ReadinessPoller(_policy(per_attempt_timeout=0.05), sleep=sleep).run(stub)
        assert stub.timeouts == [0.05, 0.05]


class TestPollerTiming:
    """Tests for the startup and backoff sleeps."""

    @pytest.mark.asyncio
    async def test_timeout_refused_healthy_scenario(self, sleep):
        policy = PollPolicy(
            max_attempts=3,
            initial_delay=0.1,
            backoff_multiplier=2.0,
            per_attempt_timeout=0.05,
        )
        stub = ScriptedProbe([TIMEOUT, REFUSED, HEALTHY])
        verdict = await ReadinessPoller(policy, sleep=sleep).run(stub)

        assert verdict.ready
        assert stub.calls == 3
        assert sleep.calls == pytest.approx([0.1, 0.2])
        assert verdict.delays == pytest.approx((0.1, 0.2))
        assert verdict.total_wait == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_all_timeouts_scenario(self, sleep):
        policy = PollPolicy(
            max_attempts=3,
            initial_delay=0.1,
            backoff_multiplier=2.0,
            per_attempt_timeout=0.05,
        )
        verdict = await ReadinessPoller(policy, sleep=sleep).run(ScriptedProbe([TIMEOUT]))

        assert verdict.status == VerdictStatus.FAILED
        assert verdict.attempts_made == 3
        assert verdict.last_outcome.kind == ProbeKind.TIMEOUT
        # no sleep after the final attempt
        assert len(sleep.calls) == 2

    @pytest.mark.asyncio
    async def test_startup_delay_applied_once_first(self, sleep):
        policy = _policy(max_attempts=3, startup_delay=5.0)
        verdict = await ReadinessPoller(policy, sleep=sleep).run(ScriptedProbe([UNHEALTHY]))

        assert sleep.calls == pytest.approx([5.0, 0.5, 1.0])
        assert verdict.delays == pytest.approx((0.5, 1.0))

    @pytest.mark.asyncio
    async def test_delays_respect_cap(self, sleep):
        policy = _policy(max_attempts=8, initial_delay=1.0, backoff_multiplier=2.0, max_delay=3.0)
        await ReadinessPoller(policy, sleep=sleep).run(ScriptedProbe([UNHEALTHY]))

        assert sleep.calls == [1.0, 2.0, 3.0, 3.0, 3.0, 3.0, 3.0]


class TestPollerRobustness:
    """Tests for probe and observer failures."""

    @pytest.mark.asyncio
    async def test_probe_exception_becomes_other(self, sleep):
        calls = []

        async def flaky(timeout: float) -> ProbeOutcome:
            calls.append(timeout)
            if len(calls) == 1:
                raise RuntimeError("socket exploded")
            return HEALTHY

        verdict = await ReadinessPoller(_policy(), sleep=sleep).run(flaky)
        assert verdict.ready
        assert verdict.attempts_made == 2

    @pytest.mark.asyncio
    async def test_probe_exception_kept_as_last_outcome(self, sleep):
        async def broken(timeout: float) -> ProbeOutcome:
            raise RuntimeError("socket exploded")

        verdict = await ReadinessPoller(_policy(max_attempts=2), sleep=sleep).run(broken)
        assert verdict.last_outcome.kind == ProbeKind.OTHER
        assert "socket exploded" in verdict.last_outcome.message

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, sleep):
        async def cancelled(timeout: float) -> ProbeOutcome:
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await ReadinessPoller(_policy(), sleep=sleep).run(cancelled)

    @pytest.mark.asyncio
    async def test_observer_sees_every_attempt(self, sleep):
        seen = []
        stub = ScriptedProbe([TIMEOUT, REFUSED, HEALTHY])
        await ReadinessPoller(
            _policy(), sleep=sleep, on_attempt=lambda n, o: seen.append((n, o.kind)),
        ).run(stub)

        assert seen == [
            (1, ProbeKind.TIMEOUT),
            (2, ProbeKind.CONNECTION_REFUSED),
            (3, ProbeKind.HEALTHY),
        ]

    @pytest.mark.asyncio
    async def test_failing_observer_ignored(self, sleep):
        def observer(attempt, outcome):
            raise RuntimeError("logging backend down")

        stub = ScriptedProbe([UNHEALTHY, HEALTHY])
        verdict = await ReadinessPoller(_policy(), sleep=sleep, on_attempt=observer).run(stub)
        assert verdict.ready
        assert verdict.attempts_made == 2


class TestDeterminism:
    """Same stub sequence and policy, same verdict."""

    @pytest.mark.asyncio
    async def test_repeat_runs_identical(self):
        script = [TIMEOUT, UNHEALTHY, REFUSED, UNHEALTHY]
        policy = _policy(max_attempts=4)
        verdicts = []
        sleeps = []
        for _ in range(2):
            recorded: List[float] = []

            async def sleep(seconds: float) -> None:
                recorded.append(seconds)

            verdicts.append(await wait_until_ready(ScriptedProbe(script), policy, sleep=sleep))
            sleeps.append(recorded)

        assert verdicts[0] == verdicts[1]
        assert verdicts[0].attempts_made == verdicts[1].attempts_made == 4
        assert sleeps[0] == sleeps[1]

    def test_describe(self):
        from agentdeploy.health import PollVerdict

        failed = PollVerdict(VerdictStatus.FAILED, 3, TIMEOUT)
        assert failed.describe() == "failed after 3 attempt(s), last: timeout: timed out"
        assert PollVerdict(VerdictStatus.READY, 1, HEALTHY).describe() == "ready after 1 attempt(s)"
