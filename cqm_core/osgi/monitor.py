"""OSGi bundle stability health check.

Bundle activation after a package install is asynchronous and may flap for a
while. The monitor polls the aggregated bundle status and waits until the same
snapshot has been observed ``same_state_barrier`` times in a row. Failed polls
reset the stability run; with rescue mode enabled, ``error_state_barrier``
consecutive failures end the check as a degraded success instead of blocking
the deployment forever. Anything else ends with a fatal timeout after
``max_attempts`` polls.

The state machine lives in :func:`step` so it can be driven without a clock
or a server.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from cqm_core.errors import CqmError, StabilityTimeoutError

from .types import HealthcheckConfig, MonitorResult, MonitorRun, MonitorStatus

logger = logging.getLogger(__name__)

PollOutcome = str | BaseException


def step(run: MonitorRun, outcome: PollOutcome, config: HealthcheckConfig) -> MonitorRun:
    """Advance ``run`` by one poll result."""
    if run.status.terminal:
        raise ValueError(f"monitor run already finished with status {run.status.value}")

    if isinstance(outcome, BaseException):
        run = run.evolve(
            previous_snapshot="",
            same_state_count=0,
            error_count=run.error_count + 1,
        )
        if config.rescue_mode and run.error_count == config.error_state_barrier:
            return run.evolve(status=MonitorStatus.RESCUED)
    else:
        same_state_count = run.same_state_count + 1 if outcome == run.previous_snapshot else 0
        run = run.evolve(
            previous_snapshot=outcome,
            same_state_count=same_state_count,
            error_count=0,
        )
        if same_state_count + 1 == config.same_state_barrier:
            return run.evolve(status=MonitorStatus.STABILIZED)

    if run.attempt >= config.max_attempts:
        return run.evolve(status=MonitorStatus.FATAL)
    return run.evolve(attempt=run.attempt + 1)


class StabilityMonitor:
    """Polls bundle status until it settles, is rescued, or times out."""

    def __init__(
        self,
        *,
        sleep: Callable[[float], None] = time.sleep,
        log: logging.Logger | None = None,
    ) -> None:
        self._sleep = sleep
        self._log = log or logger

    def await_stability(
        self,
        fetch_status: Callable[[], str],
        config: HealthcheckConfig,
    ) -> MonitorResult:
        run = MonitorRun()
        while True:
            attempt = run.attempt
            try:
                outcome: PollOutcome = fetch_status()
            except CqmError as exc:
                self._log.warning(
                    "bundle status check failed attempt=%s/%s err=%s",
                    attempt,
                    config.max_attempts,
                    exc,
                )
                outcome = exc

            run = step(run, outcome, config)
            self._log.debug(
                "bundle stability attempt=%s same_state=%s errors=%s status=%s",
                attempt,
                run.same_state_count,
                run.error_count,
                run.status.value,
            )

            if run.status is MonitorStatus.STABILIZED:
                self._log.info("OSGi bundles are stable after %s attempt(s)", run.attempt)
                return MonitorResult(status=run.status, attempts=run.attempt)
            if run.status is MonitorStatus.RESCUED:
                self._log.warning(
                    "bundle status unavailable %s time(s) in a row, continuing in rescue mode",
                    run.error_count,
                )
                return MonitorResult(status=run.status, attempts=run.attempt, errors=run.error_count)
            if run.status is MonitorStatus.FATAL:
                raise StabilityTimeoutError(
                    f"OSGi bundles did not stabilize within {config.max_attempts} attempt(s)",
                    attempts=run.attempt,
                )
            self._sleep(config.sleep_seconds)
