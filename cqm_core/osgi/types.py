"""OSGi health check and configuration datatypes."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class HealthcheckConfig:
    rescue_mode: bool = False
    same_state_barrier: int = 3
    error_state_barrier: int = 3
    max_attempts: int = 10
    sleep_seconds: int = 10

    def __post_init__(self) -> None:
        for name in ("same_state_barrier", "error_state_barrier", "max_attempts"):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"{name} must be greater than 0")
        if int(self.sleep_seconds) < 0:
            raise ValueError("sleep_seconds must not be negative")


class MonitorStatus(str, Enum):
    POLLING = "polling"
    STABILIZED = "stabilized"
    RESCUED = "rescued"
    FATAL = "fatal"

    @property
    def terminal(self) -> bool:
        return self is not MonitorStatus.POLLING


@dataclass(frozen=True)
class MonitorRun:
    """Counters of a single stability check.

    ``same_state_count`` is the number of snapshots identical to the one
    before them, so a run of N identical snapshots carries a count of N - 1.
    """

    previous_snapshot: str = ""
    same_state_count: int = 0
    error_count: int = 0
    attempt: int = 1
    status: MonitorStatus = MonitorStatus.POLLING

    def evolve(self, **changes: Any) -> "MonitorRun":
        return replace(self, **changes)


@dataclass(frozen=True)
class MonitorResult:
    status: MonitorStatus
    attempts: int
    errors: int = 0

    @property
    def degraded(self) -> bool:
        return self.status is MonitorStatus.RESCUED


@dataclass(frozen=True)
class ConfigState:
    exists: bool
    valid: bool
    properties: dict[str, Any] = field(default_factory=dict)
