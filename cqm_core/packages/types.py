"""Package lifecycle datatypes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cqm_core.osgi.types import MonitorResult

PACKAGE_ACTIONS = ("upload", "install", "deploy", "uninstall", "delete")


@dataclass(frozen=True)
class ServerEndpoint:
    instance: str
    username: str
    password: str
    timeout_seconds: float | None = None

    @property
    def base_url(self) -> str:
        return self.instance.rstrip("/")


@dataclass(frozen=True)
class PackageDescriptor:
    """name/group/version read from META-INF/vault/properties.xml."""

    name: str
    group: str
    version: str


@dataclass(frozen=True)
class RemotePackageRecord:
    name: str
    group: str
    version: str
    download_name: str
    last_unpacked: str | None = None

    @property
    def ever_installed(self) -> bool:
        return bool(self.last_unpacked)

    def matches(self, descriptor: PackageDescriptor) -> bool:
        return (
            self.name == descriptor.name
            and self.group == descriptor.group
            and self.version == descriptor.version
        )


@dataclass(frozen=True)
class PackageState:
    uploaded: bool
    installed: bool
    matched_record: RemotePackageRecord | None = None

    @classmethod
    def absent(cls) -> "PackageState":
        return cls(uploaded=False, installed=False, matched_record=None)


class ActionOutcome(str, Enum):
    CONVERGED = "converged"
    UNCHANGED = "unchanged"
    ERROR = "error"


@dataclass(frozen=True)
class ActionResult:
    resource: str
    action: str
    outcome: ActionOutcome
    message: str
    monitor: "MonitorResult | None" = None

    @property
    def ok(self) -> bool:
        return self.outcome is not ActionOutcome.ERROR
