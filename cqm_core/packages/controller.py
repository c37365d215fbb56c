"""Package lifecycle actions: upload, install, deploy, uninstall, delete."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Protocol

from cqm_core.errors import PackageCommandError
from cqm_core.osgi.monitor import StabilityMonitor
from cqm_core.osgi.types import MonitorResult

from .client import crx_path, source_basename
from .descriptor import PackageMetadataReader
from .resolver import PackageStateResolver
from .types import (
    PACKAGE_ACTIONS,
    ActionOutcome,
    ActionResult,
    PackageDescriptor,
    PackageState,
    RemotePackageRecord,
)

if TYPE_CHECKING:
    from cqm_core.resources import PackageResource

logger = logging.getLogger(__name__)


class RemoteServerClient(Protocol):
    def download(self, source: str, dest_path: Path, http_user: str | None, http_pass: str | None) -> Path: ...

    def list_packages(self) -> list[RemotePackageRecord]: ...

    def upload(self, local_path: Path) -> None: ...

    def install(self, remote_path: str, recursive: bool = False) -> Any: ...

    def uninstall(self, remote_path: str) -> Any: ...

    def delete(self, remote_path: str) -> Any: ...

    def fetch_bundle_status(self) -> str: ...


class DescriptorReader(Protocol):
    def read_descriptor(self, local_path: Path) -> PackageDescriptor: ...


class PackageLifecycleController:
    """Converges one declared package on one instance.

    Every action starts from a fresh look at the server, so re-running the
    same action is safe: a satisfied precondition never reaches the network
    beyond the listing call.
    """

    def __init__(
        self,
        resource: "PackageResource",
        *,
        client: RemoteServerClient,
        cache_dir: Path,
        reader: DescriptorReader | None = None,
        monitor: StabilityMonitor | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.resource = resource
        self.client = client
        self.cache_dir = Path(cache_dir)
        self.reader = reader or PackageMetadataReader()
        self.monitor = monitor or StabilityMonitor(log=log)
        self.resolver = PackageStateResolver(client)
        self._log = log or logger
        self.descriptor: PackageDescriptor | None = None
        self.state: PackageState | None = None

    @property
    def local_path(self) -> Path:
        return self.cache_dir / source_basename(self.resource.source)

    def load(self) -> PackageState:
        local_path = self.local_path
        self._log.debug("local path: %s", local_path)
        self.client.download(
            self.resource.source,
            local_path,
            self.resource.http_user,
            self.resource.http_pass,
        )
        self.descriptor = self.reader.read_descriptor(local_path)
        return self.refresh()

    def refresh(self) -> PackageState:
        if self.descriptor is None:
            raise RuntimeError("package descriptor is not loaded")
        self.state = self.resolver.resolve(self.descriptor)
        return self.state

    def run(self, action: str) -> ActionResult:
        if action not in PACKAGE_ACTIONS:
            raise ValueError(f"unsupported package action: {action!r}")
        handler: Callable[[], ActionResult] = getattr(self, action)
        return handler()

    def status(self) -> PackageState:
        return self.load()

    # Actions
    # ---------------------------------------------------------------------

    def upload(self) -> ActionResult:
        state = self.load()
        if state.uploaded:
            return self._unchanged("upload", f"Package {self.resource.name} is already uploaded")
        self._trigger_upload()
        return self._converged("upload", f"Uploaded {self.resource.name}")

    def install(self) -> ActionResult:
        state = self.load()
        record = state.matched_record
        if not state.uploaded or record is None:
            return self._error("install", "Can't install not uploaded package!")
        if state.installed:
            return self._unchanged("install", f"Package {self.resource.name} is already installed")
        monitor = self._trigger_install(record)
        return self._converged("install", f"Installed {self.resource.name}", monitor)

    def deploy(self) -> ActionResult:
        state = self.load()
        record = state.matched_record
        if state.uploaded and record is not None:
            if state.installed:
                return self._unchanged(
                    "deploy",
                    f"Package {self.resource.name} is already uploaded and installed",
                )
            monitor = self._trigger_install(record)
            return self._converged("deploy", f"Installed {self.resource.name}", monitor)

        self._trigger_upload()
        # group and download name are only known once the server has the package
        record = self.refresh().matched_record
        if record is None:
            raise PackageCommandError(
                f"package {self.resource.name} is not listed by the package manager after upload"
            )
        monitor = self._trigger_install(record)
        return self._converged("deploy", f"Uploaded and installed {self.resource.name}", monitor)

    def uninstall(self) -> ActionResult:
        state = self.load()
        record = state.matched_record
        if not state.uploaded or record is None:
            return self._error("uninstall", "Can't uninstall not existing package!")
        if not state.installed:
            return self._unchanged("uninstall", f"Package {self.resource.name} is already uninstalled")
        self._log.debug("uninstalling %s package", self.resource.name)
        self.client.uninstall(crx_path(record.group, record.download_name))
        monitor = self._await_stability()
        return self._converged("uninstall", f"Uninstalled {self.resource.name}", monitor)

    def delete(self) -> ActionResult:
        state = self.load()
        record = state.matched_record
        if not state.uploaded or record is None:
            return self._unchanged("delete", f"Package {self.resource.name} is already deleted")
        self.client.delete(crx_path(record.group, record.download_name))
        return self._converged("delete", f"Deleted {self.resource.name}")

    # Transitions
    # ---------------------------------------------------------------------

    def _trigger_upload(self) -> None:
        self._log.debug("uploading %s package", self.resource.name)
        self.client.upload(self.local_path)

    def _trigger_install(self, record: RemotePackageRecord) -> MonitorResult:
        self._log.debug("installing %s package", self.resource.name)
        self.client.install(
            crx_path(record.group, record.download_name),
            self.resource.recursive_install,
        )
        return self._await_stability()

    def _await_stability(self) -> MonitorResult:
        return self.monitor.await_stability(self.client.fetch_bundle_status, self.resource.healthcheck)

    def _converged(self, action: str, message: str, monitor: MonitorResult | None = None) -> ActionResult:
        if monitor is not None and monitor.degraded:
            message = f"{message} (bundle health check rescued after {monitor.errors} error(s))"
        self._log.info(message)
        return ActionResult(self.resource.name, action, ActionOutcome.CONVERGED, message, monitor)

    def _unchanged(self, action: str, message: str) -> ActionResult:
        self._log.info(message)
        return ActionResult(self.resource.name, action, ActionOutcome.UNCHANGED, message)

    def _error(self, action: str, message: str) -> ActionResult:
        self._log.error(message)
        return ActionResult(self.resource.name, action, ActionOutcome.ERROR, message)
