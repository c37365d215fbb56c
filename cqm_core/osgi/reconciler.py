"""OSGi configuration reconciliation (property-set diffing)."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Protocol

from cqm_core.packages.types import ActionOutcome, ActionResult

from .types import ConfigState

if TYPE_CHECKING:
    from cqm_core.resources import OsgiConfigResource

logger = logging.getLogger(__name__)


class ConfigTool(Protocol):
    def list(self) -> str: ...

    def get_properties(self, pid: str) -> dict[str, Any]: ...

    def set_properties(self, pid: str, properties: Mapping[str, Any]) -> None: ...


def sorted_unique(values: Iterable[Any]) -> list[Any]:
    unique: list[Any] = []
    for value in values:
        if value not in unique:
            unique.append(value)
    try:
        return sorted(unique)
    except TypeError:
        return sorted(unique, key=repr)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def sanitize(properties: Mapping[str, Any]) -> dict[str, Any]:
    """Sort and deduplicate array values."""
    return {
        key: sorted_unique(value) if isinstance(value, (list, tuple)) else value
        for key, value in properties.items()
    }


def flatten_properties(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Turn ``cqcfg -j`` property descriptors into plain key/value pairs."""
    flat: dict[str, Any] = {}
    for key, descriptor in raw.items():
        if not isinstance(descriptor, Mapping):
            flat[key] = descriptor
            continue
        value = descriptor.get("value")
        if value is None:
            value = sorted_unique(descriptor.get("values") or [])
        flat[key] = value
    return flat


def merge_properties(current: Mapping[str, Any], desired: Mapping[str, Any]) -> dict[str, Any]:
    """Array values are unioned, scalars are overwritten by ``desired``."""
    merged = dict(current)
    for key, value in desired.items():
        if key in merged and isinstance(merged[key], (list, tuple)):
            merged[key] = sorted_unique([*merged[key], *_as_list(value)])
        else:
            merged[key] = value
    return merged


def properties_match(left: Mapping[str, Any], right: Mapping[str, Any]) -> bool:
    return sanitize(left) == sanitize(right)


def factory_pattern(factory_pid: str) -> re.Pattern[str]:
    return re.compile(rf"{re.escape(factory_pid)}\.\S+")


class ConfigReconciler:
    def __init__(
        self,
        resource: "OsgiConfigResource",
        *,
        tool: ConfigTool,
        log: logging.Logger | None = None,
    ) -> None:
        self.resource = resource
        self.tool = tool
        self._log = log or logger

    def desired_properties(self, current: Mapping[str, Any]) -> dict[str, Any]:
        if self.resource.append:
            return sanitize(merge_properties(current, self.resource.properties))
        return sanitize(self.resource.properties)

    def validate(self, current: Mapping[str, Any]) -> bool:
        return properties_match(self.desired_properties(current), current)

    def exists(self, listing: str | None = None) -> bool:
        text = self.tool.list() if listing is None else listing
        return self.resource.pid in text.split()

    def factory_instances(self, listing: str | None = None) -> list[str]:
        if not self.resource.factory_pid:
            return []
        text = self.tool.list() if listing is None else listing
        return factory_pattern(self.resource.factory_pid).findall(text)

    def load(self) -> ConfigState:
        if not self.exists():
            return ConfigState(exists=False, valid=False)
        current = flatten_properties(self.tool.get_properties(self.resource.pid))
        current = sanitize(current)
        valid = self.validate(current)
        self._log.debug("pid=%s current=%s valid=%s", self.resource.pid, current, valid)
        return ConfigState(exists=True, valid=valid, properties=current)

    def run(self, action: str, *, dry_run: bool = False) -> ActionResult:
        if action != "create":
            raise ValueError(f"unsupported osgi_config action: {action!r}")
        return self.create(dry_run=dry_run)

    def create(self, *, dry_run: bool = False) -> ActionResult:
        pid = self.resource.pid
        state = self.load()
        if not state.exists:
            message = f"OSGi config {pid} does NOT exist!"
            self._log.error(message)
            return ActionResult(pid, "create", ActionOutcome.ERROR, message)
        if state.valid:
            message = f"OSGi config {pid} is already in valid state - nothing to do"
            self._log.info(message)
            return ActionResult(pid, "create", ActionOutcome.UNCHANGED, message)

        desired = self.desired_properties(state.properties)
        if dry_run:
            message = f"Would update {pid} properties (dry run)"
            self._log.info(message)
            return ActionResult(pid, "create", ActionOutcome.CONVERGED, message)
        self.tool.set_properties(pid, desired)
        message = f"Updated {pid} properties"
        self._log.info(message)
        return ActionResult(pid, "create", ActionOutcome.CONVERGED, message)
