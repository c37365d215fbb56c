from __future__ import annotations

from typing import Any, Mapping

from cqm_core.osgi import ConfigReconciler, flatten_properties, merge_properties
from cqm_core.packages import ActionOutcome, ServerEndpoint
from cqm_core.resources import OsgiConfigResource

LISTING = """com.day.cq.mailer.DefaultMailService
org.apache.sling.commons.log.LogManager.factory.config.1a2b
org.apache.sling.commons.log.LogManager.factory.config.3c4d
org.apache.sling.commons.log.LogManager.factory.config
"""


class _FakeTool:
    def __init__(self, properties: dict[str, Any] | None = None, listing: str = LISTING) -> None:
        self.listing = listing
        self.properties = properties or {}
        self.updates: list[tuple[str, dict[str, Any]]] = []

    def list(self) -> str:
        return self.listing

    def get_properties(self, pid: str) -> dict[str, Any]:
        return self.properties

    def set_properties(self, pid: str, properties: Mapping[str, Any]) -> None:
        self.updates.append((pid, dict(properties)))


def _resource(properties: dict[str, Any], *, append: bool = False, pid: str = "com.day.cq.mailer.DefaultMailService", factory_pid: str | None = None) -> OsgiConfigResource:
    return OsgiConfigResource(
        pid=pid,
        endpoint=ServerEndpoint("http://localhost:4502", "admin", "admin"),
        properties=properties,
        append=append,
        factory_pid=factory_pid,
    )


def test_validate_is_order_and_duplicate_insensitive() -> None:
    reconciler = ConfigReconciler(_resource({"a": [1, 2]}), tool=_FakeTool())
    assert reconciler.validate({"a": [2, 1]}) is True
    assert reconciler.validate({"a": [2, 1, 1]}) is True
    assert reconciler.validate({"a": [1, 3]}) is False


def test_validate_with_append_accepts_superset() -> None:
    reconciler = ConfigReconciler(_resource({"hosts": ["b"], "port": 25}, append=True), tool=_FakeTool())
    assert reconciler.validate({"hosts": ["a", "b"], "port": 25, "debug": False}) is True
    assert reconciler.validate({"hosts": ["a"], "port": 25}) is False
    assert reconciler.validate({"hosts": ["a", "b"], "port": 26}) is False


def test_merge_unions_arrays_and_overwrites_scalars() -> None:
    merged = merge_properties({"hosts": ["b", "a"], "port": 25, "keep": "x"}, {"hosts": ["c", "a"], "port": 26})
    assert merged == {"hosts": ["a", "b", "c"], "port": 26, "keep": "x"}


def test_flatten_properties_prefers_value_then_sorted_values() -> None:
    flat = flatten_properties({"a": {"value": "1"}, "b": {"values": ["z", "y", "z"]}})
    assert flat == {"a": "1", "b": ["y", "z"]}


def test_create_reports_missing_config_without_creating() -> None:
    tool = _FakeTool(listing="something.else\n")
    result = ConfigReconciler(_resource({"a": "1"}), tool=tool).create()
    assert result.outcome is ActionOutcome.ERROR
    assert tool.updates == []


def test_create_is_noop_when_valid() -> None:
    tool = _FakeTool({"smtp.host": {"value": "mail.local"}})
    result = ConfigReconciler(_resource({"smtp.host": "mail.local"}), tool=tool).create()
    assert result.outcome is ActionOutcome.UNCHANGED
    assert tool.updates == []


def test_create_updates_mismatched_config() -> None:
    tool = _FakeTool({"smtp.host": {"value": "old.local"}, "to": {"values": ["b"]}})
    resource = _resource({"smtp.host": "mail.local", "to": ["a"]}, append=True)
    result = ConfigReconciler(resource, tool=tool).create()

    assert result.outcome is ActionOutcome.CONVERGED
    assert tool.updates == [
        ("com.day.cq.mailer.DefaultMailService", {"smtp.host": "mail.local", "to": ["a", "b"]})
    ]


def test_create_dry_run_does_not_call_tool() -> None:
    tool = _FakeTool({"smtp.host": {"value": "old.local"}})
    result = ConfigReconciler(_resource({"smtp.host": "mail.local"}), tool=tool).create(dry_run=True)
    assert result.outcome is ActionOutcome.CONVERGED
    assert "dry run" in result.message
    assert tool.updates == []


def test_exists_matches_whole_pid_only() -> None:
    reconciler = ConfigReconciler(
        _resource({}, pid="org.apache.sling.commons.log.LogManager"),
        tool=_FakeTool(),
    )
    assert reconciler.exists() is False


def test_factory_instances() -> None:
    reconciler = ConfigReconciler(
        _resource({}, factory_pid="org.apache.sling.commons.log.LogManager.factory.config"),
        tool=_FakeTool(),
    )
    assert reconciler.factory_instances() == [
        "org.apache.sling.commons.log.LogManager.factory.config.1a2b",
        "org.apache.sling.commons.log.LogManager.factory.config.3c4d",
    ]
