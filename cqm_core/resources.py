"""Declared resources: packages and OSGi configurations."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from cqm_core.errors import ConfigurationError
from cqm_core.osgi.types import HealthcheckConfig
from cqm_core.packages.types import PACKAGE_ACTIONS, ServerEndpoint
from cqm_core.settings import (
    Settings,
    build_healthcheck,
    resolve_env_value,
    to_optional_bool,
    to_optional_str,
)

OSGI_CONFIG_ACTIONS = ("create",)


def _ensure_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if isinstance(data, Mapping):
        return data
    raise ConfigurationError(f"expected mapping for {what}")


def _endpoint(raw: Mapping[str, Any], defaults: ServerEndpoint) -> ServerEndpoint:
    return ServerEndpoint(
        instance=to_optional_str(raw.get("instance")) or defaults.instance,
        username=to_optional_str(raw.get("username")) or defaults.username,
        password=to_optional_str(raw.get("password")) or defaults.password,
        timeout_seconds=defaults.timeout_seconds,
    )


def _action(raw: Mapping[str, Any], allowed: tuple[str, ...], default: str, what: str) -> str:
    action = str(raw.get("action") or default).strip().lower()
    if action not in allowed:
        raise ConfigurationError(f"{what}: unsupported action {action!r} (expected one of: {', '.join(allowed)})")
    return action


@dataclass(frozen=True)
class PackageResource:
    name: str
    source: str
    endpoint: ServerEndpoint
    action: str = "deploy"
    recursive_install: bool = False
    healthcheck: HealthcheckConfig = field(default_factory=HealthcheckConfig)
    http_user: str | None = None
    http_pass: str | None = None

    @property
    def instance(self) -> str:
        return self.endpoint.instance

    @classmethod
    def from_dict(
        cls,
        name: str,
        data: Mapping[str, Any],
        settings: Settings | None = None,
    ) -> "PackageResource":
        raw = _ensure_mapping(data, f"package {name!r}")
        settings = settings or Settings()
        source = to_optional_str(raw.get("source"))
        if not source:
            raise ConfigurationError(f"package {name!r}: source is required")
        return cls(
            name=name,
            source=source,
            endpoint=_endpoint(raw, settings.server),
            action=_action(raw, PACKAGE_ACTIONS, "deploy", f"package {name!r}"),
            recursive_install=bool(to_optional_bool(raw.get("recursive_install"))),
            healthcheck=build_healthcheck(raw, settings.healthcheck),
            http_user=to_optional_str(raw.get("http_user")),
            http_pass=to_optional_str(raw.get("http_pass")),
        )


@dataclass(frozen=True)
class OsgiConfigResource:
    pid: str
    endpoint: ServerEndpoint
    properties: dict[str, Any] = field(default_factory=dict)
    append: bool = False
    factory_pid: str | None = None
    action: str = "create"

    @property
    def name(self) -> str:
        return self.pid

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], settings: Settings | None = None) -> "OsgiConfigResource":
        raw = _ensure_mapping(data, "osgi_config")
        settings = settings or Settings()
        pid = to_optional_str(raw.get("pid") or raw.get("name"))
        if not pid:
            raise ConfigurationError("osgi_config: pid is required")
        properties_raw = _ensure_mapping(raw.get("properties") or {}, f"osgi_config {pid!r} properties")
        properties: dict[str, Any] = {}
        for key, value in properties_raw.items():
            if isinstance(value, (list, tuple)):
                properties[str(key)] = [resolve_env_value(item) for item in value]
            else:
                properties[str(key)] = resolve_env_value(value)
        return cls(
            pid=pid,
            endpoint=_endpoint(raw, settings.server),
            properties=properties,
            append=bool(to_optional_bool(raw.get("append"))),
            factory_pid=to_optional_str(raw.get("factory_pid")),
            action=_action(raw, OSGI_CONFIG_ACTIONS, "create", f"osgi_config {pid!r}"),
        )


Resource = PackageResource | OsgiConfigResource


def parse_resources(payload: Any, settings: Settings | None = None) -> list[Resource]:
    document = _ensure_mapping(payload, "resource declarations")
    entries = document.get("resources")
    if not isinstance(entries, list):
        raise ConfigurationError("resource declarations must contain a 'resources' list")
    resources: list[Resource] = []
    for index, entry in enumerate(entries):
        item = _ensure_mapping(entry, f"resources[{index}]")
        kind = str(item.get("type") or "").strip().lower()
        if kind == "package":
            name = to_optional_str(item.get("name"))
            if not name:
                raise ConfigurationError(f"resources[{index}]: package name is required")
            resources.append(PackageResource.from_dict(name, item, settings))
        elif kind == "osgi_config":
            resources.append(OsgiConfigResource.from_dict(item, settings))
        else:
            raise ConfigurationError(f"resources[{index}]: unknown resource type {kind!r}")
    return resources


def load_resources(path: Path, settings: Settings | None = None) -> list[Resource]:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"resource file not found: {path}")
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {path}: {exc}") from exc
    return parse_resources(payload or {}, settings)
