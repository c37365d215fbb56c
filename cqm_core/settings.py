"""Settings loaded from ``config/config.toml``."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from cqm_core.errors import ConfigurationError
from cqm_core.osgi.types import HealthcheckConfig
from cqm_core.packages.types import ServerEndpoint

logger = logging.getLogger(__name__)

CONFIG_ENV = "CQM_CONFIG"
DEFAULT_CONFIG_PATH = Path("config") / "config.toml"
DEFAULT_INSTANCE = "http://localhost:4502"
DEFAULT_TOOLKIT_DIR = "/opt/cq-unix-toolkit"
DEFAULT_CACHE_DIR = Path(".cqm") / "cache"


def resolve_env_value(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        env_name = value[2:-1].strip()
        if env_name:
            return os.getenv(env_name, "")
    return value


def to_optional_int(value: Any, key: str) -> int | None:
    value = resolve_env_value(value)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from exc


def to_optional_float(value: Any, key: str) -> float | None:
    value = resolve_env_value(value)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from exc


def to_optional_bool(value: Any) -> bool | None:
    value = resolve_env_value(value)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def to_optional_str(value: Any) -> str | None:
    value = resolve_env_value(value)
    if value is None:
        return None
    data = str(value).strip()
    return data if data else None


def build_healthcheck(
    raw: Mapping[str, Any],
    defaults: HealthcheckConfig | None = None,
) -> HealthcheckConfig:
    base = defaults or HealthcheckConfig()
    values = {
        "rescue_mode": to_optional_bool(raw.get("rescue_mode")),
        "same_state_barrier": to_optional_int(raw.get("same_state_barrier"), "same_state_barrier"),
        "error_state_barrier": to_optional_int(raw.get("error_state_barrier"), "error_state_barrier"),
        "max_attempts": to_optional_int(raw.get("max_attempts"), "max_attempts"),
        "sleep_seconds": to_optional_int(raw.get("sleep_time"), "sleep_time"),
    }
    try:
        return HealthcheckConfig(
            rescue_mode=base.rescue_mode if values["rescue_mode"] is None else values["rescue_mode"],
            same_state_barrier=_pick(values["same_state_barrier"], base.same_state_barrier),
            error_state_barrier=_pick(values["error_state_barrier"], base.error_state_barrier),
            max_attempts=_pick(values["max_attempts"], base.max_attempts),
            sleep_seconds=_pick(values["sleep_seconds"], base.sleep_seconds),
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def _pick(value: int | None, default: int) -> int:
    return default if value is None else value


@dataclass(frozen=True)
class ToolkitSettings:
    install_dir: str = DEFAULT_TOOLKIT_DIR
    timeout_seconds: float = 120.0


@dataclass(frozen=True)
class Settings:
    server: ServerEndpoint = field(
        default_factory=lambda: ServerEndpoint(DEFAULT_INSTANCE, "admin", "admin")
    )
    healthcheck: HealthcheckConfig = field(default_factory=HealthcheckConfig)
    toolkit: ToolkitSettings = field(default_factory=ToolkitSettings)
    cache_dir: Path = DEFAULT_CACHE_DIR

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, base_dir: Path | None = None) -> "Settings":
        server_raw = _section(payload, "server")
        healthcheck_raw = _section(payload, "healthcheck")
        toolkit_raw = _section(payload, "toolkit")
        cache_raw = _section(payload, "cache")

        server = ServerEndpoint(
            instance=to_optional_str(server_raw.get("instance")) or DEFAULT_INSTANCE,
            username=to_optional_str(server_raw.get("username")) or "admin",
            password=to_optional_str(server_raw.get("password")) or "admin",
            timeout_seconds=to_optional_float(server_raw.get("timeout_seconds"), "server.timeout_seconds"),
        )
        toolkit_timeout = to_optional_float(toolkit_raw.get("timeout_seconds"), "toolkit.timeout_seconds")
        toolkit = ToolkitSettings(
            install_dir=to_optional_str(toolkit_raw.get("install_dir")) or DEFAULT_TOOLKIT_DIR,
            timeout_seconds=toolkit_timeout if toolkit_timeout is not None else 120.0,
        )
        cache_dir = Path(to_optional_str(cache_raw.get("dir")) or DEFAULT_CACHE_DIR).expanduser()
        if not cache_dir.is_absolute() and base_dir is not None:
            cache_dir = base_dir / cache_dir
        return cls(
            server=server,
            healthcheck=build_healthcheck(healthcheck_raw),
            toolkit=toolkit,
            cache_dir=cache_dir,
        )


def _section(payload: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = payload.get(name)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"[{name}] must be a table")
    return section


def config_path(explicit: str | Path | None = None) -> Path:
    if explicit:
        return Path(explicit)
    from_env = os.getenv(CONFIG_ENV, "").strip()
    if from_env:
        return Path(from_env)
    return Path.cwd() / DEFAULT_CONFIG_PATH


def load_settings(path: str | Path | None = None) -> Settings:
    target = config_path(path)
    if not target.exists():
        if path:
            raise ConfigurationError(f"config file not found: {target}")
        logger.debug("no config file at %s, using defaults", target)
        return Settings()
    try:
        payload = tomllib.loads(target.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"invalid TOML in {target}: {exc}") from exc
    return Settings.from_dict(payload, base_dir=Path.cwd())
