"""CQ Unix Toolkit wrapper for OSGi configuration management."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Mapping

from cqm_core.errors import ToolInvocationError
from cqm_core.packages.types import ServerEndpoint
from cqm_core.security import redact_command_for_log

logger = logging.getLogger(__name__)


class ConfigToolClient:
    """Runs ``cqcfgls``/``cqcfg`` against one instance."""

    def __init__(
        self,
        endpoint: ServerEndpoint,
        *,
        install_dir: str | Path,
        timeout_seconds: float = 120.0,
    ) -> None:
        self.endpoint = endpoint
        self.install_dir = Path(install_dir)
        self.timeout_seconds = timeout_seconds

    def list(self) -> str:
        result = self._run("cqcfgls", [])
        return result.stdout or ""

    def get_properties(self, pid: str) -> dict[str, Any]:
        result = self._run("cqcfg", ["-j", pid])
        try:
            payload = json.loads(result.stdout or "")
        except json.JSONDecodeError as exc:
            raise ToolInvocationError(f"Can't get {pid} properties: invalid JSON output") from exc
        properties = payload.get("properties") if isinstance(payload, dict) else None
        if not isinstance(properties, dict):
            raise ToolInvocationError(f"Can't get {pid} properties: missing 'properties' object")
        return properties

    def set_properties(self, pid: str, properties: Mapping[str, Any]) -> None:
        self._run("cqcfg", [*property_args(properties), pid])

    def _run(self, tool: str, args: list[str]) -> subprocess.CompletedProcess[str]:
        command = [
            str(self.install_dir / tool),
            "-i",
            self.endpoint.instance,
            "-u",
            self.endpoint.username,
            "-p",
            self.endpoint.password,
            *args,
        ]
        redacted = " ".join(redact_command_for_log(command))
        logger.debug("executing %s", redacted)
        try:
            result = subprocess.run(
                command,
                check=False,
                capture_output=True,
                text=True,
                timeout=max(float(self.timeout_seconds), 1.0),
            )
        except FileNotFoundError as exc:
            raise ToolInvocationError(
                f"{tool} not found in {self.install_dir}. Install the CQ Unix Toolkit first."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ToolInvocationError(f"{tool} timed out after {self.timeout_seconds:.1f}s") from exc
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise ToolInvocationError(f"{tool} failed (exit={result.returncode}) cmd='{redacted}' err='{detail}'")
        return result


def property_args(properties: Mapping[str, Any]) -> list[str]:
    """Expand properties into ``-s KEY -v VALUE`` pairs, one per array element."""
    args: list[str] = []
    for key, value in properties.items():
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            args.extend(["-s", str(key), "-v", _format_value(item)])
    return args


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
