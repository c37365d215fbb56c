"""cqm commands."""

from __future__ import annotations

import json
import logging
from argparse import ArgumentParser, BooleanOptionalAction
from pathlib import Path
from typing import Any, Callable

from cqm_core.errors import (
    ConfigurationError,
    CqmError,
    StabilityTimeoutError,
    ToolInvocationError,
)
from cqm_core.osgi.reconciler import ConfigReconciler
from cqm_core.osgi.toolkit import ConfigToolClient
from cqm_core.packages.client import PackageManagerClient, source_basename
from cqm_core.packages.controller import PackageLifecycleController
from cqm_core.packages.types import PACKAGE_ACTIONS, ActionResult
from cqm_core.resources import OsgiConfigResource, PackageResource, Resource, load_resources
from cqm_core.settings import Settings, load_settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2

FATAL_ERRORS = (StabilityTimeoutError, ToolInvocationError)

COMMANDS: dict[str, type["Command"]] = {}


def cqmcommand(name: str) -> Callable[[type["Command"]], type["Command"]]:
    def _register(cls: type["Command"]) -> type["Command"]:
        cls.name = name
        COMMANDS[name] = cls
        return cls

    return _register


class Command:
    name = ""
    help = ""

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        raise NotImplementedError

    def run(self, argv: Any) -> int:
        raise NotImplementedError

    def _settings(self, argv: Any) -> Settings:
        return load_settings(getattr(argv, "config", None))

    def _print(self, message: str) -> None:
        print(f"[cqm:{self.name}] {message}")


def package_controller(resource: PackageResource, settings: Settings) -> PackageLifecycleController:
    return PackageLifecycleController(
        resource,
        client=PackageManagerClient(resource.endpoint),
        cache_dir=settings.cache_dir,
    )


def config_reconciler(resource: OsgiConfigResource, settings: Settings) -> ConfigReconciler:
    tool = ConfigToolClient(
        resource.endpoint,
        install_dir=settings.toolkit.install_dir,
        timeout_seconds=settings.toolkit.timeout_seconds,
    )
    return ConfigReconciler(resource, tool=tool)


def reconcile(resource: Resource, settings: Settings, *, dry_run: bool = False) -> ActionResult:
    if isinstance(resource, PackageResource):
        return package_controller(resource, settings).run(resource.action)
    return config_reconciler(resource, settings).run(resource.action, dry_run=dry_run)


def _exit_code_for(exc: CqmError) -> int:
    return EXIT_FATAL if isinstance(exc, FATAL_ERRORS) else EXIT_FAILED


def _add_package_arguments(parser: ArgumentParser) -> None:
    parser.add_argument("--source", required=True, help="Package URL, file:// URI or local path")
    parser.add_argument("--name", help="Resource name (default: file name of --source)")
    parser.add_argument("--instance", help="Instance URL, e.g. http://localhost:4502")
    parser.add_argument("--username", help="Instance user")
    parser.add_argument("--password", help="Instance password")
    parser.add_argument("--recursive", action="store_true", help="Install subpackages as well")
    parser.add_argument(
        "--rescue-mode",
        action=BooleanOptionalAction,
        default=None,
        help="Accept repeated health check errors (default: from config)",
    )
    parser.add_argument("--same-state-barrier", type=int, help="Identical bundle snapshots required")
    parser.add_argument("--error-state-barrier", type=int, help="Consecutive errors accepted in rescue mode")
    parser.add_argument("--max-attempts", type=int, help="Health check attempts before giving up")
    parser.add_argument("--sleep-time", type=int, help="Seconds between health check attempts")
    parser.add_argument("--http-user", help="User for downloading --source")
    parser.add_argument("--http-pass", help="Password for downloading --source")


@cqmcommand("package")
class PackageCommand(Command):
    help = "Upload, install, deploy, uninstall or delete a CRX package"

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("action", choices=[*PACKAGE_ACTIONS, "status"])
        _add_package_arguments(parser)
        parser.add_argument("--format", choices=["text", "json"], default="text")

    def run(self, argv: Any) -> int:
        try:
            settings = self._settings(argv)
            name = str(getattr(argv, "name", "") or "").strip() or source_basename(argv.source)
            action = "deploy" if argv.action == "status" else argv.action
            resource = PackageResource.from_dict(
                name,
                {
                    "source": argv.source,
                    "action": action,
                    "instance": argv.instance,
                    "username": argv.username,
                    "password": argv.password,
                    "recursive_install": argv.recursive,
                    "rescue_mode": argv.rescue_mode,
                    "same_state_barrier": argv.same_state_barrier,
                    "error_state_barrier": argv.error_state_barrier,
                    "max_attempts": argv.max_attempts,
                    "sleep_time": argv.sleep_time,
                    "http_user": argv.http_user,
                    "http_pass": argv.http_pass,
                },
                settings,
            )
            controller = package_controller(resource, settings)
            if argv.action == "status":
                return self._status(controller, getattr(argv, "format", "text"))
            result = controller.run(resource.action)
        except CqmError as exc:
            self._print(f"failed: {exc}")
            return _exit_code_for(exc)
        self._print(f"{result.outcome.value}: {result.message}")
        return EXIT_OK if result.ok else EXIT_FAILED

    def _status(self, controller: PackageLifecycleController, output: str) -> int:
        state = controller.status()
        descriptor = controller.descriptor
        record = state.matched_record
        payload = {
            "name": descriptor.name if descriptor else None,
            "group": descriptor.group if descriptor else None,
            "version": descriptor.version if descriptor else None,
            "uploaded": state.uploaded,
            "installed": state.installed,
            "download_name": record.download_name if record else None,
            "last_unpacked": record.last_unpacked if record else None,
        }
        if output == "json":
            print(json.dumps(payload, indent=2))
            return EXIT_OK
        self._print(
            f"{payload['group']}/{payload['name']}@{payload['version']} "
            f"uploaded={state.uploaded} installed={state.installed}"
        )
        return EXIT_OK


def _parse_properties(items: list[str]) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise ConfigurationError(f"expected KEY=VALUE, got {item!r}")
        key, value = item.split("=", 1)
        key = key.strip()
        if not key:
            raise ConfigurationError(f"missing property key in {item!r}")
        if key in properties:
            existing = properties[key]
            properties[key] = [*existing, value] if isinstance(existing, list) else [existing, value]
        else:
            properties[key] = value
    return properties


@cqmcommand("osgi-config")
class OsgiConfigCommand(Command):
    help = "Manage OSGi configurations through the CQ Unix Toolkit"

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("action", choices=["create", "list"])
        parser.add_argument("--pid", help="Configuration pid")
        parser.add_argument("--factory-pid", help="Factory pid (list its instances)")
        parser.add_argument(
            "--property",
            action="append",
            default=[],
            help="KEY=VALUE (repeatable, repeated keys form an array)",
        )
        parser.add_argument("--append", action="store_true", help="Merge into current properties")
        parser.add_argument("--dry-run", action="store_true", help="Report changes without applying them")
        parser.add_argument("--instance", help="Instance URL")
        parser.add_argument("--username", help="Instance user")
        parser.add_argument("--password", help="Instance password")

    def run(self, argv: Any) -> int:
        try:
            settings = self._settings(argv)
            pid = str(getattr(argv, "pid", "") or "").strip()
            if argv.action == "create" and not pid:
                self._print("--pid is required for create")
                return EXIT_FAILED
            pid = pid or str(getattr(argv, "factory_pid", "") or "").strip()
            if not pid:
                self._print("--pid or --factory-pid is required")
                return EXIT_FAILED
            resource = OsgiConfigResource.from_dict(
                {
                    "pid": pid,
                    "factory_pid": argv.factory_pid,
                    "properties": _parse_properties(list(argv.property)),
                    "append": argv.append,
                    "instance": argv.instance,
                    "username": argv.username,
                    "password": argv.password,
                },
                settings,
            )
            reconciler = config_reconciler(resource, settings)
            if argv.action == "list":
                if resource.factory_pid:
                    for instance_pid in reconciler.factory_instances():
                        print(instance_pid)
                else:
                    print(reconciler.tool.list().rstrip())
                return EXIT_OK
            result = reconciler.create(dry_run=bool(argv.dry_run))
        except CqmError as exc:
            self._print(f"failed: {exc}")
            return _exit_code_for(exc)
        self._print(f"{result.outcome.value}: {result.message}")
        return EXIT_OK if result.ok else EXIT_FAILED


@cqmcommand("apply")
class ApplyCommand(Command):
    help = "Reconcile every resource declared in a YAML file"

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        parser.add_argument("file", help="Resource declaration file (YAML)")
        parser.add_argument("--dry-run", action="store_true", help="Report OSGi config changes without applying them")

    def run(self, argv: Any) -> int:
        try:
            settings = self._settings(argv)
            resources = load_resources(Path(argv.file), settings)
        except CqmError as exc:
            self._print(f"failed: {exc}")
            return _exit_code_for(exc)

        failures = 0
        for resource in resources:
            try:
                result = reconcile(resource, settings, dry_run=bool(argv.dry_run))
            except FATAL_ERRORS as exc:
                self._print(f"{resource.name}: fatal: {exc}")
                self._print("aborting, remaining resources were not processed")
                return EXIT_FATAL
            except CqmError as exc:
                failures += 1
                self._print(f"{resource.name}: failed: {exc}")
                continue
            if not result.ok:
                failures += 1
            self._print(f"{resource.name} {result.action}: {result.outcome.value}: {result.message}")
        self._print(f"processed={len(resources)} failed={failures}")
        return EXIT_FAILED if failures else EXIT_OK
