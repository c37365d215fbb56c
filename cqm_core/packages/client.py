"""HTTP client for the CRX package manager and the OSGi web console."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit
from xml.etree import ElementTree

import requests
from requests.auth import HTTPBasicAuth
from requests.exceptions import RequestException

from cqm_core.errors import DownloadError, PackageCommandError, RemoteUnavailableError
from cqm_core.security import redact_url

from .types import RemotePackageRecord, ServerEndpoint

logger = logging.getLogger(__name__)

PACKAGES_ROOT = "/etc/packages"
SERVICE_JSP = "/crx/packmgr/service.jsp"
SERVICE_JSON = "/crx/packmgr/service/.json"
BUNDLES_JSON = "/system/console/bundles/.json"

_DEFAULT_TIMEOUT = 120.0


def crx_path(group: str, download_name: str) -> str:
    return f"{PACKAGES_ROOT}/{group}/{download_name}"


def source_basename(source: str) -> str:
    path = urlsplit(source).path or source
    name = Path(unquote(path)).name
    if not name:
        raise DownloadError(f"unable to derive a file name from source {redact_url(source)!r}")
    return name


class PackageManagerClient:
    """Single-attempt package manager operations against one instance."""

    def __init__(self, endpoint: ServerEndpoint) -> None:
        self.endpoint = endpoint
        self._auth = HTTPBasicAuth(endpoint.username, endpoint.password)
        self._timeout = endpoint.timeout_seconds or _DEFAULT_TIMEOUT

    def _url(self, path: str) -> str:
        return f"{self.endpoint.base_url}{path}"

    def download(
        self,
        source: str,
        dest_path: Path,
        http_user: str | None = None,
        http_pass: str | None = None,
    ) -> Path:
        dest_path = Path(dest_path)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"cannot create package cache {dest_path.parent}: {exc}") from exc
        scheme = urlsplit(source).scheme.lower()
        if scheme in ("http", "https"):
            return self._download_http(source, dest_path, http_user, http_pass)

        local = Path(unquote(urlsplit(source).path)) if scheme == "file" else Path(source)
        if not local.is_file():
            raise DownloadError(f"package source not found: {local}")
        try:
            if local.resolve() != dest_path.resolve():
                shutil.copyfile(local, dest_path)
        except OSError as exc:
            raise DownloadError(f"cannot copy package {local} -> {dest_path}: {exc}") from exc
        logger.debug("copied package %s -> %s", local, dest_path)
        return dest_path

    def _download_http(
        self,
        source: str,
        dest_path: Path,
        http_user: str | None,
        http_pass: str | None,
    ) -> Path:
        auth = HTTPBasicAuth(http_user, http_pass or "") if http_user else None
        partial = dest_path.with_name(f"{dest_path.name}.part")
        try:
            with requests.get(source, auth=auth, stream=True, timeout=self._timeout) as r:
                if r.status_code >= 400:
                    raise DownloadError(f"download failed: {r.status_code} {redact_url(source)}")
                with partial.open("wb") as handle:
                    for chunk in r.iter_content(chunk_size=1024 * 1024):
                        if chunk:
                            handle.write(chunk)
            partial.replace(dest_path)
        except RequestException as exc:
            partial.unlink(missing_ok=True)
            raise DownloadError(f"download failed: {redact_url(source)}: {exc}") from exc
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise DownloadError(f"cannot store {redact_url(source)} at {dest_path}: {exc}") from exc
        logger.debug("downloaded %s -> %s", redact_url(source), dest_path)
        return dest_path

    def list_packages(self) -> list[RemotePackageRecord]:
        try:
            r = requests.get(
                self._url(SERVICE_JSP),
                params={"cmd": "ls"},
                auth=self._auth,
                timeout=self._timeout,
            )
        except RequestException as exc:
            raise RemoteUnavailableError(f"package list failed: {exc}") from exc
        if r.status_code >= 400:
            raise RemoteUnavailableError(f"package list failed: {r.status_code} {r.text}")
        try:
            return parse_package_list(r.text)
        except ElementTree.ParseError as exc:
            raise RemoteUnavailableError(f"package list is not valid XML: {exc}") from exc

    def upload(self, local_path: Path) -> None:
        local_path = Path(local_path)
        logger.debug("uploading %s to %s", local_path, self.endpoint.base_url)
        try:
            with local_path.open("rb") as f:
                r = requests.post(
                    self._url(SERVICE_JSP),
                    files={"file": (local_path.name, f, "application/zip")},
                    data={"name": local_path.stem, "force": "true", "install": "false"},
                    auth=self._auth,
                    timeout=self._timeout,
                )
        except (OSError, RequestException) as exc:
            raise PackageCommandError(f"upload failed: {exc}") from exc
        if r.status_code >= 400:
            raise PackageCommandError(f"upload failed: {r.status_code} {r.text}")
        _check_service_status(r.text, "upload")

    def install(self, remote_path: str, recursive: bool = False) -> dict[str, Any]:
        return self._command(
            "install",
            remote_path,
            extra={"recursive": "true" if recursive else "false"},
        )

    def uninstall(self, remote_path: str) -> dict[str, Any]:
        return self._command("uninstall", remote_path)

    def delete(self, remote_path: str) -> dict[str, Any]:
        return self._command("delete", remote_path)

    def fetch_bundle_status(self) -> str:
        try:
            r = requests.get(self._url(BUNDLES_JSON), auth=self._auth, timeout=self._timeout)
        except RequestException as exc:
            raise RemoteUnavailableError(f"bundle status failed: {exc}") from exc
        if r.status_code >= 400:
            raise RemoteUnavailableError(f"bundle status failed: {r.status_code}")
        return r.text

    def _command(self, cmd: str, remote_path: str, extra: dict[str, str] | None = None) -> dict[str, Any]:
        data = {"cmd": cmd, **(extra or {})}
        logger.debug("package %s %s", cmd, remote_path)
        try:
            r = requests.post(
                self._url(f"{SERVICE_JSON}{remote_path}"),
                data=data,
                auth=self._auth,
                timeout=self._timeout,
            )
        except RequestException as exc:
            raise PackageCommandError(f"{cmd} failed: {exc}") from exc
        if r.status_code >= 400:
            raise PackageCommandError(f"{cmd} failed: {r.status_code} {r.text}")
        try:
            payload = r.json()
        except ValueError as exc:
            raise PackageCommandError(f"{cmd} returned a non-JSON response") from exc
        if not isinstance(payload, dict) or payload.get("success") is not True:
            message = payload.get("msg") if isinstance(payload, dict) else payload
            raise PackageCommandError(f"{cmd} of {remote_path} failed: {message}")
        return payload


def parse_package_list(payload: str) -> list[RemotePackageRecord]:
    root = ElementTree.fromstring(payload)
    records: list[RemotePackageRecord] = []
    for node in root.iter("package"):
        records.append(
            RemotePackageRecord(
                name=_text(node, "name"),
                group=_text(node, "group"),
                version=_text(node, "version"),
                download_name=_text(node, "downloadName"),
                last_unpacked=_text(node, "lastUnpacked") or None,
            )
        )
    return records


def _text(node: ElementTree.Element, tag: str) -> str:
    child = node.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _check_service_status(payload: str, operation: str) -> None:
    try:
        root = ElementTree.fromstring(payload)
    except ElementTree.ParseError as exc:
        raise PackageCommandError(f"{operation} returned an unparsable response") from exc
    status = root.find("./response/status")
    if status is None:
        return
    code = str(status.get("code") or "").strip()
    if code != "200":
        raise PackageCommandError(f"{operation} failed: status={code} {(status.text or '').strip()}")
