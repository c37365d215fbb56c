from __future__ import annotations

import json
from pathlib import Path

import pytest
import requests

from cqm_core.errors import DownloadError, PackageCommandError, RemoteUnavailableError
from cqm_core.packages import PackageManagerClient, ServerEndpoint, crx_path, parse_package_list, source_basename

LISTING = """<?xml version="1.0" encoding="utf-8"?>
<crx version="1.4.1" user="admin" workspace="crx.default">
  <request><param name="cmd" value="ls"/></request>
  <response>
    <data>
      <packages>
        <package>
          <group>acme</group>
          <name>demo</name>
          <version>1.0.0</version>
          <downloadName>demo-1.0.0.zip</downloadName>
          <lastUnpacked>Tue, 19 Jan 2016 10:23:12 +0100</lastUnpacked>
        </package>
        <package>
          <group>acme</group>
          <name>demo</name>
          <version>1.1.0</version>
          <downloadName>demo-1.1.0.zip</downloadName>
          <lastUnpacked></lastUnpacked>
        </package>
      </packages>
    </data>
    <status code="200">ok</status>
  </response>
</crx>
"""


class _FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", body: bytes = b"") -> None:
        self.status_code = status_code
        self.text = text
        self._body = body

    def json(self):
        return json.loads(self.text)

    def iter_content(self, chunk_size: int = 1):
        yield self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _client() -> PackageManagerClient:
    return PackageManagerClient(ServerEndpoint("http://cq.local:4502/", "admin", "secret"))


def test_crx_path_format() -> None:
    assert crx_path("my/group", "demo-1.0.0.zip") == "/etc/packages/my/group/demo-1.0.0.zip"


def test_source_basename_ignores_query() -> None:
    assert source_basename("https://repo.local/pkgs/demo-1.0.0.zip?token=x") == "demo-1.0.0.zip"
    assert source_basename("/tmp/pkgs/demo.zip") == "demo.zip"


def test_parse_package_list_keeps_order_and_blank_unpacked() -> None:
    records = parse_package_list(LISTING)
    assert [r.version for r in records] == ["1.0.0", "1.1.0"]
    assert records[0].download_name == "demo-1.0.0.zip"
    assert records[0].ever_installed is True
    assert records[1].last_unpacked is None


def test_list_packages_uses_basic_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def _fake_get(url, **kwargs):
        captured["url"] = url
        captured.update(kwargs)
        return _FakeResponse(text=LISTING)

    monkeypatch.setattr(requests, "get", _fake_get)
    records = _client().list_packages()

    assert len(records) == 2
    assert captured["url"] == "http://cq.local:4502/crx/packmgr/service.jsp"
    assert captured["params"] == {"cmd": "ls"}
    assert captured["auth"].username == "admin"


def test_list_packages_wraps_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fake_get(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "get", _fake_get)
    with pytest.raises(RemoteUnavailableError):
        _client().list_packages()


def test_list_packages_rejects_invalid_xml(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(requests, "get", lambda url, **kwargs: _FakeResponse(text="<html"))
    with pytest.raises(RemoteUnavailableError, match="not valid XML"):
        _client().list_packages()


def test_install_posts_command_with_recursive_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def _fake_post(url, **kwargs):
        captured["url"] = url
        captured["data"] = kwargs["data"]
        return _FakeResponse(text=json.dumps({"success": True, "msg": "Package installed"}))

    monkeypatch.setattr(requests, "post", _fake_post)
    _client().install("/etc/packages/acme/demo-1.0.0.zip", recursive=True)

    assert captured["url"] == "http://cq.local:4502/crx/packmgr/service/.json/etc/packages/acme/demo-1.0.0.zip"
    assert captured["data"] == {"cmd": "install", "recursive": "true"}


def test_command_failure_is_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        requests,
        "post",
        lambda url, **kwargs: _FakeResponse(text=json.dumps({"success": False, "msg": "no such package"})),
    )
    with pytest.raises(PackageCommandError, match="no such package"):
        _client().delete("/etc/packages/acme/missing.zip")


def test_upload_checks_service_status(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    archive = tmp_path / "demo-1.0.0.zip"
    archive.write_bytes(b"PK")
    failed = LISTING.replace('<status code="200">ok</status>', '<status code="500">boom</status>')
    monkeypatch.setattr(requests, "post", lambda url, **kwargs: _FakeResponse(text=failed))

    with pytest.raises(PackageCommandError, match="status=500"):
        _client().upload(archive)


def test_upload_sends_multipart(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    archive = tmp_path / "demo-1.0.0.zip"
    archive.write_bytes(b"PK")
    captured: dict[str, object] = {}

    def _fake_post(url, **kwargs):
        captured["files"] = kwargs["files"]
        captured["data"] = kwargs["data"]
        return _FakeResponse(text=LISTING)

    monkeypatch.setattr(requests, "post", _fake_post)
    _client().upload(archive)

    assert captured["data"] == {"name": "demo-1.0.0", "force": "true", "install": "false"}
    assert captured["files"]["file"][0] == "demo-1.0.0.zip"


def test_fetch_bundle_status_returns_raw_body(monkeypatch: pytest.MonkeyPatch) -> None:
    body = '{"status":"Bundle information: 10 bundles in total - all 10 bundles active."}'
    monkeypatch.setattr(requests, "get", lambda url, **kwargs: _FakeResponse(text=body))
    assert _client().fetch_bundle_status() == body


def test_fetch_bundle_status_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(requests, "get", lambda url, **kwargs: _FakeResponse(status_code=503))
    with pytest.raises(RemoteUnavailableError):
        _client().fetch_bundle_status()


def test_download_streams_http_source(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    captured: dict[str, object] = {}

    def _fake_get(url, **kwargs):
        captured.update(kwargs)
        return _FakeResponse(body=b"PKDATA")

    monkeypatch.setattr(requests, "get", _fake_get)
    dest = tmp_path / "cache" / "demo.zip"
    _client().download("https://repo.local/demo.zip", dest, "reader", "pw")

    assert dest.read_bytes() == b"PKDATA"
    assert captured["auth"].username == "reader"
    assert not (tmp_path / "cache" / "demo.zip.part").exists()


def test_download_copies_local_file(tmp_path: Path) -> None:
    source = tmp_path / "demo.zip"
    source.write_bytes(b"PK")
    dest = tmp_path / "cache" / "demo.zip"

    _client().download(source.as_uri(), dest)
    assert dest.read_bytes() == b"PK"


def test_download_missing_local_file(tmp_path: Path) -> None:
    with pytest.raises(DownloadError):
        _client().download(str(tmp_path / "missing.zip"), tmp_path / "cache" / "missing.zip")


def test_download_http_error(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(requests, "get", lambda url, **kwargs: _FakeResponse(status_code=404))
    with pytest.raises(DownloadError, match="404"):
        _client().download("https://repo.local/demo.zip", tmp_path / "demo.zip")


def test_download_error_hides_query_token(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(requests, "get", lambda url, **kwargs: _FakeResponse(status_code=403))
    with pytest.raises(DownloadError) as excinfo:
        _client().download("https://repo.local/demo.zip?access_token=abc123", tmp_path / "demo.zip")
    assert "abc123" not in str(excinfo.value)
    assert "access_token=***" in str(excinfo.value)


def test_download_cache_dir_is_a_file(tmp_path: Path) -> None:
    source = tmp_path / "demo.zip"
    source.write_bytes(b"PK")
    cache = tmp_path / "cache"
    cache.write_text("not a directory", encoding="utf-8")

    with pytest.raises(DownloadError, match="package cache"):
        _client().download(str(source), cache / "demo.zip")


def test_download_store_failure_removes_partial_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(requests, "get", lambda url, **kwargs: _FakeResponse(body=b"PKDATA"))
    dest = tmp_path / "cache" / "demo.zip"
    (dest / "occupied").mkdir(parents=True)

    with pytest.raises(DownloadError, match="cannot store"):
        _client().download("https://repo.local/demo.zip", dest)
    assert not (tmp_path / "cache" / "demo.zip.part").exists()
