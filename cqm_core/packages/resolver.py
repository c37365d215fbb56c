"""Derive the upload/install state of a package from the package manager listing."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Protocol, Sequence

from cqm_core.errors import MetadataParseError

from .types import PackageDescriptor, PackageState, RemotePackageRecord

logger = logging.getLogger(__name__)


class PackageLister(Protocol):
    def list_packages(self) -> list[RemotePackageRecord]: ...


def parse_last_unpacked(value: str) -> datetime:
    """Parse a ``lastUnpacked`` timestamp (ISO 8601 or RFC 2822) as an aware datetime."""
    text = (value or "").strip()
    if not text:
        raise MetadataParseError("empty lastUnpacked timestamp")
    parsed: datetime | None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            parsed = None
    if parsed is None:
        raise MetadataParseError(f"unparsable lastUnpacked timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def uploaded_packages(
    records: Sequence[RemotePackageRecord],
    descriptor: PackageDescriptor,
) -> list[RemotePackageRecord]:
    return [r for r in records if r.name == descriptor.name and r.group == descriptor.group]


def matching_record(
    uploaded: Sequence[RemotePackageRecord],
    descriptor: PackageDescriptor,
) -> RemotePackageRecord | None:
    for record in uploaded:
        if record.matches(descriptor):
            return record
    return None


def installed_packages(uploaded: Sequence[RemotePackageRecord]) -> list[RemotePackageRecord]:
    return [r for r in uploaded if r.ever_installed]


def newest_installed(installed: Sequence[RemotePackageRecord]) -> RemotePackageRecord | None:
    """Most recently unpacked record; earlier entries win ties."""
    newest: RemotePackageRecord | None = None
    newest_at: datetime | None = None
    for record in installed:
        unpacked_at = parse_last_unpacked(record.last_unpacked or "")
        if newest_at is None or newest_at < unpacked_at:
            newest, newest_at = record, unpacked_at
    return newest


class PackageStateResolver:
    def __init__(self, client: PackageLister) -> None:
        self.client = client

    def resolve(self, descriptor: PackageDescriptor) -> PackageState:
        records = self.client.list_packages()
        uploaded = uploaded_packages(records, descriptor)
        logger.debug("found %s uploaded package(s) for %s/%s", len(uploaded), descriptor.group, descriptor.name)

        matched = matching_record(uploaded, descriptor)
        if matched is None:
            logger.debug("uploaded? False (no %s at version %s)", descriptor.name, descriptor.version)
            return PackageState.absent()

        installed = installed_packages(uploaded)
        logger.debug("found %s ever installed package(s)", len(installed))
        # a package may have been upgraded or downgraded since, only the
        # latest unpacked version counts
        newest = newest_installed(installed)
        is_installed = newest is not None and newest.version == descriptor.version

        logger.debug("uploaded? True installed? %s matched=%s", is_installed, matched)
        return PackageState(uploaded=True, installed=is_installed, matched_record=matched)
