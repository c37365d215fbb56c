"""Read package identity out of a content package archive."""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from xml.etree import ElementTree

from cqm_core.errors import MetadataParseError

from .types import PackageDescriptor

logger = logging.getLogger(__name__)

PROPERTIES_XML = "META-INF/vault/properties.xml"
_REQUIRED_KEYS = ("name", "group", "version")


class PackageMetadataReader:
    """Extracts name/group/version from ``META-INF/vault/properties.xml``."""

    def read_descriptor(self, local_path: Path) -> PackageDescriptor:
        properties = self.read_properties(local_path)
        missing = [key for key in _REQUIRED_KEYS if not properties.get(key, "").strip()]
        if missing:
            raise MetadataParseError(
                f"{PROPERTIES_XML} in {local_path} is missing entries: {', '.join(missing)}"
            )
        descriptor = PackageDescriptor(
            name=properties["name"].strip(),
            group=properties["group"].strip(),
            version=properties["version"].strip(),
        )
        logger.debug(
            "descriptor name=%s group=%s version=%s",
            descriptor.name,
            descriptor.group,
            descriptor.version,
        )
        return descriptor

    def read_properties(self, local_path: Path) -> dict[str, str]:
        path = Path(local_path)
        if not path.is_file():
            raise MetadataParseError(f"package archive not found: {path}")
        try:
            with zipfile.ZipFile(path) as archive:
                payload = archive.read(PROPERTIES_XML)
        except KeyError as exc:
            raise MetadataParseError(f"{PROPERTIES_XML} not found in {path}") from exc
        except zipfile.BadZipFile as exc:
            raise MetadataParseError(f"not a valid package archive: {path}") from exc
        return parse_properties_xml(payload)


def parse_properties_xml(payload: bytes | str) -> dict[str, str]:
    try:
        root = ElementTree.fromstring(payload)
    except ElementTree.ParseError as exc:
        raise MetadataParseError(f"malformed {PROPERTIES_XML}: {exc}") from exc
    entries: dict[str, str] = {}
    for entry in root.iter("entry"):
        key = entry.get("key")
        if key:
            entries[key] = entry.text or ""
    return entries
