"""CRX package lifecycle: client, descriptor reader, state resolver, controller."""

from .client import PackageManagerClient, crx_path, parse_package_list, source_basename
from .controller import PackageLifecycleController
from .descriptor import PROPERTIES_XML, PackageMetadataReader, parse_properties_xml
from .resolver import PackageStateResolver, newest_installed, parse_last_unpacked
from .types import (
    PACKAGE_ACTIONS,
    ActionOutcome,
    ActionResult,
    PackageDescriptor,
    PackageState,
    RemotePackageRecord,
    ServerEndpoint,
)

__all__ = [
    "PACKAGE_ACTIONS",
    "PROPERTIES_XML",
    "ActionOutcome",
    "ActionResult",
    "PackageDescriptor",
    "PackageLifecycleController",
    "PackageManagerClient",
    "PackageMetadataReader",
    "PackageState",
    "PackageStateResolver",
    "RemotePackageRecord",
    "ServerEndpoint",
    "crx_path",
    "newest_installed",
    "parse_last_unpacked",
    "parse_package_list",
    "parse_properties_xml",
    "source_basename",
]
