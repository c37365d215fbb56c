"""Error taxonomy shared by the package and OSGi reconcilers."""

from __future__ import annotations


class CqmError(Exception):
    """Base class for all cqm errors."""


class ConfigurationError(CqmError):
    """Invalid settings file or resource declaration."""


class RemoteUnavailableError(CqmError):
    """The package manager listing could not be fetched or parsed."""


class PackageCommandError(CqmError):
    """A mutating package manager call (upload/install/uninstall/delete) failed."""


class DownloadError(CqmError):
    """The package artifact could not be fetched to the local cache."""


class MetadataParseError(CqmError):
    """Package descriptor or server supplied metadata could not be parsed."""


class StabilityTimeoutError(CqmError):
    """OSGi bundles did not settle within the allowed number of attempts."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class ToolInvocationError(CqmError):
    """The CQ Unix Toolkit exited with an error or produced unusable output."""
