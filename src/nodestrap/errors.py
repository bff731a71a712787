"""Exception hierarchy for nodestrap.

All exceptions inherit from NodestrapError (single catch point).
Messages name the offending path, command or platform so an operator
can fix the problem without reading a stack trace.
"""

from __future__ import annotations


class NodestrapError(Exception):
    """Base exception for all nodestrap errors."""


class EnvironmentWriteError(NodestrapError):
    """Workspace or destination directory is not writable."""


class DownloadError(NodestrapError):
    """The runtime archive could not be downloaded."""


class ExtractionError(NodestrapError):
    """Archive unpack failed or an expected extracted path is missing."""


class UnsupportedPlatformError(NodestrapError):
    """Manual installation attempted on a platform without override."""


class PackageManagerUnavailableError(NodestrapError):
    """Required package manager is unknown or not installed."""


class InstallError(NodestrapError):
    """Package manager install command failed."""


class ConfigError(NodestrapError):
    """Configuration file could not be read or parsed."""
