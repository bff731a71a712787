"""Node.js distribution naming for the host platform."""

from __future__ import annotations

from pathlib import Path

from nodestrap.models import InstallationTarget, PlatformInfo

DEFAULT_DIST_URL = "https://nodejs.org/dist"

# Platforms where the manual install path runs without --force-manual-node.
MANUAL_INSTALL_PLATFORMS = frozenset({"linux", "darwin"})


def runtime_dir_name(version: str, host: PlatformInfo) -> str:
    """Top-level directory inside the archive, e.g. ``node-v22.14.0-linux-x64``."""
    return f"node-v{version}-{host.system}-{host.arch}"


def node_url(version: str, host: PlatformInfo, base_url: str = DEFAULT_DIST_URL) -> str:
    base = base_url.rstrip("/")
    return f"{base}/v{version}/{runtime_dir_name(version, host)}.{host.archive_extension}"


def build_target(
    version: str,
    host: PlatformInfo,
    workspace: Path,
    base_url: str = DEFAULT_DIST_URL,
) -> InstallationTarget:
    return InstallationTarget(
        url=node_url(version, host, base_url),
        workspace=workspace,
        archive_path=workspace / f"nodejs.{host.archive_extension}",
        runtime_dir_name=runtime_dir_name(version, host),
    )
