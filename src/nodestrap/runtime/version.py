"""Detect the system Node.js version and compare it to a requirement."""

from __future__ import annotations

import logging

from packaging.version import InvalidVersion, Version

from nodestrap.installer.subprocess import run_command
from nodestrap.models import SEMVER_PATTERN, PlatformInfo, VersionCheck
from nodestrap.pathing.resolver import PathResolver

logger = logging.getLogger(__name__)

# ─── Process-wide memo ─────────────────────────────────────

_UNSET = object()
_system_version: object = _UNSET


def clear_version_cache() -> None:
    """Forget the memoized system version (primarily for tests)."""
    global _system_version
    _system_version = _UNSET


def parse_version(text: str) -> Version | None:
    """Extract the first ``major.minor.patch`` in ``text``."""
    match = SEMVER_PATTERN.search(text)
    if not match:
        return None
    try:
        return Version(match.group(1))
    except InvalidVersion:
        return None


async def detect_system_version(
    resolver: PathResolver,
    host: PlatformInfo,
) -> Version | None:
    """Run ``node --version`` from PATH. Never raises."""
    node = resolver.find_executable(host.node_executable, case_insensitive=host.is_windows)
    if node is None:
        logger.debug("%s not found on PATH", host.node_executable)
        return None
    try:
        returncode, stdout, _stderr = await run_command([node, "--version"], timeout=30.0)
    except OSError:
        logger.debug("Could not run %s --version", node, exc_info=True)
        return None
    if returncode != 0:
        return None
    return parse_version(stdout)


async def get_system_version(
    resolver: PathResolver,
    host: PlatformInfo,
    *,
    refresh: bool = False,
) -> Version | None:
    """Memoized :func:`detect_system_version`. The first call wins for the process."""
    global _system_version
    if refresh or _system_version is _UNSET:
        _system_version = await detect_system_version(resolver, host)
    return _system_version  # type: ignore[return-value]


def _release(version: Version | str) -> tuple[int, int, int]:
    if isinstance(version, str):
        parsed = parse_version(version)
        if parsed is None:
            raise ValueError(f"Not a semantic version: {version!r}")
        version = parsed
    major, minor, patch = (list(version.release) + [0, 0, 0])[:3]
    return (major, minor, patch)


def compare_versions(detected: Version | None, required: Version | str) -> VersionCheck:
    """Classify ``detected`` against ``required`` on (major, minor, patch)."""
    if detected is None:
        return VersionCheck.NOT_INSTALLED
    if _release(detected) < _release(required):
        return VersionCheck.OUTDATED
    return VersionCheck.UP_TO_DATE
