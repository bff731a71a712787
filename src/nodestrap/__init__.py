"""nodestrap: bootstrap a compatible Node.js runtime on any host."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _distribution_version

_LOCAL_VERSION_FALLBACK = "0.0.0+local"


def _resolve_version() -> str:
    """Resolve package version from installed metadata with deterministic fallback."""
    try:
        return _distribution_version("nodestrap")
    except PackageNotFoundError:
        return _LOCAL_VERSION_FALLBACK


__version__ = _resolve_version()


def main() -> None:
    """Entry point for `nodestrap` CLI."""
    from nodestrap.cli import run_cli

    raise SystemExit(run_cli())
