"""Command-line entry point: check for Node.js and install it when needed."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

from nodestrap import __version__
from nodestrap.config import (
    InstallerSettings,
    apply_environment,
    load_config_file,
    normalize_node_version,
    resolve_config_path,
)
from nodestrap.errors import NodestrapError
from nodestrap.models import InstallStatus, VersionCheck
from nodestrap.runtime.orchestrator import NodeInstaller

logger = logging.getLogger(__name__)

RESTART_DELAY_SECONDS = 5.0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="nodestrap",
        description="Make sure a compatible Node.js runtime is installed on this machine.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--node-version",
        default=None,
        help="Minimum Node.js version required, and the version installed manually.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file. Defaults to $NODESTRAP_CONFIG or ./nodestrap.yaml.",
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Temporary directory for downloads (wiped at the start of a manual install).",
    )
    parser.add_argument(
        "--force-manual-node",
        action="store_true",
        help="Allow the manual download installation on platforms other than Linux and macOS.",
    )
    parser.add_argument(
        "--force-node-link",
        action="store_true",
        help="Replace existing entries in the destination directory when linking.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Shorthand for --force-manual-node --force-node-link.",
    )
    parser.add_argument(
        "--no-pnpm",
        action="store_true",
        help="On Windows, never bootstrap pnpm to provide Node.js.",
    )
    parser.add_argument(
        "--no-package-manager",
        action="store_true",
        help="Skip package managers and go straight to the manual installation.",
    )
    parser.add_argument(
        "--verify-package-manager",
        action="store_true",
        help="After a package manager reports success, still install manually if no node appeared.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only report whether node is installed and up to date (exit 1 if not).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> InstallerSettings:
    """Defaults < YAML file < environment < CLI flags."""
    settings = InstallerSettings()
    config_path = resolve_config_path(args.config)
    if config_path is not None:
        settings = load_config_file(config_path, settings)
    settings = apply_environment(settings)

    changes: dict[str, object] = {}
    if args.node_version:
        changes["node_version"] = normalize_node_version(args.node_version, "--node-version")
    if args.workspace is not None:
        changes["workspace"] = args.workspace
    if args.force or args.force_manual_node:
        changes["force_manual"] = True
    if args.force or args.force_node_link:
        changes["force_link"] = True
    if args.no_pnpm:
        changes["no_pnpm"] = True
    if args.no_package_manager:
        changes["use_package_manager"] = False
    if args.verify_package_manager:
        changes["verify_package_manager"] = True
    return replace(settings, **changes)


async def _run(args: argparse.Namespace) -> int:
    installer = NodeInstaller(build_settings(args))

    if args.check:
        check = await installer.check_version()
        detected = await installer.get_system_version()
        print(f"node {detected or 'not found'}: {check.value.replace('_', ' ')}")
        return 0 if check == VersionCheck.UP_TO_DATE else 1

    status = await installer.ensure()
    if status == InstallStatus.RESTART_REQUIRED:
        print("Please restart your system to finish installing Node.js.")
        await asyncio.sleep(RESTART_DELAY_SECONDS)
        return 0
    print(f"node {installer.settings.node_version}: {status.value.replace('_', ' ')}")
    return 0 if status == InstallStatus.INSTALLED else 1


def run_cli(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        return asyncio.run(_run(args))
    except NodestrapError as exc:
        logger.debug("nodestrap failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(run_cli())
