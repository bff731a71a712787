"""Install Node.js: package managers first, then a manual download fallback."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping, Sequence
from dataclasses import replace
from pathlib import Path

from packaging.version import Version

from nodestrap.archive.extractor import extract_runtime
from nodestrap.config import InstallerSettings
from nodestrap.download.base import DownloadStrategy
from nodestrap.download.strategies import DEFAULT_STRATEGIES, download
from nodestrap.errors import (
    EnvironmentWriteError,
    InstallError,
    PackageManagerUnavailableError,
    UnsupportedPlatformError,
)
from nodestrap.installer.registry import PackageManagerRegistry
from nodestrap.installer.subprocess import run_command
from nodestrap.models import (
    ExecOptions,
    InstallationTarget,
    InstallStatus,
    PackageInstallResult,
    PackageManager,
    PlatformInfo,
    VersionCheck,
)
from nodestrap.pathing.resolver import PathResolver
from nodestrap.runtime.placement import (
    candidate_destinations,
    executable_dir,
    link_executables,
    place_runtime,
    select_destination,
)
from nodestrap.runtime.platform import MANUAL_INSTALL_PLATFORMS, build_target
from nodestrap.runtime.version import compare_versions, get_system_version

logger = logging.getLogger(__name__)

# Generic cross-platform manager first, then OS-native ones.
DEFAULT_CANDIDATES: Mapping[str, str] = {
    PackageManager.PNPM: "latest",
    PackageManager.APT: "nodejs",
    PackageManager.PACMAN: "nodejs",
    PackageManager.YAY: "nodejs",
    PackageManager.PAMAC: "nodejs",
    PackageManager.NPM: "node",
}

PNPM_NODE_INSTALL_COMMAND = "pnpm env use --global"
PNPM_BOOTSTRAP_COMMAND = [
    "powershell",
    "-executionpolicy",
    "bypass",
    "-command",
    "iwr https://get.pnpm.io/install.ps1 -useb | iex",
]


class NodeInstaller:
    """Detects the system Node.js and installs it when missing or outdated.

    Collaborators are injected so tests (and callers who want to register
    extra package managers) can swap them out.
    """

    def __init__(
        self,
        settings: InstallerSettings | None = None,
        *,
        resolver: PathResolver | None = None,
        registry: PackageManagerRegistry | None = None,
        host: PlatformInfo | None = None,
        home: Path | None = None,
        strategies: Sequence[DownloadStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.settings = settings or InstallerSettings()
        self.resolver = resolver or PathResolver()
        self.host = host or PlatformInfo.current()
        if registry is None:
            registry = PackageManagerRegistry(self.resolver, windows=self.host.is_windows)
            # pnpm provides node through `pnpm env`, not as a global package.
            registry.override_install_command(PackageManager.PNPM, PNPM_NODE_INSTALL_COMMAND)
        self.registry = registry
        self.home = home
        self.strategies = strategies
        for descriptor in self.settings.package_managers:
            self.registry.register(
                descriptor.id,
                descriptor.version_command,
                descriptor.install_command_template,
                descriptor.requires_elevation,
                descriptor.version_pattern,
                descriptor.display_name,
            )

    # ─── Version checks ───────────────────────────────────────

    async def get_system_version(self) -> Version | None:
        return await get_system_version(self.resolver, self.host)

    async def check_version(self, required: Version | str | None = None) -> VersionCheck:
        """Classify the system node against ``required`` (default: configured version)."""
        detected = await self.get_system_version()
        return compare_versions(detected, required or self.settings.node_version)

    async def is_installed(self) -> bool:
        return await self.check_version() != VersionCheck.NOT_INSTALLED

    async def is_up_to_date(self) -> bool:
        return await self.check_version() == VersionCheck.UP_TO_DATE

    async def ensure(self) -> InstallStatus:
        """Install only when node is missing or older than the configured version."""
        check = await self.check_version()
        if check == VersionCheck.UP_TO_DATE:
            logger.info("node is up to date (>= %s)", self.settings.node_version)
            return InstallStatus.INSTALLED
        logger.info(
            "node is %s - installing %s",
            check.value.replace("_", " "),
            self.settings.node_version,
        )
        return await self.install(self.settings.use_package_manager)

    # ─── Package manager path ─────────────────────────────────

    def candidate_table(self) -> Mapping[str, str]:
        if self.settings.candidates is not None:
            return dict(self.settings.candidates)
        return DEFAULT_CANDIDATES

    async def install_with_package_manager(self) -> PackageInstallResult:
        return await self.registry.install_first_available(
            self.candidate_table(), ExecOptions(stream=True), continue_on_failure=True
        )

    async def _package_manager_installed_node(self) -> bool:
        if not self.settings.verify_package_manager:
            return True
        version = await get_system_version(self.resolver, self.host, refresh=True)
        if version is None:
            logger.warning("Package manager finished but no node executable is on PATH")
            return False
        return True

    # ─── Install state machine ────────────────────────────────

    def manual_install_allowed(self) -> bool:
        return self.host.platform in MANUAL_INSTALL_PLATFORMS or self.settings.force_manual

    async def install(self, use_package_manager: bool = True) -> InstallStatus:
        """Install node, trying package managers before the manual path.

        Raises:
            EnvironmentWriteError: Workspace or destination not writable.
            DownloadError: The archive could not be fetched.
            ExtractionError: The archive could not be unpacked.
            UnsupportedPlatformError: No install path applies to this platform.
            PackageManagerUnavailableError: Windows without pnpm and --no-pnpm set.
        """
        if use_package_manager:
            result = await self.install_with_package_manager()
            if result.success and await self._package_manager_installed_node():
                logger.info("%s", result.message)
                return InstallStatus.INSTALLED
            logger.warning(
                "Could not install nodejs using a package manager - falling back to manual installation"
            )

        if self.manual_install_allowed():
            await self.manual_install()
            return InstallStatus.INSTALLED
        if self.host.is_windows:
            return await self.install_with_pnpm_bootstrap()
        raise UnsupportedPlatformError(
            f"Could not install nodejs on platform '{self.host.platform}'. "
            "Pass --force-manual-node to attempt a manual installation anyway."
        )

    # ─── Manual path ──────────────────────────────────────────

    def prepare_workspace(self) -> Path:
        """Delete and recreate an empty workspace directory."""
        workspace = self.settings.workspace
        try:
            if workspace.exists():
                shutil.rmtree(workspace)
            workspace.mkdir(parents=True)
        except OSError as exc:
            raise EnvironmentWriteError(
                f"Could not write to {workspace} - You may need to rerun as root ({exc})"
            ) from exc
        return workspace

    async def manual_install(self) -> InstallationTarget:
        """Download, extract, place and link the node runtime."""
        workspace = self.prepare_workspace()
        target = build_target(
            self.settings.node_version, self.host, workspace, self.settings.dist_url
        )

        await download(target.url, target.archive_path, self.resolver, self.strategies)

        destination = select_destination(candidate_destinations(self.resolver, self.home))
        target = replace(target, destination=destination)

        extracted = extract_runtime(target.archive_path, workspace, target.runtime_dir_name)
        runtime_dir = place_runtime(extracted, destination, self.settings.node_version)
        report = link_executables(
            executable_dir(runtime_dir, self.host.is_windows),
            destination,
            force=self.settings.force_link,
            windows=self.host.is_windows,
        )
        logger.info(
            "Linked %d executable(s) into %s (%d already present, %d replaced)",
            len(report.linked),
            destination,
            len(report.skipped),
            len(report.replaced),
        )
        shutil.rmtree(workspace, ignore_errors=True)
        return target

    # ─── Windows secondary path ───────────────────────────────

    def _pnpm_present(self) -> bool:
        return self.resolver.find_executable("pnpm", case_insensitive=True) is not None or any(
            self.resolver.find_executable(f"pnpm{ext}", case_insensitive=True)
            for ext in (".exe", ".cmd", ".ps1")
        )

    async def install_with_pnpm_bootstrap(self) -> InstallStatus:
        """Install pnpm if needed, then let pnpm provide node globally."""
        if not self._pnpm_present():
            if self.settings.no_pnpm:
                raise PackageManagerUnavailableError(
                    "Could not install nodejs on this platform: pnpm is not installed and "
                    "--no-pnpm prevents installing it. Drop --no-pnpm or pass --force-manual-node."
                )
            logger.info("Installing pnpm via its PowerShell bootstrap script")
            await self._run_checked(PNPM_BOOTSTRAP_COMMAND)
            if not self._pnpm_present():
                return InstallStatus.RESTART_REQUIRED
        await self._run_checked([*PNPM_NODE_INSTALL_COMMAND.split(), "latest"])
        return InstallStatus.INSTALLED

    async def _run_checked(self, cmd: list[str]) -> str:
        try:
            returncode, stdout, _ = await run_command(cmd, timeout=None, stream=True)
        except OSError as exc:
            raise InstallError(f"Could not run '{' '.join(cmd)}': {exc}") from exc
        if returncode != 0:
            raise InstallError(f"'{' '.join(cmd)}' exited with status {returncode}")
        return stdout
