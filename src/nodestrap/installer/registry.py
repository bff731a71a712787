"""Catalog of package managers and the first-success-wins install loop."""

from __future__ import annotations

import logging
import os
import re
import shlex
import sys
from collections.abc import Mapping
from types import MappingProxyType

from nodestrap.errors import InstallError, PackageManagerUnavailableError
from nodestrap.installer.subprocess import run_command
from nodestrap.models import (
    SEMVER_PATTERN,
    ExecOptions,
    PackageInstallResult,
    PackageManager,
    PackageManagerDescriptor,
)
from nodestrap.pathing.resolver import PathResolver

logger = logging.getLogger(__name__)

SUDO_ARGS = ("sudo", "--preserve-env")

_WINDOWS_SUFFIXES = (".exe", ".cmd", ".bat")


def _descriptor(
    manager_id: str,
    version_command: str,
    install_command: str,
    requires_elevation: bool,
    version_pattern: re.Pattern[str] = SEMVER_PATTERN,
) -> PackageManagerDescriptor:
    return PackageManagerDescriptor(
        id=manager_id,
        display_name=manager_id,
        version_command=version_command,
        install_command_template=install_command,
        requires_elevation=requires_elevation,
        version_pattern=version_pattern,
    )


# yay only needs sudo for AUR builds, and asks for it itself.
DEFAULT_PACKAGE_MANAGERS: Mapping[str, PackageManagerDescriptor] = MappingProxyType(
    {
        PackageManager.PACMAN: _descriptor("pacman", "pacman -V", "pacman -S --noconfirm", True),
        PackageManager.APT: _descriptor("apt", "apt -v", "apt install -y", True),
        PackageManager.YAY: _descriptor(
            "yay", "yay -V", "yay -S --noconfirm", False, re.compile(r"yay v(\d+\.\d+\.\d+)", re.I)
        ),
        PackageManager.PNPM: _descriptor("pnpm", "pnpm -v", "pnpm install -g", False),
        PackageManager.YARN: _descriptor("yarn", "yarn -v", "yarn global add", False),
        PackageManager.NPM: _descriptor("npm", "npm -v", "npm install -g", False),
        PackageManager.PAMAC: _descriptor("pamac", "pamac -V", "pamac install --no-confirm", False),
        PackageManager.CHOCO: _descriptor("choco", "choco -v", "choco install -y", True),
    }
)


class PackageManagerRegistry:
    """Uniform detect/install protocol over heterogeneous package managers.

    Each instance starts from an immutable default catalog and layers its
    own registrations on top. Registrations never leak into other
    instances; pass a different ``defaults`` mapping to change the base.
    """

    def __init__(
        self,
        resolver: PathResolver | None = None,
        defaults: Mapping[str, PackageManagerDescriptor] = DEFAULT_PACKAGE_MANAGERS,
        *,
        windows: bool | None = None,
    ) -> None:
        self.resolver = resolver or PathResolver()
        self._defaults = defaults
        self._overrides: dict[str, PackageManagerDescriptor] = {}
        self._windows = sys.platform == "win32" if windows is None else windows

    # ─── Catalog ──────────────────────────────────────────────

    def register(
        self,
        manager_id: str,
        version_command: str,
        install_command_template: str,
        requires_elevation: bool,
        version_pattern: re.Pattern[str] | str = SEMVER_PATTERN,
        display_name: str | None = None,
    ) -> PackageManagerDescriptor:
        """Insert or overwrite a descriptor for this instance only."""
        if isinstance(version_pattern, str):
            version_pattern = re.compile(version_pattern, re.IGNORECASE)
        descriptor = PackageManagerDescriptor(
            id=manager_id,
            display_name=display_name or manager_id,
            version_command=version_command,
            install_command_template=install_command_template,
            requires_elevation=requires_elevation,
            version_pattern=version_pattern,
        )
        self._overrides[manager_id] = descriptor
        return descriptor

    def override_install_command(self, manager_id: str, install_command_template: str) -> None:
        """Swap only the install template of an existing descriptor."""
        current = self.descriptor(manager_id)
        self.register(
            manager_id,
            current.version_command,
            install_command_template,
            current.requires_elevation,
            current.version_pattern,
            current.display_name,
        )

    @property
    def managers(self) -> dict[str, PackageManagerDescriptor]:
        return {**self._defaults, **self._overrides}

    def descriptor(self, manager_id: str) -> PackageManagerDescriptor:
        found = self._overrides.get(manager_id) or self._defaults.get(manager_id)
        if found is None:
            raise PackageManagerUnavailableError(
                f"Unknown package manager '{manager_id}'. "
                f"Known managers: {', '.join(sorted(self.managers))}"
            )
        return found

    # ─── Detection ────────────────────────────────────────────

    def is_installed(self, manager_id: str) -> bool:
        name = self.descriptor(manager_id).executable
        if self.resolver.has_executable(name):
            return True
        if self._windows:
            return any(self.resolver.has_executable(name + s) for s in _WINDOWS_SUFFIXES)
        return False

    async def detect_version(self, manager_id: str) -> str | None:
        """Run the manager's version command and extract its version.

        Returns None on any failure: unknown manager, missing executable,
        non-zero exit, or output the pattern does not match.
        """
        try:
            descriptor = self.descriptor(manager_id)
            returncode, stdout, stderr = await run_command(
                shlex.split(descriptor.version_command), timeout=30.0
            )
        except (OSError, ValueError, PackageManagerUnavailableError):
            logger.debug("Version query for %s failed", manager_id, exc_info=True)
            return None
        if returncode != 0:
            return None
        match = descriptor.version_pattern.search(stdout + stderr)
        return match.group(1) if match else None

    # ─── Install ──────────────────────────────────────────────

    def build_install_command(self, package_name: str, manager_id: str) -> list[str]:
        descriptor = self.descriptor(manager_id)
        cmd = [*shlex.split(descriptor.install_command_template), package_name]
        if descriptor.requires_elevation and not _is_root():
            cmd = [*SUDO_ARGS, *cmd]
        return cmd

    async def install_package(
        self,
        package_name: str,
        manager_id: str = PackageManager.PACMAN,
        options: ExecOptions | None = None,
    ) -> str:
        """Install ``package_name`` with one manager, streaming its output.

        Raises:
            InstallError: The command could not be started or exited non-zero.
        """
        options = options or ExecOptions()
        cmd = self.build_install_command(package_name, manager_id)
        logger.info("Installing %s with %s: %s", package_name, manager_id, shlex.join(cmd))
        try:
            returncode, stdout, stderr = await run_command(
                cmd,
                env=options.env,
                timeout=options.timeout,
                cwd=options.cwd,
                stream=options.stream,
            )
        except OSError as exc:
            raise InstallError(f"Could not run '{shlex.join(cmd)}': {exc}") from exc
        if returncode != 0:
            raise InstallError(
                f"'{shlex.join(cmd)}' exited with status {returncode}: "
                f"{(stderr or stdout).strip()[-500:]}"
            )
        return stdout

    async def install_first_available(
        self,
        candidates: Mapping[str, str],
        options: ExecOptions | None = None,
        continue_on_failure: bool = False,
    ) -> PackageInstallResult:
        """Try each candidate manager in order until one installs its package.

        Args:
            candidates: Ordered mapping of manager id to the package name to
                request from that manager. Empty names are skipped.
            options: Passed to every install subprocess.
            continue_on_failure: Log a failing candidate and move on. When
                False the first failure propagates and nothing else is tried.

        Returns:
            Success attributed to the first manager that worked, or a failure
            result listing the failed attempts (empty when no candidate
            manager was installed at all).
        """
        attempts: list[tuple[str, str]] = []
        for manager_id, package_name in candidates.items():
            if not package_name:
                continue
            if manager_id not in self.managers:
                logger.debug("Skipping %s: not a registered package manager", manager_id)
                continue
            if not self.is_installed(manager_id):
                logger.debug("Skipping %s: not installed", manager_id)
                continue
            try:
                output = await self.install_package(package_name, manager_id, options)
            except InstallError as exc:
                if not continue_on_failure:
                    raise
                logger.warning("Installing %s with %s failed: %s", package_name, manager_id, exc)
                attempts.append((manager_id, str(exc)))
                continue
            return PackageInstallResult(
                success=True,
                package_manager=manager_id,
                package_name=package_name,
                message=f"Installed {package_name} via {manager_id}.",
                command_output=output,
            )

        if attempts:
            message = "Every installed package manager failed: " + ", ".join(
                m for m, _ in attempts
            )
        else:
            message = "None of the candidate package managers is installed."
        return PackageInstallResult(success=False, message=message, attempts=tuple(attempts))


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0
