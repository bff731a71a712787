"""Tests for the NodeInstaller state machine."""

from __future__ import annotations

import io
import os
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from packaging.version import Version

from nodestrap.config import InstallerSettings
from nodestrap.errors import (
    DownloadError,
    EnvironmentWriteError,
    PackageManagerUnavailableError,
    UnsupportedPlatformError,
)
from nodestrap.installer.registry import PackageManagerRegistry
from nodestrap.models import (
    InstallStatus,
    PackageInstallResult,
    PackageManagerDescriptor,
    PlatformInfo,
    VersionCheck,
)
from nodestrap.pathing.resolver import PathResolver
from nodestrap.runtime.orchestrator import (
    DEFAULT_CANDIDATES,
    PNPM_BOOTSTRAP_COMMAND,
    NodeInstaller,
)

LINUX = PlatformInfo(platform="linux", machine="x86_64")
WINDOWS = PlatformInfo(platform="win32", machine="AMD64")
FREEBSD = PlatformInfo(platform="freebsd14", machine="amd64")
VERSION = "22.14.0"

_RUN = "nodestrap.runtime.orchestrator.run_command"
_SYSTEM_VERSION = "nodestrap.runtime.orchestrator.get_system_version"


@dataclass
class FakeDownload:
    """Writes a minimal node tarball instead of hitting the network."""

    name: str = "fake"
    fetched: list[str] = field(default_factory=list)

    def is_applicable(self, resolver: PathResolver) -> bool:
        return True

    async def fetch(self, url: str, destination: Path) -> None:
        self.fetched.append(url)
        top = url.rsplit("/", 1)[-1].removesuffix(".tar.gz")
        with tarfile.open(destination, "w:gz") as tf:
            for name in ("node", "npm"):
                data = f"#!/bin/sh\necho {name}\n".encode()
                info = tarfile.TarInfo(f"{top}/bin/{name}")
                info.size = len(data)
                info.mode = 0o644
                tf.addfile(info, io.BytesIO(data))


def _installer(tmp_path, host=LINUX, **settings) -> tuple[NodeInstaller, FakeDownload]:
    home = tmp_path / "home"
    (home / "bin").mkdir(parents=True)
    resolver = PathResolver(os.pathsep.join([str(home / "bin"), str(tmp_path / "sys")]))
    settings.setdefault("workspace", tmp_path / "ws")
    fake = FakeDownload()
    installer = NodeInstaller(
        InstallerSettings(node_version=VERSION, **settings),
        resolver=resolver,
        host=host,
        home=home,
        strategies=[fake],
    )
    return installer, fake


def _pm_result(success: bool) -> PackageInstallResult:
    return PackageInstallResult(success=success, package_manager="apt" if success else "")


# ═══════════════════════════════════════════════════════════════════
# Version checks
# ═══════════════════════════════════════════════════════════════════


class TestVersionChecks:
    @patch(_SYSTEM_VERSION, new_callable=AsyncMock, return_value=None)
    async def test_not_installed(self, _mock, tmp_path):
        installer, _ = _installer(tmp_path)
        assert await installer.check_version() == VersionCheck.NOT_INSTALLED
        assert await installer.is_installed() is False

    @patch(_SYSTEM_VERSION, new_callable=AsyncMock, return_value=Version("16.2.0"))
    async def test_outdated_against_configured_version(self, _mock, tmp_path):
        installer, _ = _installer(tmp_path)
        assert await installer.check_version() == VersionCheck.OUTDATED
        assert await installer.is_installed() is True
        assert await installer.is_up_to_date() is False

    @patch(_SYSTEM_VERSION, new_callable=AsyncMock, return_value=Version("18.0.0"))
    async def test_explicit_required_version(self, _mock, tmp_path):
        installer, _ = _installer(tmp_path)
        assert await installer.check_version("18.0.0") == VersionCheck.UP_TO_DATE

    @patch(_SYSTEM_VERSION, new_callable=AsyncMock, return_value=Version("22.14.0"))
    async def test_ensure_skips_install_when_up_to_date(self, _mock, tmp_path):
        installer, fake = _installer(tmp_path)
        installer.install = AsyncMock()

        assert await installer.ensure() == InstallStatus.INSTALLED
        installer.install.assert_not_awaited()

    @patch(_SYSTEM_VERSION, new_callable=AsyncMock, return_value=None)
    async def test_ensure_installs_when_missing(self, _mock, tmp_path):
        installer, _ = _installer(tmp_path, use_package_manager=False)
        installer.install = AsyncMock(return_value=InstallStatus.INSTALLED)

        assert await installer.ensure() == InstallStatus.INSTALLED
        installer.install.assert_awaited_once_with(False)


# ═══════════════════════════════════════════════════════════════════
# Package manager path
# ═══════════════════════════════════════════════════════════════════


class TestPackageManagerPath:
    async def test_candidate_table_and_pnpm_override(self, tmp_path):
        installer, _ = _installer(tmp_path)
        installer.registry.install_first_available = AsyncMock(return_value=_pm_result(True))

        await installer.install_with_package_manager()

        args, kwargs = installer.registry.install_first_available.call_args
        assert list(args[0]) == ["pnpm", "apt", "pacman", "yay", "pamac", "npm"]
        assert args[0] == DEFAULT_CANDIDATES
        assert kwargs["continue_on_failure"] is True
        pnpm = installer.registry.descriptor("pnpm")
        assert pnpm.install_command_template == "pnpm env use --global"

    async def test_configured_candidates_replace_defaults(self, tmp_path):
        installer, _ = _installer(tmp_path, candidates=(("brew", "node"),))
        installer.registry.install_first_available = AsyncMock(return_value=_pm_result(True))

        await installer.install_with_package_manager()

        assert installer.registry.install_first_available.call_args[0][0] == {"brew": "node"}

    async def test_configured_managers_are_registered(self, tmp_path):
        brew = PackageManagerDescriptor(
            id="brew",
            display_name="brew",
            version_command="brew --version",
            install_command_template="brew install",
        )
        installer, _ = _installer(tmp_path, package_managers=(brew,))
        assert installer.registry.descriptor("brew").install_command_template == "brew install"

    async def test_unregistered_candidate_falls_back_to_manual(self, tmp_path):
        installer, _ = _installer(tmp_path, candidates=(("brew", "node"),))
        installer.manual_install = AsyncMock()

        assert await installer.install() == InstallStatus.INSTALLED
        installer.manual_install.assert_awaited_once()

    async def test_configured_pnpm_descriptor_is_kept(self, tmp_path):
        pnpm = PackageManagerDescriptor(
            id="pnpm",
            display_name="pnpm",
            version_command="pnpm -v",
            install_command_template="pnpm add -g",
        )
        installer, _ = _installer(tmp_path, package_managers=(pnpm,))
        installer.registry.install_first_available = AsyncMock(return_value=_pm_result(True))

        await installer.install_with_package_manager()

        assert installer.registry.descriptor("pnpm").install_command_template == "pnpm add -g"

    async def test_injected_registry_is_used_as_given(self, tmp_path):
        registry = PackageManagerRegistry(PathResolver(str(tmp_path)), windows=False)
        installer = NodeInstaller(
            InstallerSettings(workspace=tmp_path / "ws"), registry=registry, host=LINUX
        )
        registry.install_first_available = AsyncMock(return_value=_pm_result(True))

        await installer.install_with_package_manager()

        assert installer.registry is registry
        assert registry.descriptor("pnpm").install_command_template == "pnpm install -g"

    async def test_success_skips_manual_path(self, tmp_path):
        installer, fake = _installer(tmp_path)
        installer.registry.install_first_available = AsyncMock(return_value=_pm_result(True))

        assert await installer.install() == InstallStatus.INSTALLED
        assert fake.fetched == []

    async def test_failure_falls_back_to_manual(self, tmp_path):
        installer, _ = _installer(tmp_path)
        installer.registry.install_first_available = AsyncMock(return_value=_pm_result(False))
        installer.manual_install = AsyncMock()

        assert await installer.install() == InstallStatus.INSTALLED
        installer.manual_install.assert_awaited_once()

    async def test_disabled_package_manager_goes_straight_to_manual(self, tmp_path):
        installer, _ = _installer(tmp_path)
        installer.registry.install_first_available = AsyncMock()
        installer.manual_install = AsyncMock()

        await installer.install(use_package_manager=False)

        installer.registry.install_first_available.assert_not_awaited()
        installer.manual_install.assert_awaited_once()

    @patch(_SYSTEM_VERSION, new_callable=AsyncMock, return_value=None)
    async def test_verify_runs_manual_when_no_node_appeared(self, mock_version, tmp_path):
        installer, _ = _installer(tmp_path, verify_package_manager=True)
        installer.registry.install_first_available = AsyncMock(return_value=_pm_result(True))
        installer.manual_install = AsyncMock()

        await installer.install()

        installer.manual_install.assert_awaited_once()
        assert mock_version.call_args.kwargs["refresh"] is True

    @patch(_SYSTEM_VERSION, new_callable=AsyncMock, return_value=Version("22.14.0"))
    async def test_verify_trusts_package_manager_when_node_present(self, _mock, tmp_path):
        installer, _ = _installer(tmp_path, verify_package_manager=True)
        installer.registry.install_first_available = AsyncMock(return_value=_pm_result(True))
        installer.manual_install = AsyncMock()

        assert await installer.install() == InstallStatus.INSTALLED
        installer.manual_install.assert_not_awaited()


# ═══════════════════════════════════════════════════════════════════
# Manual path
# ═══════════════════════════════════════════════════════════════════


class TestManualInstall:
    async def test_end_to_end(self, tmp_path):
        installer, fake = _installer(tmp_path)
        home = tmp_path / "home"

        target = await installer.manual_install()

        assert fake.fetched == [
            "https://nodejs.org/dist/v22.14.0/node-v22.14.0-linux-x64.tar.gz"
        ]
        assert target.destination == home / "bin"
        runtime = home / "node-22.14.0"
        assert os.readlink(home / "bin" / "node") == str(runtime / "bin" / "node")
        assert os.readlink(home / "bin" / "npm") == str(runtime / "bin" / "npm")
        assert os.access(home / "bin" / "node", os.X_OK)
        assert not (tmp_path / "ws").exists()

    async def test_reinstall_keeps_correct_links(self, tmp_path):
        installer, _ = _installer(tmp_path)
        await installer.manual_install()
        ino = os.lstat(tmp_path / "home" / "bin" / "node").st_ino

        await installer.manual_install()

        assert os.lstat(tmp_path / "home" / "bin" / "node").st_ino == ino

    async def test_workspace_is_wiped_first(self, tmp_path):
        installer, _ = _installer(tmp_path)
        stale = tmp_path / "ws" / "stale.tar"
        stale.parent.mkdir()
        stale.write_text("old")

        workspace = installer.prepare_workspace()

        assert workspace.is_dir()
        assert list(workspace.iterdir()) == []

    async def test_unwritable_workspace_names_directory(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        installer, _ = _installer(tmp_path, workspace=blocker / "ws")

        with pytest.raises(EnvironmentWriteError, match="blocker") as exc_info:
            await installer.manual_install()
        assert "rerun as root" in str(exc_info.value)

    async def test_download_error_propagates(self, tmp_path):
        installer, fake = _installer(tmp_path)
        fake.fetch = AsyncMock(side_effect=DownloadError("boom"))

        with pytest.raises(DownloadError):
            await installer.install(use_package_manager=False)

    async def test_unsupported_platform(self, tmp_path):
        installer, _ = _installer(tmp_path, host=FREEBSD)
        with pytest.raises(UnsupportedPlatformError, match="freebsd14"):
            await installer.install(use_package_manager=False)

    async def test_force_manual_allows_any_platform(self, tmp_path):
        installer, _ = _installer(tmp_path, host=FREEBSD, force_manual=True)
        installer.manual_install = AsyncMock()

        assert await installer.install(use_package_manager=False) == InstallStatus.INSTALLED
        installer.manual_install.assert_awaited_once()

    def test_darwin_allowed_without_force(self, tmp_path):
        installer, _ = _installer(tmp_path, host=PlatformInfo("darwin", "arm64"))
        assert installer.manual_install_allowed() is True


# ═══════════════════════════════════════════════════════════════════
# Windows pnpm path
# ═══════════════════════════════════════════════════════════════════


class TestWindowsPnpm:
    async def test_no_pnpm_flag_is_an_impasse(self, tmp_path):
        installer, _ = _installer(tmp_path, host=WINDOWS, no_pnpm=True)
        with pytest.raises(PackageManagerUnavailableError, match="--no-pnpm"):
            await installer.install(use_package_manager=False)

    @patch(_RUN, new_callable=AsyncMock, return_value=(0, "", ""))
    async def test_bootstrap_then_restart_required(self, mock_run, tmp_path):
        installer, _ = _installer(tmp_path, host=WINDOWS)

        status = await installer.install(use_package_manager=False)

        assert status == InstallStatus.RESTART_REQUIRED
        assert mock_run.call_args[0][0] == PNPM_BOOTSTRAP_COMMAND

    @patch(_RUN, new_callable=AsyncMock, return_value=(0, "", ""))
    async def test_bootstrap_then_global_node(self, mock_run, tmp_path):
        installer, _ = _installer(tmp_path, host=WINDOWS)

        async def _bootstrap(cmd, **kwargs):
            if cmd == PNPM_BOOTSTRAP_COMMAND:
                (tmp_path / "home" / "bin" / "pnpm.exe").write_text("")
            return (0, "", "")

        mock_run.side_effect = _bootstrap

        assert await installer.install(use_package_manager=False) == InstallStatus.INSTALLED
        assert mock_run.call_args[0][0] == ["pnpm", "env", "use", "--global", "latest"]

    @patch(_RUN, new_callable=AsyncMock, return_value=(0, "", ""))
    async def test_existing_pnpm_skips_bootstrap(self, mock_run, tmp_path):
        installer, _ = _installer(tmp_path, host=WINDOWS)
        (tmp_path / "home" / "bin" / "pnpm.cmd").write_text("")

        assert await installer.install(use_package_manager=False) == InstallStatus.INSTALLED
        assert mock_run.await_count == 1
