"""Domain models for nodestrap. All frozen dataclasses -- no mutation after creation."""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

# ─── Enumerations ─────────────────────────────────────────────


class VersionCheck(StrEnum):
    UP_TO_DATE = "up_to_date"
    OUTDATED = "outdated"
    NOT_INSTALLED = "not_installed"


class InstallStatus(StrEnum):
    INSTALLED = "installed"
    NOT_INSTALLED = "not_installed"
    RESTART_REQUIRED = "restart_required"  # PATH change needs a new shell/session


class PackageManager(StrEnum):
    """Well-known package manager ids. Any other string is a valid id too."""

    PACMAN = "pacman"
    APT = "apt"
    YAY = "yay"
    PNPM = "pnpm"
    YARN = "yarn"
    NPM = "npm"
    PAMAC = "pamac"
    CHOCO = "choco"


SEMVER_PATTERN = re.compile(r"(\d+\.\d+\.\d+)", re.IGNORECASE)
SEMVER_WITH_V_PATTERN = re.compile(r"v(\d+\.\d+\.\d+)", re.IGNORECASE)


# ─── Package Manager Models ───────────────────────────────────


@dataclass(frozen=True, slots=True)
class PackageManagerDescriptor:
    """How to detect, query and drive one package manager."""

    id: str
    display_name: str
    version_command: str
    install_command_template: str  # package name is appended
    requires_elevation: bool = False
    version_pattern: re.Pattern[str] = SEMVER_PATTERN

    @property
    def executable(self) -> str:
        """Name of the executable looked up on PATH."""
        return self.display_name


@dataclass(frozen=True, slots=True)
class ExecOptions:
    """Options forwarded to every package manager subprocess."""

    env: dict[str, str] | None = None
    cwd: str | None = None
    timeout: float | None = None
    stream: bool = True


@dataclass(frozen=True, slots=True)
class PackageInstallResult:
    """Outcome of trying a candidate table of package managers."""

    success: bool
    package_manager: str = ""
    package_name: str = ""
    message: str = ""
    command_output: str = ""
    attempts: tuple[tuple[str, str], ...] = ()  # (manager id, error) per failed candidate


# ─── Runtime Models ───────────────────────────────────────────


_SYSTEM_NAMES = {"linux": "linux", "darwin": "darwin", "win32": "win"}

_ARCH_NAMES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armv7l",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}


@dataclass(frozen=True, slots=True)
class PlatformInfo:
    """Host platform expressed in Node.js distribution naming."""

    platform: str  # raw sys.platform value
    machine: str  # raw platform.machine() value

    @property
    def system(self) -> str:
        return _SYSTEM_NAMES.get(self.platform, self.platform)

    @property
    def arch(self) -> str:
        return _ARCH_NAMES.get(self.machine.lower(), self.machine.lower())

    @property
    def is_windows(self) -> bool:
        return self.platform == "win32"

    @property
    def archive_extension(self) -> str:
        return "7z" if self.is_windows else "tar.gz"

    @property
    def node_executable(self) -> str:
        return "node.exe" if self.is_windows else "node"

    @classmethod
    def current(cls) -> PlatformInfo:
        import platform

        return cls(platform=sys.platform, machine=platform.machine())


@dataclass(frozen=True, slots=True)
class InstallationTarget:
    """Everything one manual install run needs. Never persisted."""

    url: str
    workspace: Path
    archive_path: Path
    runtime_dir_name: str  # e.g. node-v22.14.0-linux-x64
    destination: Path | None = None

    @property
    def extracted_runtime(self) -> Path:
        return self.workspace / self.runtime_dir_name


@dataclass(frozen=True, slots=True)
class LinkReport:
    """What the linking stage did for one runtime directory."""

    linked: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    replaced: list[str] = field(default_factory=list)
