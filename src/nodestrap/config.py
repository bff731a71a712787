"""Installer settings from defaults, a YAML file, the environment and CLI flags.

Later sources win: defaults < YAML file < environment < CLI flags.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

from nodestrap.errors import ConfigError
from nodestrap.models import SEMVER_PATTERN, PackageManagerDescriptor
from nodestrap.runtime.platform import DEFAULT_DIST_URL

DEFAULT_NODE_VERSION = "22.14.0"
DEFAULT_CONFIG_FILE = "nodestrap.yaml"

ENV_NODE_VERSION = "NODESTRAP_NODE_VERSION"
ENV_DIST_URL = "NODESTRAP_DIST_URL"
ENV_WORKSPACE = "NODESTRAP_WORKSPACE"
ENV_CONFIG = "NODESTRAP_CONFIG"

_NODE_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")


@dataclass(frozen=True, slots=True)
class InstallerSettings:
    """Everything that steers one nodestrap run."""

    node_version: str = DEFAULT_NODE_VERSION
    dist_url: str = DEFAULT_DIST_URL
    workspace: Path = field(default_factory=lambda: Path.cwd() / "tmp")
    use_package_manager: bool = True
    verify_package_manager: bool = False
    force_manual: bool = False  # --force-manual-node / --force
    force_link: bool = False  # --force-node-link / --force
    no_pnpm: bool = False
    package_managers: tuple[PackageManagerDescriptor, ...] = ()
    candidates: tuple[tuple[str, str], ...] | None = None


def normalize_node_version(value: object, source: str) -> str:
    """Strip a leading ``v`` and require a full ``major.minor.patch`` version.

    Raises:
        ConfigError: The value is not of the form ``22.14.0``.
    """
    version = str(value).strip().lstrip("v")
    if not _NODE_VERSION_RE.match(version):
        raise ConfigError(
            f"{source}: node version must look like 22.14.0 (major.minor.patch), got {value!r}"
        )
    return version


# ─── YAML ────────────────────────────────────────────────────


def load_config_file(path: Path, base: InstallerSettings | None = None) -> InstallerSettings:
    """Overlay the contents of a YAML config file on ``base``.

    Raises:
        ConfigError: The file is missing, unreadable or malformed.
    """
    base = base or InstallerSettings()
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to parse config file '{path}': {exc}") from exc
    if data is None:
        return base
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return _apply_mapping(base, data, source=str(path))


def _apply_mapping(
    base: InstallerSettings, data: Mapping[str, object], source: str
) -> InstallerSettings:
    changes: dict[str, object] = {}
    if "node_version" in data:
        changes["node_version"] = normalize_node_version(data["node_version"], source)
    if "dist_url" in data:
        changes["dist_url"] = str(data["dist_url"])
    if "workspace" in data:
        changes["workspace"] = Path(str(data["workspace"])).expanduser()
    for key in ("use_package_manager", "verify_package_manager", "no_pnpm"):
        if key in data:
            changes[key] = bool(data[key])
    if "package_managers" in data:
        changes["package_managers"] = tuple(
            _parse_manager(raw, source) for raw in _as_list(data["package_managers"], source)
        )
    if "candidates" in data:
        raw = data["candidates"]
        if not isinstance(raw, dict):
            raise ConfigError(f"{source}: 'candidates' must map package manager to package name.")
        changes["candidates"] = tuple((str(k), str(v or "")) for k, v in raw.items())
    return replace(base, **changes)


def _as_list(value: object, source: str) -> list[object]:
    if not isinstance(value, list):
        raise ConfigError(f"{source}: 'package_managers' must be a list.")
    return value


def _parse_manager(raw: object, source: str) -> PackageManagerDescriptor:
    if not isinstance(raw, dict):
        raise ConfigError(f"{source}: each package manager entry must be a mapping.")
    missing = [k for k in ("id", "version_command", "install_command") if not raw.get(k)]
    if missing:
        raise ConfigError(
            f"{source}: package manager entry is missing {', '.join(missing)}: {raw!r}"
        )
    pattern = raw.get("version_pattern")
    try:
        compiled = re.compile(str(pattern), re.IGNORECASE) if pattern else SEMVER_PATTERN
    except re.error as exc:
        raise ConfigError(f"{source}: invalid version_pattern {pattern!r}: {exc}") from exc
    return PackageManagerDescriptor(
        id=str(raw["id"]),
        display_name=str(raw.get("executable") or raw["id"]),
        version_command=str(raw["version_command"]),
        install_command_template=str(raw["install_command"]),
        requires_elevation=bool(raw.get("requires_elevation", False)),
        version_pattern=compiled,
    )


# ─── Environment ─────────────────────────────────────────────


def apply_environment(
    base: InstallerSettings, environ: Mapping[str, str] | None = None
) -> InstallerSettings:
    environ = os.environ if environ is None else environ
    changes: dict[str, object] = {}
    if environ.get(ENV_NODE_VERSION):
        changes["node_version"] = normalize_node_version(
            environ[ENV_NODE_VERSION], ENV_NODE_VERSION
        )
    if environ.get(ENV_DIST_URL):
        changes["dist_url"] = environ[ENV_DIST_URL]
    if environ.get(ENV_WORKSPACE):
        changes["workspace"] = Path(environ[ENV_WORKSPACE]).expanduser()
    return replace(base, **changes) if changes else base


def resolve_config_path(
    explicit: Path | None, environ: Mapping[str, str] | None = None
) -> Path | None:
    """Explicit path, then $NODESTRAP_CONFIG, then ./nodestrap.yaml if present."""
    environ = os.environ if environ is None else environ
    if explicit is not None:
        return explicit
    if environ.get(ENV_CONFIG):
        return Path(environ[ENV_CONFIG]).expanduser()
    default = Path.cwd() / DEFAULT_CONFIG_FILE
    return default if default.exists() else None
