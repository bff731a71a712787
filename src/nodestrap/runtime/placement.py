"""Choose a writable destination on PATH, place the runtime and link its executables."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from collections.abc import Iterable
from pathlib import Path

from nodestrap.errors import EnvironmentWriteError
from nodestrap.models import LinkReport
from nodestrap.pathing.resolver import PathResolver

logger = logging.getLogger(__name__)

PROBE_FILE_NAME = "test-node-install-dir-perms"
EXECUTABLE_MODE = 0o755


def candidate_destinations(resolver: PathResolver, home: Path | None = None) -> list[Path]:
    """Bin directories already on PATH, user-scoped first.

    The final PATH entry is appended as a last resort.
    """
    home = home or Path.home()
    preferred = [home / "bin", home / ".bin", Path("/usr/local/bin"), Path("/usr/bin")]
    found = [p for p in preferred if resolver.includes(str(p))]
    dirs = resolver.directories
    if dirs and Path(dirs[-1]) not in found:
        found.append(Path(dirs[-1]))
    return found


def probe_writable(directory: Path) -> bool:
    """Create and delete a throwaway file in ``directory``."""
    probe = directory / PROBE_FILE_NAME
    try:
        directory.mkdir(parents=True, exist_ok=True)
        probe.touch()
        probe.unlink()
    except OSError:
        logger.debug("Cannot write to %s", directory, exc_info=True)
        return False
    return True


def select_destination(candidates: Iterable[Path]) -> Path:
    """Return the first candidate that passes the write probe.

    Raises:
        EnvironmentWriteError: No candidate is writable.
    """
    tried: list[Path] = []
    for candidate in candidates:
        if probe_writable(candidate):
            logger.info("Installing node binaries into %s", candidate)
            return candidate
        tried.append(candidate / PROBE_FILE_NAME)
    if not tried:
        raise EnvironmentWriteError("No destination directory found on PATH.")
    raise EnvironmentWriteError(
        f"Could not write to {', '.join(str(p) for p in tried)} - You may need to rerun as root"
    )


def place_runtime(extracted: Path, destination: Path, version: str) -> Path:
    """Move the extracted runtime next to ``destination`` as ``node-<version>``.

    An existing directory of the same name is replaced.
    """
    runtime_dir = destination.parent / f"node-{version}"
    try:
        if os.path.lexists(runtime_dir):
            _remove(runtime_dir)
        shutil.move(str(extracted), str(runtime_dir))
    except OSError as exc:
        raise EnvironmentWriteError(
            f"Could not move node runtime into {runtime_dir} - You may need to rerun as root ({exc})"
        ) from exc
    logger.info("Placed node runtime at %s", runtime_dir)
    return runtime_dir


def executable_dir(runtime_dir: Path, windows: bool = False) -> Path:
    """Directory holding the runtime's executables."""
    return runtime_dir if windows else runtime_dir / "bin"


def _points_to(link: Path, target: Path) -> bool:
    if not link.is_symlink():
        return False
    return os.readlink(link) == str(target)


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _ensure_executable(path: Path) -> None:
    if not path.exists():
        return
    if stat.S_IMODE(path.stat().st_mode) != EXECUTABLE_MODE:
        path.chmod(EXECUTABLE_MODE)


def link_executables(
    bin_dir: Path,
    destination: Path,
    *,
    force: bool = False,
    windows: bool = False,
) -> LinkReport:
    """Symlink every entry of ``bin_dir`` into ``destination``.

    An existing entry is left alone unless it is not already the correct
    link and ``force`` is set, in which case it is replaced. On POSIX every
    linked file gets mode 0755. Running this twice without force changes
    nothing the second time.
    """
    report = LinkReport()
    try:
        for source in sorted(bin_dir.iterdir()):
            target = destination / source.name
            if os.path.lexists(target):
                if _points_to(target, source):
                    report.skipped.append(source.name)
                elif force:
                    _remove(target)
                    target.symlink_to(source)
                    report.replaced.append(source.name)
                else:
                    logger.warning(
                        "%s already exists and is not a link to %s - use --force-node-link to replace",
                        target,
                        source,
                    )
                    report.skipped.append(source.name)
                    continue
            else:
                target.symlink_to(source)
                report.linked.append(source.name)
            if not windows:
                _ensure_executable(source)
    except OSError as exc:
        raise EnvironmentWriteError(
            f"Could not link node executables into {destination} - You may need to rerun as root ({exc})"
        ) from exc
    return report
