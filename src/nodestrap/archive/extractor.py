"""Unpack Node.js distribution archives into a workspace.

``.tar.gz`` archives are unpacked in two layers: the gzip wrapper is
decompressed to an intermediate ``.tar`` first, which must be a tar
archive, and then the tar is extracted. ``.7z`` archives are a single layer.
"""

from __future__ import annotations

import gzip
import logging
import shutil
import tarfile
from pathlib import Path

import py7zr
from py7zr.exceptions import ArchiveError

from nodestrap.errors import ExtractionError

logger = logging.getLogger(__name__)


def decompress_gzip(archive: Path, output: Path) -> Path:
    """Strip the gzip layer of ``archive`` into ``output``."""
    try:
        with gzip.open(archive, "rb") as src, output.open("wb") as dst:
            shutil.copyfileobj(src, dst)
    except (OSError, EOFError) as exc:
        raise ExtractionError(f"Could not decompress {archive}: {exc}") from exc
    return output


def extract_tar(tar_path: Path, dest_dir: Path) -> None:
    """Extract a tar, using the 'data' filter where the interpreter has it."""
    try:
        with tarfile.open(tar_path, "r:") as tf:
            if hasattr(tarfile, "data_filter"):
                tf.extractall(dest_dir, filter="data")
            else:
                tf.extractall(dest_dir)
    except (tarfile.TarError, OSError) as exc:
        raise ExtractionError(f"Could not extract {tar_path}: {exc}") from exc


def extract_7z(archive: Path, dest_dir: Path) -> None:
    try:
        with py7zr.SevenZipFile(archive, mode="r") as zf:
            zf.extractall(path=dest_dir)
    except (ArchiveError, OSError) as exc:
        raise ExtractionError(f"Could not extract {archive}: {exc}") from exc


def extract_runtime(archive: Path, dest_dir: Path, runtime_dir_name: str) -> Path:
    """Unpack a runtime archive and return the extracted runtime directory.

    Args:
        archive: Downloaded ``.tar.gz`` or ``.7z`` file.
        dest_dir: Workspace the layers are unpacked into.
        runtime_dir_name: Top-level directory the archive contains,
            e.g. ``node-v22.14.0-linux-x64``. Also names the inner tar.

    Raises:
        ExtractionError: A layer failed to unpack or an expected path
            is missing afterwards.
    """
    if not archive.exists():
        raise ExtractionError(f"Archive not found: {archive}")

    if archive.name.endswith(".7z"):
        logger.info("Extracting %s", archive)
        extract_7z(archive, dest_dir)
    else:
        inner = dest_dir / f"{runtime_dir_name}.tar"
        logger.info("Decompressing %s", archive)
        decompress_gzip(archive, inner)
        if not inner.is_file() or not tarfile.is_tarfile(inner):
            raise ExtractionError(f"Could not find extracted tar file in {archive}")
        logger.info("Extracting %s", inner)
        extract_tar(inner, dest_dir)
        inner.unlink()

    runtime = dest_dir / runtime_dir_name
    if not runtime.is_dir():
        raise ExtractionError(f"Archive {archive} did not contain {runtime_dir_name}/")
    return runtime
