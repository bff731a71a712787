"""Executable search path as an ordered, de-duplicated set of directories."""

from __future__ import annotations

import os
from pathlib import Path


class PathResolver:
    """Ordered view of ``PATH`` with membership and executable lookup.

    Lookup order always equals insertion order: the first directory that
    holds a match wins, even if a later directory also contains one.
    """

    def __init__(self, raw: str | None = None) -> None:
        self._dirs: list[str] = []
        self.set_path(raw)

    @property
    def directories(self) -> list[str]:
        return list(self._dirs)

    def set_path(self, raw: str | None = None) -> PathResolver:
        """Replace the directory list with ``raw`` split on ``os.pathsep``.

        Defaults to the inherited ``PATH``. Duplicates are dropped, keeping
        the first occurrence.
        """
        if raw is None:
            raw = os.environ.get("PATH", "")
        self._dirs = list(dict.fromkeys(d for d in raw.split(os.pathsep) if d))
        return self

    def get_path(self) -> str:
        return os.pathsep.join(self._dirs)

    def add_path(self, directory: str) -> PathResolver:
        self._dirs.append(directory)
        return self

    def remove_path(self, directory: str) -> PathResolver:
        self._dirs = [d for d in self._dirs if d != directory]
        return self

    def includes(self, directory: str) -> bool:
        return directory in self._dirs

    def _existing_dirs(self):
        for d in self._dirs:
            if os.path.isdir(d):
                yield d

    def has_executable(self, name: str) -> bool:
        return any(os.path.lexists(os.path.join(d, name)) for d in self._existing_dirs())

    def find_executable(self, name: str, case_insensitive: bool = False) -> str | None:
        """Return the full path of ``name`` in the first directory that has it.

        Within one directory an exact match beats a case-insensitive one.
        Directories that do not exist or cannot be listed are skipped.
        """
        wanted = name.lower()
        for d in self._existing_dirs():
            exact = os.path.join(d, name)
            if os.path.lexists(exact):
                return exact
            if not case_insensitive:
                continue
            try:
                entries = sorted(os.listdir(d))
            except OSError:
                continue
            for entry in entries:
                if entry.lower() == wanted:
                    return str(Path(d) / entry)
        return None
