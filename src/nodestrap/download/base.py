"""Download strategy protocol."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from nodestrap.pathing.resolver import PathResolver


class DownloadStrategy(Protocol):
    """One way of fetching a URL into a local file."""

    name: str

    def is_applicable(self, resolver: PathResolver) -> bool:
        """Check whether this strategy can run on this host."""
        ...

    async def fetch(self, url: str, destination: Path) -> None:
        """Download ``url`` to ``destination``. Raises DownloadError."""
        ...
