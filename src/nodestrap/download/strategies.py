"""Download strategies, tried in priority order: curl, wget, built-in httpx."""

from __future__ import annotations

import logging
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import httpx

from nodestrap.download.base import DownloadStrategy
from nodestrap.errors import DownloadError
from nodestrap.installer.subprocess import run_command
from nodestrap.pathing.resolver import PathResolver

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16


@dataclass(frozen=True, slots=True)
class CommandDownload:
    """Shells out to an external download tool found on PATH."""

    name: str
    args: tuple[str, ...]  # output path and URL are appended: ``<args> <out> <url>``

    def is_applicable(self, resolver: PathResolver) -> bool:
        return (
            resolver.find_executable(self.name) is not None
            or resolver.find_executable(f"{self.name}.exe", case_insensitive=True) is not None
        )

    async def fetch(self, url: str, destination: Path) -> None:
        cmd = [self.name, *self.args, str(destination), url]
        try:
            returncode, stdout, stderr = await run_command(cmd, timeout=None, stream=True)
        except OSError as exc:
            raise DownloadError(f"Could not run {self.name}: {exc}") from exc
        if returncode != 0:
            raise DownloadError(
                f"'{shlex.join(cmd)}' failed with status {returncode}: {(stderr or stdout).strip()}"
            )


@dataclass(frozen=True, slots=True)
class HttpxDownload:
    """Built-in transport. Always applicable."""

    name: str = "httpx"
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None

    def is_applicable(self, resolver: PathResolver) -> bool:
        return True

    async def fetch(self, url: str, destination: Path) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with destination.open("wb") as fh:
                        async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                            fh.write(chunk)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Failed to download {url}: {exc}") from exc
        except OSError as exc:
            raise DownloadError(f"Could not write download to {destination}: {exc}") from exc


CURL = CommandDownload(name="curl", args=("-fL", "-o"))
WGET = CommandDownload(name="wget", args=("-O",))
BUILTIN = HttpxDownload()

DEFAULT_STRATEGIES: tuple[DownloadStrategy, ...] = (CURL, WGET, BUILTIN)


def select_strategy(
    resolver: PathResolver,
    strategies: Sequence[DownloadStrategy] = DEFAULT_STRATEGIES,
) -> DownloadStrategy:
    """Return the first applicable strategy. The last entry should always apply."""
    for strategy in strategies:
        if strategy.is_applicable(resolver):
            return strategy
    raise DownloadError(
        "No download tool available. Tried: " + ", ".join(s.name for s in strategies)
    )


async def download(
    url: str,
    destination: Path,
    resolver: PathResolver,
    strategies: Sequence[DownloadStrategy] = DEFAULT_STRATEGIES,
) -> DownloadStrategy:
    """Fetch ``url`` into ``destination`` with exactly one strategy."""
    strategy = select_strategy(resolver, strategies)
    logger.info("Downloading %s with %s", url, strategy.name)
    await strategy.fetch(url, destination)
    return strategy
