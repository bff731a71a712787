"""Shared test fixtures."""

from __future__ import annotations

import pytest

from nodestrap.runtime.version import clear_version_cache


@pytest.fixture(autouse=True)
def _clear_version_cache() -> None:
    """Forget the memoized node version before each test to prevent cross-test pollution."""
    clear_version_cache()
