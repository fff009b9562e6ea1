"""Shared test fixtures for the devstack test suite."""

from __future__ import annotations

from collections.abc import Iterator
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from devstack.startup.profiles import Profile, ProfileResolver
from tests.fakes.stack import FULL_OVERLAY, MINIMAL_OVERLAY, write_overlay


@pytest.fixture(autouse=True)
def isolated_environment() -> Iterator[None]:
    """Keep the developer's own environment out of settings-driven tests."""
    keep = {k: v for k, v in os.environ.items() if k in {"PATH", "HOME", "TMPDIR"}}
    with patch.dict(os.environ, keep, clear=True):
        yield


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    write_overlay(tmp_path, "minimal", MINIMAL_OVERLAY)
    write_overlay(tmp_path, "full", FULL_OVERLAY)
    (tmp_path / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def minimal_profile(project_root: Path) -> Profile:
    return ProfileResolver(project_root).resolve("minimal")


@pytest.fixture
def full_profile(project_root: Path) -> Profile:
    return ProfileResolver(project_root).resolve("full")
