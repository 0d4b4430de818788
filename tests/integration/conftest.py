"""Pytest configuration and fixtures for integration tests.

These run against a real CodeQL engine. They are skipped unless one is
found through $CODEQL_PATH or on PATH.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Iterator, List

import pytest

from qlserver.config.models import CliServerConfig, EngineConfig
from qlserver.engine.paths import ENGINE_PATH_ENV, DEFAULT_ENGINE_NAME
from qlserver.server import CliServer

# Workspace folders (os.pathsep separated) holding the CodeQL standard packs
WORKSPACE_ENV = "QLSERVER_TEST_WORKSPACE"


def _find_engine() -> str:
    return os.environ.get(ENGINE_PATH_ENV) or shutil.which(DEFAULT_ENGINE_NAME) or ""


@pytest.fixture
def data_dir() -> Path:
    return Path(__file__).parent / "data"


@pytest.fixture
def workspace_folders() -> List[Path]:
    """Workspace folders to search for packs."""
    value = os.environ.get(WORKSPACE_ENV)
    if not value:
        pytest.skip(f"{WORKSPACE_ENV} not set")
    return [Path(p) for p in value.split(os.pathsep) if p]


@pytest.fixture
def real_cli_server() -> Iterator[CliServer]:
    """A CliServer driving the real engine."""
    config = CliServerConfig(engine=EngineConfig(path=_find_engine() or None, timeout=120.0))
    with CliServer(config) as server:
        yield server
