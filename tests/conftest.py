"""Shared fixtures: a scripted fake engine running as a real subprocess."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

from qlserver.config.models import CliServerConfig, EngineConfig
from qlserver.engine.channel import ProcessChannel
from qlserver.server import CliServer

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_ENGINE = FIXTURES_DIR / "fake_engine.py"
WORKSPACE_DIR = FIXTURES_DIR / "workspace"
QUERIES_DIR = FIXTURES_DIR / "queries"


def fake_engine_config(**engine_overrides) -> CliServerConfig:
    """Config that launches the fake engine with the current interpreter."""
    engine = EngineConfig(
        path=sys.executable,
        server_args=[str(FAKE_ENGINE)],
        timeout=30.0,
        shutdown_grace=2.0,
    )
    for key, value in engine_overrides.items():
        setattr(engine, key, value)
    return CliServerConfig(engine=engine)


@pytest.fixture
def workspace() -> Path:
    """Workspace folder holding one qlpack per language plus a custom pack."""
    return WORKSPACE_DIR


@pytest.fixture
def queries_dir() -> Path:
    return QUERIES_DIR


@pytest.fixture
def channel() -> Iterator[ProcessChannel]:
    """A channel to the fake engine, closed after the test."""
    ch = ProcessChannel(
        sys.executable,
        server_args=[str(FAKE_ENGINE)],
        default_timeout=30.0,
        shutdown_grace=2.0,
    )
    yield ch
    ch.close()


@pytest.fixture
def cli_server() -> Iterator[CliServer]:
    """A CliServer driving the fake engine."""
    with CliServer(fake_engine_config()) as server:
        yield server


@pytest.fixture
def make_config():
    """Factory for fake-engine configs with engine overrides."""
    return fake_engine_config
