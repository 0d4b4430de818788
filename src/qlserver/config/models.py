"""Typed configuration for the CLI server."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from qlserver.engine.channel import DEFAULT_SERVER_ARGS, DEFAULT_SHUTDOWN_GRACE


@dataclass
class EngineConfig:
    """How to launch and drive the engine process.

    Attributes:
        path: Engine executable; discovered from CODEQL_PATH or PATH when None.
        server_args: Arguments selecting the engine's server mode.
        extra_args: Additional arguments for the server process.
        log_dir: Directory for the engine's own logs.
        ram: Memory budget in MB; heap flags are added to every command when set.
        timeout: Default deadline in seconds for each command.
        shutdown_grace: Seconds to wait for a graceful exit on close.
    """

    path: Optional[str] = None
    server_args: List[str] = field(default_factory=lambda: list(DEFAULT_SERVER_ARGS))
    extra_args: List[str] = field(default_factory=list)
    log_dir: Optional[str] = None
    ram: Optional[int] = None
    timeout: Optional[float] = None
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE


@dataclass
class CliServerConfig:
    """Complete qlserver configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    required_version: Optional[str] = None

    # Where the settings came from, for diagnostics.
    _config_sources: List[str] = field(default_factory=list, repr=False)

    @property
    def sources(self) -> List[str]:
        return list(self._config_sources)
