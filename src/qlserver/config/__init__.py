"""Configuration loading for qlserver."""

from qlserver.config.loader import load_config
from qlserver.config.models import CliServerConfig, EngineConfig

__all__ = [
    "load_config",
    "CliServerConfig",
    "EngineConfig",
]
