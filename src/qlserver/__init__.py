"""qlserver - long-lived CLI server for the CodeQL analysis engine.

qlserver owns the engine process, turns typed requests into engine
commands, and decodes the engine's JSON answers into typed results.
"""

from qlserver.core.models import EngineVersion, QueryInfoByLanguage, VersionRange
from qlserver.errors import (
    ChannelBusy,
    CliServerError,
    EngineCrashed,
    EngineTimeout,
    EngineUnavailable,
    IncompatibleEngineVersion,
    InvalidConfiguration,
    MalformedOutput,
)
from qlserver.server import CliServer

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "CliServer",
    "EngineVersion",
    "QueryInfoByLanguage",
    "VersionRange",
    "CliServerError",
    "ChannelBusy",
    "EngineCrashed",
    "EngineTimeout",
    "EngineUnavailable",
    "IncompatibleEngineVersion",
    "InvalidConfiguration",
    "MalformedOutput",
]
