"""
Engine-facing components of the CLI server.

This package handles:
- Version discovery and compatibility checks (VersionGate)
- Heap flag computation (RamAllocator)
- The long-lived engine process (ProcessChannel)
- Typed metadata queries on top of the channel (MetadataResolver)
"""

from qlserver.engine.channel import ChannelState, FifoLock, ProcessChannel
from qlserver.engine.metadata import MetadataResolver
from qlserver.engine.paths import find_engine_executable
from qlserver.engine.ram import RamAllocator, resolve_ram
from qlserver.engine.version import VersionGate

__all__ = [
    "ChannelState",
    "FifoLock",
    "ProcessChannel",
    "MetadataResolver",
    "find_engine_executable",
    "RamAllocator",
    "resolve_ram",
    "VersionGate",
]
