"""The CLI server façade.

CliServer is the single object callers use. It owns one engine process
(through its ProcessChannel), starts it lazily on the first operation that
needs it, and stops it on close().
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Sequence, Union

from qlserver.config.models import CliServerConfig
from qlserver.core.logging import get_logger
from qlserver.core.models import (
    DatabaseInfo,
    EngineVersion,
    HeapFlags,
    LanguageMap,
    QlpackMap,
    QueryInfoByLanguage,
    QuerySetup,
    VersionRange,
    VersionRangeLike,
)
from qlserver.engine.channel import ProcessChannel
from qlserver.engine.metadata import MetadataResolver
from qlserver.engine.ram import RamAllocator
from qlserver.engine.version import VersionGate
from qlserver.errors import IncompatibleEngineVersion, InvalidConfiguration

LOGGER = get_logger(__name__)

PathLike = Union[str, Path]


class CliServer:
    """Drives the external analysis engine on behalf of its callers.

    Example:
        with CliServer(load_config(Path.cwd())) as cli:
            if cli.check_compatible(">=2.4.0"):
                packs = cli.resolve_qlpacks([Path("/work/queries")])
    """

    def __init__(
        self,
        config: Optional[CliServerConfig] = None,
        *,
        channel: Optional[ProcessChannel] = None,
        ram_allocator: Optional[RamAllocator] = None,
    ) -> None:
        """Build the server without starting the engine.

        Args:
            config: Server configuration; defaults are used when None.
            channel: Pre-built channel. The server takes ownership and
                closes it on close().
            ram_allocator: Split policy for heap flags.
        """
        self._config = config or CliServerConfig()
        self._ram = ram_allocator or RamAllocator()
        self._closed = False
        self._channel: Optional[ProcessChannel] = None

        try:
            if channel is None:
                engine = self._config.engine
                heap_flags = self._ram.resolve(engine.ram) if engine.ram is not None else []
                channel = ProcessChannel(
                    engine.path,
                    server_args=engine.server_args,
                    extra_args=engine.extra_args,
                    heap_flags=heap_flags,
                    log_dir=engine.log_dir,
                    default_timeout=engine.timeout,
                    shutdown_grace=engine.shutdown_grace,
                )
            self._channel = channel
            self._required = (
                VersionRange.parse(self._config.required_version)
                if self._config.required_version
                else None
            )
            self._version_gate = VersionGate(channel)
            self._metadata = MetadataResolver(channel)
        except BaseException:
            if channel is not None:
                channel.close()
            raise

    @property
    def config(self) -> CliServerConfig:
        return self._config

    @property
    def channel(self) -> ProcessChannel:
        assert self._channel is not None
        return self._channel

    def get_version(self) -> EngineVersion:
        """Return the engine version (queried once, then memoized)."""
        return self._version_gate.get_version()

    def check_compatible(self, required: Optional[VersionRangeLike] = None) -> bool:
        """Check the engine version against a range.

        Args:
            required: Range to check; the configured ``required_version``
                when None.

        Raises:
            InvalidConfiguration: If no range is given or configured.
        """
        required_range = self._resolve_required(required)
        return self._version_gate.check_compatible(required_range)

    def require_version(self, required: Optional[VersionRangeLike] = None) -> EngineVersion:
        """Return the engine version, or raise if it is outside the range.

        Raises:
            IncompatibleEngineVersion: If the version is not in range.
        """
        required_range = self._resolve_required(required)
        if not self._version_gate.check_compatible(required_range):
            raise IncompatibleEngineVersion(self.get_version(), required_range)
        return self.get_version()

    def _resolve_required(self, required: Optional[VersionRangeLike]) -> VersionRange:
        if required is None:
            if self._required is None:
                raise InvalidConfiguration("No required engine version given or configured")
            return self._required
        if isinstance(required, VersionRange):
            return required
        return VersionRange.parse(required)

    def resolve_ram(self, total_mb: int) -> HeapFlags:
        """Compute heap flags for a memory budget. Never touches the engine."""
        return self._ram.resolve(total_mb)

    def resolve_qlpacks(
        self, folders: Sequence[PathLike], timeout: Optional[float] = None
    ) -> QlpackMap:
        return self._metadata.resolve_qlpacks(folders, timeout=timeout)

    def resolve_languages(self, timeout: Optional[float] = None) -> LanguageMap:
        return self._metadata.resolve_languages(timeout=timeout)

    def resolve_query_by_language(
        self,
        folders: Sequence[PathLike],
        query_file: PathLike,
        timeout: Optional[float] = None,
    ) -> QueryInfoByLanguage:
        return self._metadata.resolve_query_by_language(folders, query_file, timeout=timeout)

    def resolve_library_path(
        self,
        folders: Sequence[PathLike],
        query_file: PathLike,
        timeout: Optional[float] = None,
    ) -> QuerySetup:
        return self._metadata.resolve_library_path(folders, query_file, timeout=timeout)

    def resolve_database(
        self, database_path: PathLike, timeout: Optional[float] = None
    ) -> DatabaseInfo:
        return self._metadata.resolve_database(database_path, timeout=timeout)

    def close(self) -> None:
        """Stop the engine. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._channel is not None:
            self._channel.close()

    def __enter__(self) -> "CliServer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
