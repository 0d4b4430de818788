"""Engine version discovery and compatibility checks."""

from __future__ import annotations

import threading
from typing import Any, List, Optional

from qlserver.core.logging import get_logger
from qlserver.core.models import EngineVersion, VersionRange, VersionRangeLike
from qlserver.engine.channel import ProcessChannel
from qlserver.errors import EngineCrashed, EngineUnavailable, MalformedOutput

LOGGER = get_logger(__name__)

VERSION_COMMAND = ["version"]
VERSION_ARGS = ["--format=json"]


def parse_version_output(output: Any, command: Optional[List[str]] = None) -> EngineVersion:
    """Decode ``version --format=json`` output.

    The engine reports an object with a ``version`` field; a bare version
    string is accepted as well.

    Raises:
        MalformedOutput: If no semantic version can be read.
    """
    if isinstance(output, dict):
        text = output.get("version")
    else:
        text = output

    if not isinstance(text, str):
        raise MalformedOutput(
            "Engine version output has no 'version' string",
            command,
            raw_output=repr(output),
        )
    try:
        return EngineVersion.parse(text)
    except ValueError as e:
        raise MalformedOutput(str(e), command, raw_output=repr(output)) from e


class VersionGate:
    """Reads the engine version once and answers compatibility questions.

    A mismatch is never an error here; callers decide what to do with the
    answer of ``check_compatible``.
    """

    def __init__(self, channel: ProcessChannel) -> None:
        self._channel = channel
        self._version: Optional[EngineVersion] = None
        self._lock = threading.Lock()

    def get_version(self) -> EngineVersion:
        """Return the engine version, querying the engine on first use.

        Raises:
            EngineUnavailable: If the engine cannot be started or does not
                respond to the version query.
            MalformedOutput: If the version output cannot be parsed.
        """
        with self._lock:
            if self._version is None:
                command = VERSION_COMMAND + VERSION_ARGS
                try:
                    output = self._channel.invoke(VERSION_COMMAND, VERSION_ARGS)
                except EngineCrashed as e:
                    raise EngineUnavailable(
                        f"Engine did not respond to the version query: {e.message}",
                        command,
                    ) from e
                self._version = parse_version_output(output, command)
                LOGGER.info(f"Engine version {self._version}")
            return self._version

    def check_compatible(self, required: VersionRangeLike) -> bool:
        """Check whether the engine version lies in ``required``.

        Raises:
            InvalidConfiguration: If ``required`` is not a valid range.
            EngineUnavailable: See ``get_version``.
        """
        if not isinstance(required, VersionRange):
            required = VersionRange.parse(required)
        version = self.get_version()
        compatible = required.contains(version)
        if not compatible:
            LOGGER.debug(f"Engine version {version} is outside '{required}'")
        return compatible
