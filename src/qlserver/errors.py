"""Error taxonomy for the CLI server.

Every error raised by qlserver derives from CliServerError. Errors that
relate to a specific engine invocation carry the argument list that was
sent, so a failure can be traced back to the command that caused it.
"""

from __future__ import annotations

from typing import Optional, Sequence


class CliServerError(Exception):
    """Base class for all CLI server errors."""

    def __init__(self, message: str, command: Optional[Sequence[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.command = list(command) if command is not None else None

    def __str__(self) -> str:
        if self.command:
            return f"{self.message} (command: {' '.join(self.command)})"
        return self.message


class InvalidConfiguration(CliServerError):
    """Caller input or configuration was rejected before reaching the engine."""


class EngineUnavailable(CliServerError):
    """The engine executable is missing, cannot be started, or the channel is closed."""


class EngineCrashed(CliServerError):
    """The engine process exited (or was killed) while a command was in flight."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message, command)
        self.exit_code = exit_code
        self.stderr = stderr

    def __str__(self) -> str:
        text = super().__str__()
        if self.exit_code is not None:
            text += f" [exit code {self.exit_code}]"
        if self.stderr:
            text += f"\nengine stderr:\n{self.stderr}"
        return text


class EngineTimeout(EngineCrashed):
    """A command outlived its deadline; the process was killed."""


class MalformedOutput(CliServerError):
    """The engine's response could not be decoded into the expected shape."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        raw_output: str = "",
    ) -> None:
        super().__init__(message, command)
        self.raw_output = raw_output

    def __str__(self) -> str:
        text = super().__str__()
        if self.raw_output:
            text += f"\nraw output:\n{self.raw_output}"
        return text


class ChannelBusy(CliServerError):
    """The caller's deadline expired while waiting for its turn on the channel."""


class IncompatibleEngineVersion(CliServerError):
    """The engine version does not satisfy the required range."""

    def __init__(self, actual: object, required: object) -> None:
        super().__init__(f"Engine version {actual} does not satisfy required range '{required}'")
        self.actual = actual
        self.required = required
