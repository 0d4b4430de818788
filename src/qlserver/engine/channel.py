"""Long-lived engine process with a serialized request channel.

The engine runs in cli-server mode: it reads NUL-terminated JSON argument
arrays on stdin and answers each one with the command's stdout followed by
a NUL byte. Stderr carries progress and diagnostics, which are forwarded to
the logger and kept in a short tail for error reports.

At most one command is in flight at any time. Callers queue in arrival
order, and a command that was sent can only end with a response, a crash
or a timeout (which is handled as a crash).
"""

from __future__ import annotations

import json
import os
import queue
import subprocess
import threading
import time
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Union

from qlserver.core.logging import get_engine_stderr_logger, get_logger
from qlserver.engine.paths import find_engine_executable
from qlserver.errors import (
    ChannelBusy,
    EngineCrashed,
    EngineTimeout,
    EngineUnavailable,
    InvalidConfiguration,
    MalformedOutput,
)

LOGGER = get_logger(__name__)

# Arguments that put the engine into its long-lived server mode
DEFAULT_SERVER_ARGS = ("execute", "cli-server")

# Request asking the server to exit on its own
SHUTDOWN_COMMAND = ["shutdown"]

# Seconds to wait for a graceful exit before terminating
DEFAULT_SHUTDOWN_GRACE = 5.0

# Seconds to wait after terminate/kill
_KILL_WAIT = 2.0

# Number of stderr lines kept for diagnostics
STDERR_TAIL_LINES = 50

_READ_CHUNK = 65536
_EOF = object()

PathLike = Union[str, Path]


class ChannelState(str, Enum):
    """Lifecycle of the engine process behind a channel."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    CRASHED = "crashed"
    CLOSED = "closed"


class FifoLock:
    """Mutual exclusion lock that admits waiters in arrival order.

    ``threading.Lock`` makes no fairness promise; this lock hands ownership
    to the longest-waiting thread. A waiter whose timeout expires leaves the
    queue without affecting the others.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._waiters: Deque[object] = deque()
        self._locked = False

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """Wait for the lock.

        Args:
            timeout: Seconds to wait, or None to wait forever.

        Returns:
            True if the lock was acquired, False if the timeout expired.
        """
        with self._cond:
            if not self._locked and not self._waiters:
                self._locked = True
                return True

            ticket = object()
            self._waiters.append(ticket)
            deadline = None if timeout is None else time.monotonic() + timeout
            try:
                while self._locked or self._waiters[0] is not ticket:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        self._waiters.remove(ticket)
                        self._cond.notify_all()
                        return False
                    self._cond.wait(remaining)
            except BaseException:
                if ticket in self._waiters:
                    self._waiters.remove(ticket)
                    self._cond.notify_all()
                raise

            self._waiters.popleft()
            self._locked = True
            return True

    def release(self) -> None:
        with self._cond:
            if not self._locked:
                raise RuntimeError("release of an unlocked FifoLock")
            self._locked = False
            self._cond.notify_all()

    def locked(self) -> bool:
        with self._cond:
            return self._locked

    @property
    def waiting(self) -> int:
        """Number of threads queued for the lock."""
        with self._cond:
            return len(self._waiters)

    def __enter__(self) -> "FifoLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


class _EngineProcess:
    """One running engine and its output reader threads."""

    def __init__(
        self,
        argv: List[str],
        cwd: Optional[PathLike] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.argv = argv
        self.responses: "queue.Queue[Any]" = queue.Queue()
        self._stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_lock = threading.Lock()
        self._write_lock = threading.Lock()

        self._popen = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
        )
        self.pid = self._popen.pid

        self._stdout_thread = threading.Thread(
            target=self._read_stdout,
            name=f"engine-stdout-{self.pid}",
            daemon=True,
        )
        self._stderr_thread = threading.Thread(
            target=self._read_stderr,
            name=f"engine-stderr-{self.pid}",
            daemon=True,
        )
        self._stdout_thread.start()
        self._stderr_thread.start()

    def _read_stdout(self) -> None:
        """Split stdout on NUL bytes and queue each complete response."""
        stdout = self._popen.stdout
        assert stdout is not None
        buffer = bytearray()
        try:
            while True:
                chunk = stdout.read1(_READ_CHUNK)
                if not chunk:
                    break
                buffer.extend(chunk)
                while True:
                    end = buffer.find(b"\0")
                    if end < 0:
                        break
                    self.responses.put(bytes(buffer[:end]))
                    del buffer[: end + 1]
        except (OSError, ValueError) as e:
            LOGGER.debug(f"Engine {self.pid} stdout reader stopped: {e}")
        finally:
            if buffer:
                LOGGER.debug(f"Engine {self.pid} left {len(buffer)} unterminated byte(s) on stdout")
            self.responses.put(_EOF)

    def _read_stderr(self) -> None:
        stderr = self._popen.stderr
        assert stderr is not None
        engine_log = get_engine_stderr_logger(self.pid)
        try:
            for raw in stderr:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                with self._stderr_lock:
                    self._stderr_tail.append(line)
                engine_log.debug(line)
        except (OSError, ValueError) as e:
            LOGGER.debug(f"Engine {self.pid} stderr reader stopped: {e}")

    def stderr_text(self) -> str:
        with self._stderr_lock:
            return "\n".join(self._stderr_tail)

    def exit_code(self) -> Optional[int]:
        return self._popen.poll()

    def send(self, argv: Sequence[str]) -> None:
        """Write one request frame.

        Raises:
            OSError: If the pipe is closed (BrokenPipeError when the engine died).
        """
        stdin = self._popen.stdin
        if stdin is None or stdin.closed:
            raise BrokenPipeError("engine stdin is closed")
        payload = json.dumps(list(argv)).encode("utf-8") + b"\0"
        with self._write_lock:
            stdin.write(payload)
            stdin.flush()

    def kill(self) -> None:
        """Kill the process if needed and reap it."""
        if self._popen.poll() is None:
            self._popen.kill()
        try:
            self._popen.wait(timeout=_KILL_WAIT)
        except subprocess.TimeoutExpired:
            LOGGER.warning(f"Engine {self.pid} did not exit after kill")
        self._release_pipes()

    def shutdown(self, grace: float, request: bool = True) -> None:
        """Stop the process: shutdown request, then terminate, then kill.

        Args:
            grace: Seconds to wait for a voluntary exit.
            request: Whether to send the shutdown request first. Only safe
                when no other command is being written.
        """
        if self._popen.poll() is None:
            if request:
                try:
                    self.send(SHUTDOWN_COMMAND)
                except OSError as e:
                    LOGGER.debug(f"Could not send shutdown to engine {self.pid}: {e}")
            self._close_stdin()
            try:
                self._popen.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                LOGGER.warning(f"Engine {self.pid} did not exit within {grace}s; terminating")
                self._popen.terminate()
                try:
                    self._popen.wait(timeout=_KILL_WAIT)
                except subprocess.TimeoutExpired:
                    LOGGER.warning(f"Engine {self.pid} ignored terminate; killing")
                    self._popen.kill()
                    self._popen.wait()
        self._release_pipes()
        LOGGER.info(f"Engine {self.pid} stopped with exit code {self._popen.returncode}")

    def _close_stdin(self) -> None:
        stdin = self._popen.stdin
        if stdin is None or stdin.closed:
            return
        try:
            with self._write_lock:
                stdin.close()
        except OSError as e:
            LOGGER.debug(f"Closing engine {self.pid} stdin failed: {e}")

    def _release_pipes(self) -> None:
        self._close_stdin()
        # Readers see EOF once the process is gone.
        self._stdout_thread.join(timeout=1)
        self._stderr_thread.join(timeout=1)
        for stream in (self._popen.stdout, self._popen.stderr):
            if stream is not None and not stream.closed:
                stream.close()


class ProcessChannel:
    """Owns the engine process and serializes commands to it.

    The process is started on first use and restarted transparently after
    a crash. The raw process is never handed out; ``invoke`` is the only
    way to talk to it.
    """

    def __init__(
        self,
        executable: Optional[PathLike] = None,
        *,
        server_args: Sequence[str] = DEFAULT_SERVER_ARGS,
        extra_args: Sequence[str] = (),
        heap_flags: Sequence[str] = (),
        log_dir: Optional[PathLike] = None,
        default_timeout: Optional[float] = None,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
        cwd: Optional[PathLike] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Initialize the channel without starting the engine.

        Args:
            executable: Engine executable; discovered on first start when None.
            server_args: Arguments selecting the engine's server mode.
            extra_args: Additional arguments for the server process.
            heap_flags: Flags appended to every command (see resolve_ram).
            log_dir: Directory for the engine's own log files.
            default_timeout: Deadline in seconds for calls that pass none.
            shutdown_grace: Seconds close() waits for a voluntary exit.
            cwd: Working directory for the engine process.
            env: Environment for the engine process (inherited when None).
        """
        if default_timeout is not None and default_timeout <= 0:
            raise InvalidConfiguration(f"Timeout must be positive, got {default_timeout}")
        if shutdown_grace < 0:
            raise InvalidConfiguration(f"Shutdown grace must not be negative, got {shutdown_grace}")

        self._executable = executable
        self._server_args = [str(arg) for arg in server_args]
        self._extra_args = [str(arg) for arg in extra_args]
        self._heap_flags = [str(flag) for flag in heap_flags]
        self._log_dir = log_dir
        self._default_timeout = default_timeout
        self._shutdown_grace = shutdown_grace
        self._cwd = cwd
        self._env = env

        self._queue = FifoLock()
        # Guards _state and _process; nothing else mutates them.
        self._state_lock = threading.Lock()
        self._state = ChannelState.NOT_STARTED
        self._process: Optional[_EngineProcess] = None
        self._spawn_count = 0

    @property
    def state(self) -> ChannelState:
        with self._state_lock:
            return self._state

    @property
    def pid(self) -> Optional[int]:
        """PID of the running engine, if any."""
        with self._state_lock:
            return self._process.pid if self._process is not None else None

    @property
    def restart_count(self) -> int:
        """Number of times the engine was started again after the first start."""
        with self._state_lock:
            return max(0, self._spawn_count - 1)

    @property
    def heap_flags(self) -> List[str]:
        return list(self._heap_flags)

    def invoke(
        self,
        command: Sequence[str],
        args: Sequence[Union[str, "os.PathLike[str]"]] = (),
        timeout: Optional[float] = None,
    ) -> Any:
        """Run one engine command and return its decoded JSON output.

        Args:
            command: Subcommand words, e.g. ``["resolve", "languages"]``.
            args: Command arguments.
            timeout: Deadline in seconds covering both queueing and the
                command itself. Falls back to the channel default.

        Returns:
            The JSON value the engine printed.

        Raises:
            InvalidConfiguration: If an argument is not a string or path.
            ChannelBusy: If the deadline expired before the command was sent.
            EngineUnavailable: If the engine cannot be started or the
                channel is closed.
            EngineCrashed: If the engine died while running the command.
            EngineTimeout: If the command outlived the deadline.
            MalformedOutput: If the output is not valid JSON.
        """
        argv = self._build_argv(command, args)
        if timeout is None:
            timeout = self._default_timeout
        elif timeout <= 0:
            raise InvalidConfiguration(f"Timeout must be positive, got {timeout}", argv)
        deadline = None if timeout is None else time.monotonic() + timeout

        if not self._queue.acquire(timeout=timeout):
            raise ChannelBusy(f"Timed out after {timeout}s waiting for the engine channel", argv)
        try:
            process = self._ensure_running(argv)
            raw = self._exchange(process, argv, deadline, timeout)
            stderr = process.stderr_text()
        finally:
            self._queue.release()

        return self._decode(raw, argv, stderr)

    def _build_argv(self, command: Sequence[str], args: Sequence[Any]) -> List[str]:
        if isinstance(command, str) or isinstance(args, str):
            raise InvalidConfiguration("Command and arguments must be sequences of strings, not a string")
        argv: List[str] = []
        for item in [*command, *args]:
            if isinstance(item, str):
                argv.append(item)
            elif isinstance(item, os.PathLike):
                argv.append(os.fspath(item))
            else:
                raise InvalidConfiguration(
                    f"Engine arguments must be strings or paths, got {type(item).__name__}: {item!r}"
                )
        if not command:
            raise InvalidConfiguration("Engine command must not be empty")
        return argv + self._heap_flags

    def _launch_argv(self) -> List[str]:
        executable = find_engine_executable(self._executable)
        argv = [str(executable), *self._server_args, *self._extra_args]
        if self._log_dir is not None:
            argv.extend(["--logdir", str(self._log_dir)])
        return argv

    def _ensure_running(self, argv: List[str]) -> _EngineProcess:
        with self._state_lock:
            if self._state is ChannelState.CLOSED:
                raise EngineUnavailable("Engine channel is closed", argv)

            if self._process is not None and self._process.exit_code() is not None:
                LOGGER.warning(
                    f"Engine {self._process.pid} exited with code "
                    f"{self._process.exit_code()} while idle; restarting"
                )
                stale = self._process
                self._process = None
                self._state = ChannelState.CRASHED
                stale.kill()
                self._state = ChannelState.NOT_STARTED

            if self._process is None:
                launch = self._launch_argv()
                try:
                    self._process = _EngineProcess(launch, cwd=self._cwd, env=self._env)
                except OSError as e:
                    raise EngineUnavailable(f"Failed to start engine: {e}", launch) from e
                self._spawn_count += 1
                self._state = ChannelState.RUNNING
                if self._spawn_count > 1:
                    LOGGER.warning(f"Restarted engine (pid {self._process.pid})")
                else:
                    LOGGER.info(f"Started engine (pid {self._process.pid}): {' '.join(launch)}")

            return self._process

    def _exchange(
        self,
        process: _EngineProcess,
        argv: List[str],
        deadline: Optional[float],
        timeout: Optional[float],
    ) -> bytes:
        LOGGER.debug(f"Running engine command: {' '.join(argv)}")
        try:
            process.send(argv)
        except OSError as e:
            self._discard(process)
            raise EngineCrashed(
                f"Engine exited before the command could be sent: {e}",
                argv,
                exit_code=process.exit_code(),
                stderr=process.stderr_text(),
            ) from e

        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        try:
            item = process.responses.get(timeout=remaining)
        except queue.Empty:
            LOGGER.warning(f"Engine {process.pid} did not answer within {timeout}s; killing it")
            self._discard(process)
            raise EngineTimeout(
                f"Engine did not respond within {timeout}s",
                argv,
                stderr=process.stderr_text(),
            ) from None

        if item is _EOF:
            self._discard(process)
            LOGGER.warning(f"Engine {process.pid} exited with code {process.exit_code()} mid-command")
            raise EngineCrashed(
                "Engine exited while running the command",
                argv,
                exit_code=process.exit_code(),
                stderr=process.stderr_text(),
            )
        return item

    def _discard(self, process: _EngineProcess) -> None:
        """Kill a failed process; the next invoke starts a fresh one."""
        with self._state_lock:
            owned = self._process is process
            if owned:
                self._process = None
                self._state = ChannelState.CRASHED
        process.kill()
        with self._state_lock:
            if owned and self._state is ChannelState.CRASHED:
                self._state = ChannelState.NOT_STARTED

    @staticmethod
    def _decode(raw: bytes, argv: List[str], stderr: str) -> Any:
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedOutput(
                "Engine output is not valid UTF-8",
                argv,
                raw_output=raw.decode("utf-8", errors="replace"),
            ) from e

        if not text.strip():
            message = "Engine returned no output"
            if stderr:
                message += f"; engine stderr:\n{stderr}"
            raise MalformedOutput(message, argv)

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedOutput(f"Engine output is not valid JSON: {e}", argv, raw_output=text) from e

    def close(self, grace: Optional[float] = None) -> None:
        """Stop the engine and refuse further commands. Idempotent.

        Waits up to ``grace`` seconds for an in-flight command to finish so
        the shutdown request is not interleaved with it; otherwise the
        process is terminated without the request.
        """
        grace = self._shutdown_grace if grace is None else grace
        idle = self._queue.acquire(timeout=grace)
        try:
            with self._state_lock:
                if self._state is ChannelState.CLOSED:
                    return
                process, self._process = self._process, None
                self._state = ChannelState.CLOSED
            if process is not None:
                LOGGER.info(f"Shutting down engine (pid {process.pid})")
                process.shutdown(grace, request=idle)
        finally:
            if idle:
                self._queue.release()

    def __enter__(self) -> "ProcessChannel":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def describe(self) -> Dict[str, Any]:
        """Snapshot of the channel for status output."""
        with self._state_lock:
            return {
                "state": self._state.value,
                "pid": self._process.pid if self._process is not None else None,
                "restarts": max(0, self._spawn_count - 1),
                "queued": self._queue.waiting,
            }
