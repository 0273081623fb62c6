"""Module that starts, watches and stops the sshfs_server process for a mount."""

import contextlib
import ctypes
from dataclasses import dataclass, field
from enum import auto, Enum
import os
import signal
import subprocess
import sys
import threading
from typing import Any, Callable, Dict, IO, List, Optional, Tuple

import sshmount.constants as constants
from sshmount.logger import log, summarize
from sshmount.vm import IdMapping
from .events import Event, EventQueue, UnexpectedEvent


@dataclass(frozen=True)
class SSHFSServerConfig:
    """Everything sshfs_server needs to know to service a mount."""

    host: str
    port: int
    username: str
    instance: str
    private_key: str = field(repr=False)
    source_path: str
    target_path: str
    uid_mappings: Tuple[IdMapping, ...] = ()
    gid_mappings: Tuple[IdMapping, ...] = ()
    log_level: int = 0

    def arguments(self) -> List[str]:
        """Compose the command-line arguments for sshfs_server."""
        return [
            self.host,
            str(self.port),
            self.username,
            self.source_path,
            self.target_path,
            self._format_mappings(self.uid_mappings),
            self._format_mappings(self.gid_mappings),
            str(self.log_level),
        ]

    def environment(self) -> Dict[str, str]:
        """
        Compose the environment for sshfs_server.

        The private key is passed through the environment to keep it out of the process
        list.
        """
        env = dict(os.environ)
        env["KEY"] = self.private_key
        return env

    @staticmethod
    def _format_mappings(mappings: Tuple[IdMapping, ...]) -> str:
        return "".join(f"{mapping}," for mapping in mappings)


class ProcessErrorKind(Enum):
    """Ways in which a process can fail besides exiting with a non-zero code."""

    FAILED_TO_START = auto()
    CRASHED = auto()


@dataclass(frozen=True)
class ProcessError:
    """Description of a process that could not start or was killed."""

    kind: ProcessErrorKind
    message: str


@dataclass(frozen=True)
class ProcessState:
    """
    Final state of a process.

    A process that is still running has neither an exit code nor an error. A process
    that was killed by the signal that stop() sent is considered terminated rather than
    crashed.
    """

    exit_code: Optional[int] = None
    error: Optional[ProcessError] = None
    terminated: bool = False

    def completed_successfully(self) -> bool:
        return self.error is None and (self.exit_code == 0 or self.terminated)

    def failure_message(self) -> str:
        if self.error is not None:
            return self.error.message
        elif self.exit_code:
            return f"process returned exit code: {self.exit_code}"
        else:
            return ""


@dataclass(frozen=True)
class ReadinessOutcome:
    """Result of waiting for sshfs_server to connect."""

    connected: bool
    state: Optional[ProcessState] = None


class SSHFSServerProcess:
    """
    The sshfs_server process servicing a single mount.

    sshfs_server SSHes into the instance, starts sshfs there and serves the host
    directory over the SSH channel. It prints a token on stdout once the mount is up.
    Three threads are started per process: one skims stdout for that token, one
    collects stderr for error reporting and one waits for the process to exit.
    """

    def __init__(
        self, config: SSHFSServerConfig, program: str = constants.SSHFS_SERVER_PROGRAM
    ):
        """Prepare the process with the given configuration without starting it."""
        self._config = config
        self._program = program

        self._proc: Optional[subprocess.Popen] = None
        self._events = EventQueue()

        self._output_lock = threading.Lock()
        self._stdout = bytearray()
        self._stderr = bytearray()

        # Output that has been scanned for the ready token so far
        self._token_search: Optional[bytearray] = bytearray()

        self._state: Optional[ProcessState] = None
        self._exited = threading.Event()
        self._stop_requested = False

        self._finished_callbacks: List[Callable[[ProcessState], Any]] = []
        self._error_callbacks: List[Callable[[ProcessError], Any]] = []

    @property
    def program(self) -> str:
        return self._program

    def arguments(self) -> List[str]:
        return self._config.arguments()

    def on_finished(self, callback: Callable[[ProcessState], Any]) -> None:
        """Register a callback that is invoked with the final state of the process."""
        self._finished_callbacks.append(callback)

    def on_error(self, callback: Callable[[ProcessError], Any]) -> None:
        """Register a callback that is invoked if the process fails to run."""
        self._error_callbacks.append(callback)

    def running(self) -> bool:
        return self._proc is not None and not self._exited.is_set()

    def process_state(self) -> ProcessState:
        """Get the final state, or an empty state if the process is still running."""
        if self._state is not None:
            return self._state
        else:
            return ProcessState()

    def start(self) -> None:
        """Start sshfs_server and the threads that watch it."""
        if self._proc is not None or self._exited.is_set():
            raise RuntimeError("sshfs_server was already started")

        try:
            self._proc = subprocess.Popen(
                [self._program] + self.arguments(),
                env=self._config.environment(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                preexec_fn=_set_death_signal if sys.platform == "linux" else None,
            )
        except (OSError, subprocess.SubprocessError) as e:
            error = ProcessError(
                ProcessErrorKind.FAILED_TO_START,
                f"failed to start {self._program}: {e}",
            )
            self._report_exit(ProcessState(error=error), error)
            return

        stdout_thread = _start_thread(self._watch_stdout, self._proc.stdout)
        stderr_thread = _start_thread(self._collect_stderr, self._proc.stderr)
        _start_thread(self._watch_exit, self._proc, [stdout_thread, stderr_thread])

    def wait_until_connected(self) -> ReadinessOutcome:
        """
        Block until sshfs_server reports that it is connected or exits.

        There is no timeout. sshfs_server gives up by itself if the instance can't be
        reached.
        """
        try:
            self._events.expect(Event.SERVER_CONNECTED)
            return ReadinessOutcome(connected=True)
        except UnexpectedEvent as e:
            if e.actual_event == Event.PROCESS_EXIT:
                return ReadinessOutcome(connected=False, state=e.actual_value)
            else:
                raise e
        finally:
            self._events.close()

    def start_and_block_until_connected(self) -> ReadinessOutcome:
        """Start sshfs_server and wait until it's connected or has exited."""
        self.start()
        return self.wait_until_connected()

    def terminate(self, timeout: int) -> bool:
        """
        Ask sshfs_server to exit and wait up to timeout milliseconds for it to do so.

        Returns whether the process is no longer running.
        """
        if not self.running():
            return True

        assert self._proc is not None

        self._stop_requested = True
        _ignore_process_error(self._proc.terminate)()

        return self._exited.wait(timeout / 1000)

    def kill(self) -> None:
        """Forcefully stop sshfs_server."""
        if self.running():
            assert self._proc is not None

            self._stop_requested = True
            _ignore_process_error(self._proc.kill)()

    def read_all_standard_output(self) -> str:
        """Take the recent stdout collected since the last call."""
        with self._output_lock:
            data = bytes(self._stdout)
            self._stdout.clear()

        return data.decode(errors="replace")

    def read_all_standard_error(self) -> str:
        """Take the recent stderr collected since the last call."""
        with self._output_lock:
            data = bytes(self._stderr)
            self._stderr.clear()

        return data.decode(errors="replace")

    def _watch_stdout(self, stream: IO[bytes]) -> None:
        """Collect stdout and signal the first appearance of the ready token."""
        try:
            fd = stream.fileno()

            while True:
                chunk = os.read(fd, 1024)

                if len(chunk) == 0:
                    # End of stream
                    break

                log.debug(f"sshfs_server stdout: {summarize(chunk)}")

                with self._output_lock:
                    _append_bounded(self._stdout, chunk)
                    connected = self._search_token(chunk)

                if connected:
                    self._events.notify(Event.SERVER_CONNECTED)
        except Exception as e:
            self._events.exception(f"failed to read sshfs_server output: {e}")
        finally:
            stream.close()

    def _search_token(self, chunk: bytes) -> bool:
        """Check if the token appears in the output seen so far, only once."""
        if self._token_search is None:
            return False

        self._token_search += chunk

        if constants.SSHFS_SERVER_READY_TOKEN in self._token_search:
            self._token_search = None
            return True
        else:
            # Only a partial token can carry over into the next chunk
            del self._token_search[: -(len(constants.SSHFS_SERVER_READY_TOKEN) - 1)]
            return False

    def _collect_stderr(self, stream: IO[bytes]) -> None:
        """Collect stderr so that it can be included in error messages."""
        try:
            fd = stream.fileno()

            while True:
                chunk = os.read(fd, 1024)

                if len(chunk) == 0:
                    break

                with self._output_lock:
                    _append_bounded(self._stderr, chunk)
        finally:
            stream.close()

    def _watch_exit(
        self, proc: subprocess.Popen, stream_threads: List[threading.Thread]
    ) -> None:
        """Wait for the process to exit and report its final state."""
        try:
            returncode = proc.wait()

            error: Optional[ProcessError] = None

            if returncode >= 0:
                state = ProcessState(exit_code=returncode)
            elif self._stop_requested and -returncode in (
                signal.SIGTERM,
                signal.SIGKILL,
            ):
                state = ProcessState(terminated=True)
            else:
                error = ProcessError(
                    ProcessErrorKind.CRASHED,
                    f"process was killed by signal {-returncode}",
                )
                state = ProcessState(error=error)

            # The process is gone even if a child still holds its output pipes open
            self._state = state
            self._exited.set()

            # Make sure that all output has been collected before reporting the exit
            for t in stream_threads:
                t.join(timeout=5.0)

            self._report_exit(state, error)
        except Exception as e:
            self._events.exception(f"failed to watch sshfs_server: {e}")

    def _report_exit(
        self, state: ProcessState, error: Optional[ProcessError] = None
    ) -> None:
        """Record the final state and notify observers and the waiting thread."""
        self._state = state
        self._exited.set()

        if error is not None:
            for error_callback in self._error_callbacks:
                error_callback(error)

        for finished_callback in self._finished_callbacks:
            finished_callback(state)

        self._events.notify(Event.PROCESS_EXIT, state)


def _append_bounded(buffer: bytearray, chunk: bytes) -> None:
    """Append output to a buffer that only keeps the most recent bytes."""
    buffer.extend(chunk)

    excess = len(buffer) - constants.OUTPUT_BUFFER_SIZE

    if excess > 0:
        del buffer[:excess]


def _start_thread(target: Callable[..., None], *args: Any) -> threading.Thread:
    """
    Start a thread with the specified function.

    It is made a daemon in case the thread fails to exit properly and blocks the
    shutting down of the program.
    """
    t = threading.Thread(target=target, args=args, daemon=True)
    t.start()
    return t


_libc = ctypes.CDLL(None) if sys.platform == "linux" else None


# https://stackoverflow.com/a/19448096/238180
def _set_death_signal() -> None:
    """Make sshfs_server receive SIGTERM when sshmount dies."""
    assert _libc is not None

    # https://github.com/torvalds/linux/blob/master/include/uapi/linux/prctl.h#L9
    PR_SET_PDEATHSIG = 1

    _libc.prctl(PR_SET_PDEATHSIG, signal.SIGTERM)


def _ignore_process_error(call: Callable[[], Any]) -> Callable[[], None]:
    """
    Workaround for race condition in Popen.terminate/Popen.kill.

    https://bugs.python.org/issue40550
    """

    def wrapper() -> None:
        with contextlib.suppress(ProcessLookupError):
            call()

    return wrapper
