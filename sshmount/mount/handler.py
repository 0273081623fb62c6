"""Module implementing the lifecycle of a mount into an instance."""

from abc import ABC
from enum import auto, Enum
from typing import Any, Callable, Optional

from sshmount.config import Config
import sshmount.constants as constants
from sshmount.errors import (
    InvalidMountStateError,
    MountError,
    MountProcessError,
    SSHFSMissingError,
    TerminationTimeoutError,
)
from sshmount.logger import log, server_log_level
from sshmount.ssh import SSHKeyProvider, SSHSession
from sshmount.vm import MountSpec, VirtualMachine
from .process import ProcessError, ProcessState, SSHFSServerConfig, SSHFSServerProcess
from .provision import has_sshfs, install_sshfs

# Receives human-readable progress messages while a mount is being started
ProgressSink = Callable[[str], Any]


def _no_progress(message: str) -> None:
    pass


class MountState(Enum):
    """Stages in the life of a mount handler."""

    CONSTRUCTED = auto()
    STARTING = auto()
    RUNNING = auto()
    STOPPING = auto()
    STOPPED = auto()


class MountHandler(ABC):
    """
    Base class for handlers that service a single mount.

    A handler is started at most once. Once it is stopped, or failed to start, a new
    handler has to be created to mount again. Use it as a context manager, or call
    close() when done with it, to make sure that the mount is stopped on every path.
    """

    def __init__(
        self, vm: VirtualMachine, key_provider: SSHKeyProvider, mount: MountSpec
    ):
        """Construct the handler for a mount into the given instance."""
        self._vm = vm
        self._key_provider = key_provider
        self._mount = mount

        self._state = MountState.CONSTRUCTED
        self._closed = False

    @property
    def state(self) -> MountState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state == MountState.RUNNING

    @property
    def target(self) -> str:
        return self._mount.target_path

    def __enter__(self) -> "MountHandler":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def start(
        self,
        progress: Optional[ProgressSink] = None,
        timeout: int = constants.DEFAULT_MOUNT_TIMEOUT,
    ) -> None:
        """
        Start servicing the mount and return once it is up.

        Progress messages are passed to the progress sink, if any. The timeout in
        milliseconds applies to installing mount support in the instance.
        """
        if self._state != MountState.CONSTRUCTED:
            raise InvalidMountStateError(
                f'cannot start mount "{self.target}" in instance '
                f"'{self._vm.vm_name}' that is {self._state.name.lower()}"
            )

        self._state = MountState.STARTING

        try:
            self._start(progress or _no_progress, timeout)
        except MountError as e:
            self._state = MountState.STOPPED

            e.instance = e.instance or self._vm.vm_name
            e.target = e.target or self.target

            raise e
        except BaseException:
            self._state = MountState.STOPPED
            raise

        self._state = MountState.RUNNING

    def stop(self, force: bool = False) -> None:
        """
        Stop servicing the mount.

        Does nothing if the mount is not running. If force is set then failing to stop
        is only logged.
        """
        if self._state != MountState.RUNNING:
            return

        self._state = MountState.STOPPING

        try:
            self._stop(force)
        finally:
            self._state = MountState.STOPPED

    def close(self) -> None:
        """
        Stop the mount if it is still running and release the handler.

        Never raises since there is nobody left to handle the failure, so it is logged
        instead. Calling it more than once has no effect.
        """
        if self._closed:
            return

        self._closed = True

        try:
            self.stop()
        except Exception as e:
            log.warning(
                f'failed to gracefully stop mount "{self.target}" in instance '
                f"'{self._vm.vm_name}': {e}"
            )

    def _start(self, progress: ProgressSink, timeout: int) -> None:
        """Do the actual work of starting the mount."""
        raise NotImplementedError()

    def _stop(self, force: bool) -> None:
        """Do the actual work of stopping the mount."""
        raise NotImplementedError()


class SSHFSMountHandler(MountHandler):
    """Handler that services a mount with sshfs_server."""

    def __init__(
        self,
        vm: VirtualMachine,
        key_provider: SSHKeyProvider,
        mount: MountSpec,
        config: Optional[Config] = None,
    ):
        """Construct the handler for a mount into the given instance."""
        super().__init__(vm, key_provider, mount)

        self._config = config or Config()
        self._process: Optional[SSHFSServerProcess] = None

        log.info(
            f"initializing mount {mount.source_path} => {mount.target_path} in "
            f"'{vm.vm_name}'"
        )

    def _start(self, progress: ProgressSink, timeout: int) -> None:
        """Ensure that sshfs is available in the instance and start sshfs_server."""
        name = self._vm.vm_name

        # Can't obtain hostname/IP address until the instance is running
        host = self._vm.ssh_hostname()

        with SSHSession(
            host,
            self._vm.ssh_port(),
            self._vm.ssh_username(),
            self._key_provider,
            self._config.ssh,
        ) as session:
            if not has_sshfs(name, session):
                progress("Enabling support for mounting")
                install_sshfs(name, session, timeout)

        config = SSHFSServerConfig(
            host=host,
            port=self._vm.ssh_port(),
            username=self._vm.ssh_username(),
            instance=name,
            private_key=self._key_provider.private_key_as_base64(),
            source_path=self._mount.source_path,
            target_path=self._mount.target_path,
            uid_mappings=self._mount.uid_mappings,
            gid_mappings=self._mount.gid_mappings,
            log_level=server_log_level(log),
        )

        process = SSHFSServerProcess(config, self._config.mount.server_program)
        process.on_finished(self._log_finished)
        process.on_error(self._log_error)

        log.info(f"process program '{process.program}'")
        log.info(f"process arguments '{', '.join(process.arguments())}'")

        self._process = process

        try:
            outcome = process.start_and_block_until_connected()
        except BaseException:
            process.kill()
            self._process = None
            raise

        if outcome.connected:
            return

        # sshfs_server stopped before connecting, usually due to an error
        self._process = None
        state = outcome.state or process.process_state()

        if state.exit_code == constants.SSHFS_MISSING_EXIT_CODE:
            raise SSHFSMissingError()

        stderr = process.read_all_standard_error()
        message = state.failure_message() or "sshfs_server exited before connecting"

        raise MountProcessError(f"{message}: {stderr}", stderr=stderr)

    def _stop(self, force: bool) -> None:
        """Terminate sshfs_server and wait for it to exit."""
        log.info(f'stopping mount "{self.target}" in instance \'{self._vm.vm_name}\'')

        process = self._process
        self._process = None

        if process is None or process.terminate(constants.STOP_TIMEOUT):
            return

        stderr = process.read_all_standard_error()

        # Don't leave an unresponsive process behind
        process.kill()

        message = f"failed to terminate SSHFS mount process: {stderr}"

        if force:
            log.warning(message)
        else:
            raise TerminationTimeoutError(
                message, stderr, instance=self._vm.vm_name, target=self.target
            )

    def _log_finished(self, state: ProcessState) -> None:
        if state.completed_successfully():
            log.info(
                f'mount "{self.target}" in instance \'{self._vm.vm_name}\' has stopped'
            )
        else:
            # Not an error since it can indicate that sshfs needs to be installed
            log.warning(
                f'mount "{self.target}" in instance \'{self._vm.vm_name}\' has stopped '
                f"unsuccessfully: {state.failure_message()}"
            )

    def _log_error(self, error: ProcessError) -> None:
        log.error(
            f"there was an error with sshfs_server for instance '{self._vm.vm_name}' "
            f'with path "{self.target}": {error.kind.name} - {error.message}'
        )
