"""Module that runs commands in an instance through the OpenSSH client."""

import contextlib
import os
import subprocess
import tempfile
from typing import List, Optional

from sshmount.config import SSHConfig
from sshmount.errors import SSHConnectionError
from sshmount.logger import log, summarize
from .keys import SSHKeyProvider

# ssh exits with the remote command's exit code or 255 in case of failure
SSH_ERROR_CODE = 255


class ExitlessSSHProcessError(Exception):
    """Exception raised when a remote command did not exit within its timeout."""

    def __init__(self, command: str, timeout: int) -> None:
        """Instantiate the exception with the command that timed out."""
        super().__init__(f"'{command}' did not exit within {timeout} ms")

        self.command = command
        self.timeout = timeout


class SSHProcess:
    """A command running in the instance."""

    def __init__(self, command: str, proc: subprocess.Popen):
        """Wrap the ssh process that is running the command."""
        self._command = command
        self._proc = proc

        self._stdout = b""
        self._stderr = b""
        self._exit_code: Optional[int] = None

    def exit_code(self, timeout: Optional[int] = None) -> int:
        """
        Wait for the command to exit and return its exit code.

        The timeout is in milliseconds. If the command does not exit in time then it is
        killed and ExitlessSSHProcessError is raised.
        """
        if self._exit_code is None:
            try:
                self._stdout, self._stderr = self._proc.communicate(
                    timeout=timeout / 1000 if timeout is not None else None
                )
            except subprocess.TimeoutExpired:
                with contextlib.suppress(ProcessLookupError):
                    self._proc.kill()
                self._proc.communicate()

                raise ExitlessSSHProcessError(self._command, timeout or 0)

            self._exit_code = self._proc.returncode

            log.debug(f"'{self._command}' exited with {self._exit_code}")

        return self._exit_code

    def read_std_output(self) -> str:
        """Get the output of the command after waiting for it to exit."""
        self.exit_code()
        return self._stdout.decode(errors="replace")

    def read_std_error(self) -> str:
        """Get the error output of the command after waiting for it to exit."""
        self.exit_code()
        return self._stderr.decode(errors="replace")


class SSHSession:
    """
    Session for running commands in an instance.

    Every command is executed through a new invocation of the ssh client. The private
    key is written to a temporary file only readable by the current user for as long as
    the session is open.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        key_provider: SSHKeyProvider,
        config: Optional[SSHConfig] = None,
    ):
        """Open a session and check that the instance can be reached."""
        self._host = host
        self._port = port
        self._username = username
        self._config = config or SSHConfig()

        self._key_dir = tempfile.TemporaryDirectory(prefix="sshmount_key_")
        self._key_path = os.path.join(self._key_dir.name, "id")

        try:
            fd = os.open(self._key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(key_provider.private_key())

            self._check_connection()
        except Exception:
            self.close()
            raise

    def __enter__(self) -> "SSHSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        """Remove the temporary copy of the private key."""
        self._key_dir.cleanup()

    def exec(self, command: str) -> SSHProcess:
        """Start running a shell command in the instance."""
        ssh_command = self._compose_ssh_command(command)

        log.debug(f"running {summarize(ssh_command)}")

        try:
            proc = subprocess.Popen(
                ssh_command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise SSHConnectionError(f"failed to start ssh: {e}")

        return SSHProcess(command, proc)

    def _check_connection(self) -> None:
        """Run a no-op command to detect connection and authentication failures."""
        proc = self.exec("true")

        if proc.exit_code() == SSH_ERROR_CODE:
            stderr = proc.read_std_error().strip()
            raise SSHConnectionError(
                f"ssh failed to connect to {self._username}@{self._host}:{self._port}: "
                f"{stderr}"
            )

    def _compose_ssh_command(self, command: str) -> List[str]:
        """Compose the full ssh invocation that runs the command in the instance."""
        ssh_command = [self._config.program]

        # Disable SSH INFO messages and never prompt for anything
        ssh_command.extend(["-o", "LogLevel=error"])
        ssh_command.extend(["-o", "BatchMode=yes"])

        # Instances are recreated often, so their host keys can't be pinned
        ssh_command.extend(["-o", "StrictHostKeyChecking=no"])
        ssh_command.extend(["-o", "UserKnownHostsFile=/dev/null"])

        ssh_command.extend(["-o", f"ConnectTimeout={self._config.connect_timeout}"])

        # Only offer the instance key
        ssh_command.extend(["-o", "IdentitiesOnly=yes", "-i", self._key_path])

        ssh_command.extend(["-p", str(self._port)])
        ssh_command.append(f"{self._username}@{self._host}")

        ssh_command.append(command)

        return ssh_command
