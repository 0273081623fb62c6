"""Exceptions raised while setting up or tearing down a mount."""

from typing import Optional


class MountError(Exception):
    """Base class for errors that prevent a mount from being serviced."""

    def __init__(
        self,
        message: str,
        instance: Optional[str] = None,
        target: Optional[str] = None,
    ) -> None:
        """Instantiate the exception with a description and the affected mount."""
        super().__init__(message)

        self.message = message

        self.instance = instance
        self.target = target


class SSHConnectionError(MountError):
    """Exception raised when no SSH session can be established with the instance."""


class UnsupportedEnvironmentError(MountError):
    """Exception raised when the instance cannot install mount support by itself."""


class SSHFSMissingError(MountError):
    """Exception raised when sshfs is not installed in the instance."""

    def __init__(
        self,
        message: str = "sshfs is not installed in the instance",
        instance: Optional[str] = None,
        target: Optional[str] = None,
    ) -> None:
        """Instantiate the exception with an optional description."""
        super().__init__(message, instance, target)


class MountProcessError(MountError):
    """Exception raised when sshfs_server stopped with an error."""

    def __init__(
        self,
        message: str,
        stderr: str = "",
        instance: Optional[str] = None,
        target: Optional[str] = None,
    ) -> None:
        """Instantiate the exception with the error output of sshfs_server."""
        super().__init__(message, instance, target)

        self.stderr = stderr


class TerminationTimeoutError(MountError):
    """Exception raised when sshfs_server does not exit after being terminated."""

    def __init__(
        self,
        message: str,
        stderr: str = "",
        instance: Optional[str] = None,
        target: Optional[str] = None,
    ) -> None:
        """Instantiate the exception with the error output of sshfs_server."""
        super().__init__(message, instance, target)

        self.stderr = stderr


class InvalidMountStateError(RuntimeError):
    """Exception raised when a mount handler is used out of order."""
