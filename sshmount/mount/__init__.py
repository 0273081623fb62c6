"""
Modules that set up and tear down a mount of a host directory into an instance.

A mount is serviced by sshfs_server, a helper program on the host that logs in to the
instance and runs sshfs there with its file system requests served from the host. That
requires sshfs to be available inside the instance. It is shipped as a snap, so before
sshfs_server is started the instance is checked for snap support and the snap is
installed if it is missing.

The handler in this package blocks until sshfs_server reports that it is connected,
and makes sure that the process is stopped again once the mount is no longer needed.
"""

from .handler import MountHandler, MountState, ProgressSink, SSHFSMountHandler
from .process import (
    ProcessError,
    ProcessErrorKind,
    ProcessState,
    ReadinessOutcome,
    SSHFSServerConfig,
    SSHFSServerProcess,
)
from .provision import has_sshfs, install_sshfs

__all__ = [
    "MountHandler",
    "MountState",
    "ProgressSink",
    "SSHFSMountHandler",
    "ProcessError",
    "ProcessErrorKind",
    "ProcessState",
    "ReadinessOutcome",
    "SSHFSServerConfig",
    "SSHFSServerProcess",
    "has_sshfs",
    "install_sshfs",
]
