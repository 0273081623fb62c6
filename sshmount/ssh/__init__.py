"""
Modules for running commands inside an instance over SSH.

Mount support has to be detected and installed inside the instance before sshfs_server
can mount anything. That only requires running a handful of shell commands and looking
at their exit codes, so rather than implementing the SSH protocol, sshmount drives the
OpenSSH client that is already present on the host.
"""

from .keys import SSHKeyProvider
from .session import ExitlessSSHProcessError, SSHProcess, SSHSession

__all__ = [
    "ExitlessSSHProcessError",
    "SSHKeyProvider",
    "SSHProcess",
    "SSHSession",
]
