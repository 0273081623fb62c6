"""Module that detects and installs sshfs support inside an instance."""

import sshmount.constants as constants
from sshmount.errors import SSHFSMissingError, UnsupportedEnvironmentError
from sshmount.logger import log
from sshmount.ssh import ExitlessSSHProcessError, SSHSession


def has_sshfs(name: str, session: SSHSession) -> bool:
    """
    Check if the sshfs snap is installed in the instance.

    Returns False if it is not installed but can be installed. Raises
    UnsupportedEnvironmentError if the instance can't install snaps.
    """
    # Check if snap support is installed in the instance
    if session.exec("which snap").exit_code() != 0:
        log.warning(f"snap support is not installed in '{name}'")
        raise UnsupportedEnvironmentError(
            f"Snap support needs to be installed in '{name}' in order to support "
            "mounts.\n"
            "Please see https://docs.snapcraft.io/installing-snapd for information on\n"
            "how to install snap support for your instance's distribution.\n\n"
            "If your distribution's instructions specify enabling classic snap "
            "support,\n"
            "please do that as well.\n\n"
            "Alternatively, install `sshfs` manually inside the instance.",
            instance=name,
        )

    # Check if the sshfs snap is already installed
    if session.exec(f"sudo snap list {constants.SSHFS_SNAP_NAME}").exit_code() == 0:
        log.debug(
            f"the {constants.SSHFS_SNAP_NAME} snap is already installed in '{name}'"
        )
        return True

    # Check if /snap exists for "classic" snap support
    if session.exec("[ -e /snap ]").exit_code() != 0:
        log.warning(f"classic snap support symlink is needed in '{name}'")
        raise UnsupportedEnvironmentError(
            f"Classic snap support is not enabled for '{name}'!\n\n"
            "Please see https://docs.snapcraft.io/installing-snapd for information on\n"
            "how to enable classic snap support for your instance's distribution.",
            instance=name,
        )

    log.debug(f"the {constants.SSHFS_SNAP_NAME} snap can be installed on '{name}'")
    return False


def install_sshfs(name: str, session: SSHSession, timeout: int) -> None:
    """
    Install the sshfs snap in the instance, waiting up to timeout milliseconds.

    A failed installation is indistinguishable from one that timed out, both raise
    SSHFSMissingError.
    """
    log.info(f"installing the {constants.SSHFS_SNAP_NAME} snap in '{name}'")

    proc = session.exec(f"sudo snap install {constants.SSHFS_SNAP_NAME}")

    try:
        exit_code = proc.exit_code(timeout)
    except ExitlessSSHProcessError:
        log.info(f"timeout while installing '{constants.SSHFS_SNAP_NAME}' in '{name}'")
        raise SSHFSMissingError(instance=name)

    if exit_code != 0:
        error_msg = proc.read_std_error().rstrip()
        log.warning(f"failed to install '{constants.SSHFS_SNAP_NAME}': {error_msg}")
        raise SSHFSMissingError(instance=name)
