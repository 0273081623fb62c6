"""Module defining various global constants."""

# sshmount version
VERSION = "1.0.0"

# Special exit code for when sshmount itself fails.
SSHMOUNT_ERROR_CODE = 254

# Snap that provides the sshfs binary used by sshfs_server inside the instance.
SSHFS_SNAP_NAME = "multipass-sshfs"

# Default helper program that services the mount on the host side.
SSHFS_SERVER_PROGRAM = "sshfs_server"

# Printed by sshfs_server on stdout once sshfs is running inside the instance.
# This is not a documented protocol, it is simply what sshfs_server writes.
SSHFS_SERVER_READY_TOKEN = b"Connected"

# Exit code used by sshfs_server when it finds that sshfs is not installed in the
# instance. Also an undocumented convention of sshfs_server.
SSHFS_MISSING_EXIT_CODE = 9

# Time in milliseconds to wait for remote support to be installed.
DEFAULT_MOUNT_TIMEOUT = 5 * 60 * 1000

# Time in milliseconds to wait for sshfs_server to exit after being terminated.
STOP_TIMEOUT = 5000

# Instance user that host ids are mapped to when no mappings are given.
DEFAULT_INSTANCE_ID = 1000

# Bytes of recent sshfs_server stdout and stderr kept for error reporting.
OUTPUT_BUFFER_SIZE = 64 * 1024
