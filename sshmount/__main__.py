"""
Module implementing the command-line interface and invoking the main logic of sshmount.

sshmount mounts a directory on the host into a running virtual machine. It logs in to
the instance over SSH to make sure that sshfs is available there, installing it if it
isn't, and then starts sshfs_server to service the mount. The mount stays up until
sshmount is interrupted or terminated.
"""

import contextlib
import hashlib
import logging
import os
import signal
import sys
import threading
from typing import List, NoReturn, Optional

import fasteners

from sshmount.args import Arguments
from sshmount.config import Config
import sshmount.constants as constants
from sshmount.logger import log
import sshmount.mount as mount
from sshmount.ssh import SSHKeyProvider
from sshmount.vm import IdMapping, MountSpec, SSHDestination


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Mount a host directory into an instance with the given arguments.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    # Parse command-line arguments.
    args = Arguments.parse(arguments)

    # Configure debug logging.
    if args.debug:
        log.setLevel(logging.DEBUG)
    else:
        log.setLevel(logging.WARNING)

    # Load config and apply command-line overrides.
    config = Config.load(os.path.expanduser(args.config))

    if args.server:
        config.mount.server_program = args.server

    if args.timeout is not None:
        config.mount.timeout = args.timeout

    try:
        exit_code = _run(args, config)
    except KeyboardInterrupt:
        exit_code = 128 + signal.SIGINT
    except Exception as e:
        log.error(f"failed to mount: {e}")
        exit_code = constants.SSHMOUNT_ERROR_CODE

    sys.exit(exit_code)


def _run(args: Arguments, config: Config) -> int:
    """Service the mount until a stop is requested."""
    vm = SSHDestination(args.instance, args.host, args.port, args.username)
    key_provider = SSHKeyProvider(args.identity)

    spec = MountSpec(
        source_path=os.path.abspath(os.path.expanduser(args.source)),
        target_path=args.target,
        uid_mappings=args.uid_mappings
        or [IdMapping(os.getuid(), constants.DEFAULT_INSTANCE_ID)],
        gid_mappings=args.gid_mappings
        or [IdMapping(os.getgid(), constants.DEFAULT_INSTANCE_ID)],
    )

    with contextlib.ExitStack() as stack:
        # Only one sshmount can service a specific mount at a time
        lock_path = _lock_path(config, args.instance, args.target)
        lock = fasteners.InterProcessLock(lock_path)

        if not lock.acquire(blocking=False):
            raise RuntimeError(
                f"mount \"{args.target}\" in instance '{args.instance}' is already "
                "being serviced"
            )

        stack.callback(lock.release)

        handler = mount.SSHFSMountHandler(vm, key_provider, spec, config)
        stack.callback(handler.close)

        handler.start(_print_progress, config.mount.timeout)

        _print_progress(
            f"mounted {spec.source_path} => {spec.target_path} in '{args.instance}'"
        )

        _wait_for_stop_request()

        handler.stop()

    return 0


def _lock_path(config: Config, instance: str, target: str) -> str:
    """Determine the lock file that guards the mount of a target in an instance."""
    os.makedirs(config.mount.lock_path, exist_ok=True)

    digest = hashlib.sha256(f"{instance}:{target}".encode()).hexdigest()[:16]

    return os.path.join(config.mount.lock_path, f"{instance}-{digest}.lock")


def _print_progress(message: str) -> None:
    """Write a progress message to stderr regardless of the log level."""
    sys.stderr.write(f"{message}\n")
    sys.stderr.flush()


def _wait_for_stop_request() -> None:
    """Block until sshmount is interrupted (Ctrl-C) or terminated."""
    stop_requested = threading.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, lambda *_: stop_requested.set())

    stop_requested.wait()
