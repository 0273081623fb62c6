"""Module for configuration variables with defaults that are overridable by a file."""

from __future__ import annotations

from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field
import os

import sshmount.constants as constants
from sshmount.logger import log


@dataclass
class SSHConfig:
    """Configuration variables related to the SSH client."""

    program: str = "ssh"

    # Seconds to wait for the SSH connection to be established
    connect_timeout: int = 10

    @staticmethod
    def load(section: SectionProxy) -> SSHConfig:
        """Load overridden variables from a section within a config file."""
        config = SSHConfig()

        config.program = section.get("program", fallback=config.program)
        config.connect_timeout = section.getint(
            "connect_timeout", fallback=config.connect_timeout
        )

        return config


@dataclass
class MountConfig:
    """Configuration variables related to servicing mounts."""

    server_program: str = constants.SSHFS_SERVER_PROGRAM

    # Milliseconds to wait for mount support to be installed in the instance
    timeout: int = constants.DEFAULT_MOUNT_TIMEOUT

    lock_path: str = os.path.expanduser("~/.sshmount/locks")

    @staticmethod
    def load(section: SectionProxy) -> MountConfig:
        """Load overridden variables from a section within a config file."""
        config = MountConfig()

        config.server_program = section.get(
            "server_program", fallback=config.server_program
        )
        config.timeout = section.getint("timeout", fallback=config.timeout)
        config.lock_path = os.path.expanduser(
            section.get("lock_path", fallback=config.lock_path)
        )

        return config


@dataclass
class Config:
    """Configuration variables."""

    ssh: SSHConfig = field(default_factory=SSHConfig)
    mount: MountConfig = field(default_factory=MountConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "ssh" in parser:
                config.ssh = SSHConfig.load(parser["ssh"])

            if "mount" in parser:
                config.mount = MountConfig.load(parser["mount"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            log.info(f"loaded config: {config}")

        return config
