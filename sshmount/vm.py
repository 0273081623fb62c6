"""Module describing the instance to mount into and the mount itself."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Tuple, Union


class VirtualMachine(ABC):
    """Identity and SSH details of a running instance."""

    vm_name: str

    @abstractmethod
    def ssh_hostname(self) -> str:
        """
        Get the address that the instance can be reached at over SSH.

        This may only be known once the instance is running, so it should be looked up
        as late as possible.
        """
        raise NotImplementedError()

    @abstractmethod
    def ssh_port(self) -> int:
        """Get the port of the SSH server in the instance."""
        raise NotImplementedError()

    @abstractmethod
    def ssh_username(self) -> str:
        """Get the user to log in as."""
        raise NotImplementedError()


class SSHDestination(VirtualMachine):
    """An instance with fixed SSH details, or a hostname resolved through a callback."""

    def __init__(
        self,
        vm_name: str,
        hostname: Union[str, Callable[[], str]],
        port: int = 22,
        username: str = "ubuntu",
    ):
        """Construct the destination from its SSH details."""
        self.vm_name = vm_name

        self._hostname = hostname
        self._port = port
        self._username = username

    def ssh_hostname(self) -> str:
        """Get the configured hostname, resolving it first if necessary."""
        if callable(self._hostname):
            return self._hostname()
        else:
            return self._hostname

    def ssh_port(self) -> int:
        """Get the configured SSH port."""
        return self._port

    def ssh_username(self) -> str:
        """Get the configured username."""
        return self._username


@dataclass(frozen=True)
class IdMapping:
    """Mapping of a user or group id on the host to one in the instance."""

    host: int
    instance: int

    @staticmethod
    def parse(arg: str) -> IdMapping:
        """Parse a mapping in the form 'host:instance'."""
        host, sep, instance = arg.partition(":")

        if not sep:
            raise ValueError(f"expected 'host:instance' id mapping, got '{arg}'")

        return IdMapping(int(host), int(instance))

    def __str__(self) -> str:
        return f"{self.host}:{self.instance}"


@dataclass(frozen=True)
class MountSpec:
    """A directory on the host and where it should appear in the instance."""

    source_path: str
    target_path: str

    uid_mappings: Tuple[IdMapping, ...] = field(default_factory=tuple)
    gid_mappings: Tuple[IdMapping, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept any iterable of mappings, stored as tuples
        object.__setattr__(self, "uid_mappings", tuple(self.uid_mappings))
        object.__setattr__(self, "gid_mappings", tuple(self.gid_mappings))
