"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
from typing import List, Optional

from sshmount.constants import VERSION
from sshmount.vm import IdMapping


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    instance: str
    source: str
    target: str

    host: str
    port: int
    username: str
    identity: str

    uid_mappings: Optional[List[IdMapping]]
    gid_mappings: Optional[List[IdMapping]]

    server: Optional[str]
    config: str

    debug: bool
    timeout: Optional[int]

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        return cls._get_parser().parse_args(args, namespace=cls())

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Mount a host directory into a virtual machine over SSHFS.",
            usage="sshmount [option...] instance source target",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION}",
            help="show the program version",
        )

        # Primary arguments
        parser.add_argument("instance", type=str, help="name of the instance")
        parser.add_argument("source", type=str, help="directory on the host to mount")
        parser.add_argument("target", type=str, help="mount point in the instance")

        # SSH details of the instance
        parser.add_argument(
            "--host", type=str, required=True, help="address of the instance"
        )
        parser.add_argument(
            "--port", type=cls._parse_port, help="SSH port of the instance", default=22
        )
        parser.add_argument(
            "--username",
            type=str,
            help="user to log in to the instance as",
            default="ubuntu",
        )
        parser.add_argument(
            "-i",
            "--identity",
            type=str,
            required=True,
            help="private key to log in to the instance with",
        )

        # User and group id mappings, default to current user and group
        parser.add_argument(
            "--uid-map",
            type=cls._parse_mapping,
            action="append",
            help="map a host uid to an instance uid (host:instance)",
            dest="uid_mappings",
        )
        parser.add_argument(
            "--gid-map",
            type=cls._parse_mapping,
            action="append",
            help="map a host gid to an instance gid (host:instance)",
            dest="gid_mappings",
        )

        # Override sshfs_server program from config file
        parser.add_argument(
            "--server", type=str, help="path to the sshfs_server program"
        )

        # Path to (optional) config file
        parser.add_argument(
            "--config",
            type=str,
            help="path to config file (default is ~/.sshmount/config)",
            default="~/.sshmount/config",
        )

        # Enable debug output for development
        parser.add_argument(
            "--debug", action="store_true", help="enable debug information"
        )

        # Override install timeout from config file
        parser.add_argument(
            "--timeout",
            type=cls._parse_timeout,
            help="timeout for installing mount support in milliseconds",
        )

        return parser

    @staticmethod
    def _parse_mapping(arg: str) -> IdMapping:
        try:
            return IdMapping.parse(arg)
        except ValueError:
            raise argparse.ArgumentTypeError("expected host:instance id mapping")

    @staticmethod
    def _parse_port(arg: str) -> int:
        try:
            val = int(arg)
            assert 0 < val < 65536
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected port number")

    @staticmethod
    def _parse_timeout(arg: str) -> int:
        try:
            val = int(arg)
            assert val > 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number > 0")
