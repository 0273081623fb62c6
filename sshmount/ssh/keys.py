"""Module that provides the private key used to log in to instances."""

import base64
import os


class SSHKeyProvider:
    """Reads an OpenSSH private key from disk on first use."""

    def __init__(self, path: str):
        """Construct the provider for the key file at the given path."""
        self._path = os.path.expanduser(path)
        self._key: bytes = b""

    @property
    def path(self) -> str:
        return self._path

    def private_key(self) -> bytes:
        """Get the contents of the private key file."""
        if not self._key:
            with open(self._path, "rb") as f:
                self._key = f.read()

        return self._key

    def private_key_as_base64(self) -> str:
        """Get the private key encoded as base64, as sshfs_server expects it."""
        return base64.b64encode(self.private_key()).decode()
