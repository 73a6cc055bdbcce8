"""NAR hashing.

The NAR hash of a path is the SHA-256 of its NAR serialization; it is what
`nix hash path` prints and what Nix records as narHash for store paths. The
archive is hashed as it is produced, so a large tree is never held in memory.
"""

import base64
import hashlib
from pathlib import Path

from pynar.fs import pack_path


class HashingWriter:
    """A write-only sink that feeds a hash and counts bytes."""

    def __init__(self, algorithm: str = "sha256"):
        self.hash = hashlib.new(algorithm)
        self.size = 0

    def write(self, data: bytes) -> int:
        self.hash.update(data)
        self.size += len(data)
        return len(data)

    def digest(self) -> bytes:
        return self.hash.digest()


def nar_hash(path: str | Path) -> bytes:
    """SHA-256 of the NAR serialization. This is what `nix hash path` computes."""
    sink = HashingWriter()
    pack_path(path, sink)
    return sink.digest()


def nar_hash_hex(path: str | Path) -> str:
    return nar_hash(path).hex()


def nar_hash_sri(path: str | Path) -> str:
    """SRI form, e.g. sha256-CkMIecJm+LV/QJKg+TXPP6zUi7zN5XYNR0jKQFFx6Wk="""
    return "sha256-" + base64.b64encode(nar_hash(path)).decode()
