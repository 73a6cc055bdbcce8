"""Unpack an archive onto a destination tree.

The decoder supplies entries in wire order; the normalization policy decides
what metadata each restored object gets. Files and symlinks get their
attributes right after creation. Directories get theirs only after the whole
archive has been written, deepest first: creating a child would otherwise
bump the parent's mtime, and a read-only directory mode would stop the
children from being created at all.
"""

import logging
from typing import BinaryIO, Protocol

from pynar.decoder import Archive, open_archive
from pynar.node import Kind
from pynar.policy import DEFAULT_POLICY, Attributes, NormalizationPolicy

logger = logging.getLogger(__name__)


class DestinationTree(Protocol):
    """Where unpacked objects go. Paths are archive paths; b"" is the root."""

    def create_directory(self, path: bytes) -> None: ...

    def create_file(self, path: bytes, executable: bool, content: BinaryIO) -> None: ...

    def create_symlink(self, path: bytes, target: bytes) -> None: ...

    def apply_attributes(self, path: bytes, kind: Kind, attributes: Attributes) -> None: ...


def unpack(
    source: BinaryIO | Archive,
    destination: DestinationTree,
    policy: NormalizationPolicy = DEFAULT_POLICY,
    **kwargs,
) -> None:
    """Decode `source` and recreate every entry on `destination`.

    Any error aborts the unpack; objects already created are left as they
    are and the destination must be considered incomplete.
    """
    archive = source if isinstance(source, Archive) else open_archive(source, **kwargs)
    directories = []
    for entry in archive.entries():
        entry.unpack_in(destination, policy)
        if entry.kind is Kind.DIRECTORY:
            directories.append(entry.path)

    attributes = policy.unpack_attributes(Kind.DIRECTORY)
    for path in reversed(directories):
        destination.apply_attributes(path, Kind.DIRECTORY, attributes)
    logger.debug("unpacked %d directories", len(directories))
