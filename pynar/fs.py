"""Pack and unpack real directories.

PathSource reads a tree with lstat, so symlinks are archived as links and
never followed. DirectoryDestination recreates a tree under a root
directory; the decoder has already rejected any entry name that could climb
out of it, and files are opened with O_NOFOLLOW | O_EXCL so nothing already
on disk gets written through.
"""

import errno
import io
import logging
import os
import shutil
import stat
from pathlib import Path
from typing import BinaryIO

from pynar.encoder import encode, to_bytes
from pynar.errors import DestinationWriteError, UnsupportedFileType
from pynar.node import Kind
from pynar.policy import DEFAULT_POLICY, Attributes, NormalizationPolicy
from pynar.restore import unpack
from pynar.wire import Writable

logger = logging.getLogger(__name__)

_KEPT_XATTR_PREFIXES = ("security.", "system.")


class PathSource:
    """A filesystem object, seen through the SourceTree protocol."""

    def __init__(self, path: str | bytes | Path, policy: NormalizationPolicy = DEFAULT_POLICY):
        self.path = os.fsencode(path)
        self.policy = policy
        self._stat: os.stat_result | None = None

    def stat(self) -> os.stat_result:
        if self._stat is None:
            self._stat = os.lstat(self.path)
        return self._stat

    def attributes(self) -> Attributes:
        st = self.stat()
        return Attributes(
            mode=stat.S_IMODE(st.st_mode),
            uid=st.st_uid,
            gid=st.st_gid,
            atime=st.st_atime,
            mtime=st.st_mtime,
        )

    def kind(self) -> Kind:
        mode = self.stat().st_mode
        if stat.S_ISLNK(mode):
            return Kind.SYMLINK
        if stat.S_ISREG(mode):
            return Kind.REGULAR
        if stat.S_ISDIR(mode):
            return Kind.DIRECTORY
        raise UnsupportedFileType(
            f"unsupported file type {stat.S_IFMT(mode):#o} at {os.fsdecode(self.path)}"
        )

    def is_executable(self) -> bool:
        return self.policy.pack_executable(self.kind(), self.attributes())

    def open_content(self) -> tuple[int, BinaryIO]:
        f = open(os.open(self.path, os.O_RDONLY | os.O_NOFOLLOW), "rb")
        # Size from the open descriptor, in case the path changed since lstat.
        return os.fstat(f.fileno()).st_size, f

    def read_link_target(self) -> bytes:
        return os.readlink(self.path)

    def list_children(self):
        return [
            (name, type(self)(os.path.join(self.path, name), self.policy))
            for name in os.listdir(self.path)
        ]


class DirectoryDestination:
    """Recreate archive entries under `root`.

    The archive root maps to `root` itself, which must not exist yet unless
    the archive root is a directory and `root` is an empty directory.
    """

    def __init__(self, root: str | bytes | Path):
        self.root = os.fsencode(root)

    def _path(self, path: bytes) -> bytes:
        return os.path.join(self.root, path) if path else self.root

    def create_directory(self, path: bytes) -> None:
        target = self._path(path)
        try:
            os.mkdir(target, 0o700)
        except FileExistsError:
            if path or not os.path.isdir(target) or os.listdir(target):
                raise DestinationWriteError(f"{os.fsdecode(target)} already exists", path=path)
            try:
                os.chmod(target, 0o700)
            except OSError as err:
                raise DestinationWriteError(f"cannot create directory: {err}", path=path) from err
        except OSError as err:
            raise DestinationWriteError(f"cannot create directory: {err}", path=path) from err

    def create_file(self, path: bytes, executable: bool, content: BinaryIO) -> None:
        target = self._path(path)
        try:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL | os.O_NOFOLLOW, 0o600)
            with open(fd, "wb") as f:
                shutil.copyfileobj(content, f)
        except OSError as err:
            raise DestinationWriteError(f"cannot create file: {err}", path=path) from err

    def create_symlink(self, path: bytes, target: bytes) -> None:
        try:
            os.symlink(target, self._path(path))
        except (OSError, ValueError) as err:
            # ValueError: the target holds a NUL, which no filesystem accepts
            raise DestinationWriteError(f"cannot create symlink: {err}", path=path) from err

    def apply_attributes(self, path: bytes, kind: Kind, attributes: Attributes) -> None:
        target = self._path(path)
        try:
            if attributes.xattrs is not None and hasattr(os, "listxattr"):
                self._replace_xattrs(target, attributes.xattrs)
            if attributes.mode is not None and kind is not Kind.SYMLINK:
                os.chmod(target, attributes.mode)
            if attributes.mtime is not None:
                atime = attributes.atime if attributes.atime is not None else attributes.mtime
                os.utime(target, (atime, attributes.mtime), follow_symlinks=False)
        except OSError as err:
            raise DestinationWriteError(f"cannot set attributes: {err}", path=path) from err

    @staticmethod
    def _replace_xattrs(target: bytes, xattrs) -> None:
        try:
            existing = os.listxattr(target, follow_symlinks=False)
        except OSError as err:
            # Filesystems without xattr support have nothing to remove.
            if err.errno in (errno.ENOTSUP, errno.EOPNOTSUPP):
                return
            raise
        for name in existing:
            # Labels owned by the kernel or a security module stay.
            if name.startswith(_KEPT_XATTR_PREFIXES):
                continue
            os.removexattr(target, name, follow_symlinks=False)
        for name, value in xattrs:
            os.setxattr(target, name, value, follow_symlinks=False)


def pack_path(
    path: str | bytes | Path, sink: Writable, policy: NormalizationPolicy = DEFAULT_POLICY
) -> None:
    logger.debug("packing %s", os.fsdecode(path))
    encode(sink, PathSource(path, policy), policy)


def unpack_path(
    source: BinaryIO,
    dest: str | bytes | Path,
    policy: NormalizationPolicy = DEFAULT_POLICY,
    **kwargs,
) -> None:
    logger.debug("unpacking into %s", os.fsdecode(dest))
    unpack(source, DirectoryDestination(dest), policy, **kwargs)


def nar_serialize(path: str | bytes | Path) -> bytes:
    """Serialize a filesystem path to NAR bytes."""
    return to_bytes(PathSource(path))


def nar_deserialize(data: bytes, dest: str | bytes | Path) -> None:
    """Unpack NAR bytes into `dest`."""
    unpack_path(io.BytesIO(data), dest)
