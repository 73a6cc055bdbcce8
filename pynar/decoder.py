"""Streaming NAR parser.

The archive is read strictly front to back. Entries come out one at a time,
parents before children, in the order they appear on the wire. A regular
file's contents are not read eagerly: the entry carries a ContentReader
bounded to the declared length, and whatever the caller leaves unread is
skipped before the next entry is produced.

Nothing in the input is trusted:
  - every field length is checked against a ceiling before it is read,
  - padding must be all zero,
  - directory entries must be strictly ascending (which also rules out
    duplicates),
  - entry names may not be empty, ".", "..", or contain "/" or NUL.

Directory nesting is tracked on an explicit stack, so a deeply nested archive
costs heap, not Python call frames.

See: nix/src/libutil/archive.cc — parseDump(), parse()
"""

import io
import logging
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator

from pynar.errors import (
    BadMagic,
    FieldTooLarge,
    InvalidEntryName,
    MalformedGrammar,
    NarError,
    UnsortedEntries,
)
from pynar.memory import TreeDestination
from pynar.node import Directory, File, Kind, Node, Symlink, join, validate_name
from pynar.policy import DEFAULT_POLICY, NormalizationPolicy
from pynar.wire import MAGIC, FieldReader

logger = logging.getLogger(__name__)

DEFAULT_MAX_FIELD_SIZE = 64 * 1024

_KINDS = {k.value.encode(): k for k in Kind}


class ContentReader(io.RawIOBase):
    """Read-only view of one file's contents inside the archive stream.

    Valid only until the next entry is requested; after that it is closed.
    """

    def __init__(self, fields: FieldReader, size: int):
        super().__init__()
        self._fields = fields
        self.size = size
        self.remaining = size

    def readable(self) -> bool:
        return True

    def readinto(self, buf) -> int:
        if self.closed:
            raise ValueError("archive has moved past this entry")
        n = min(len(buf), self.remaining)
        if not n:
            return 0
        data = self._fields.read_exact(n)
        buf[:n] = data
        self.remaining -= n
        return n

    def _finish(self) -> None:
        """Skip whatever the caller left unread, then the padding."""
        if self.remaining:
            self._fields.skip(self.remaining)
            self.remaining = 0
        self._fields.read_padding(self.size)
        self.close()


@dataclass
class Entry:
    path: bytes
    kind: Kind
    executable: bool = False
    target: bytes | None = None
    size: int = 0
    content: ContentReader | None = field(default=None, repr=False, compare=False)

    @property
    def name(self) -> bytes:
        return self.path.rpartition(b"/")[2]

    @property
    def parent(self) -> bytes:
        return self.path.rpartition(b"/")[0]

    def is_file(self) -> bool:
        return self.kind is Kind.REGULAR

    def is_dir(self) -> bool:
        return self.kind is Kind.DIRECTORY

    def is_symlink(self) -> bool:
        return self.kind is Kind.SYMLINK

    def is_executable(self) -> bool:
        return self.kind is Kind.REGULAR and self.executable

    def read(self) -> bytes:
        """Rest of the file contents. Only valid for regular files."""
        if self.content is None:
            raise ValueError(f"{self.kind.value} entry has no contents")
        return self.content.read()

    def to_node(self) -> Node:
        """Materialize this entry. Directories come back empty."""
        if self.kind is Kind.REGULAR:
            return File(self.executable, self.read())
        if self.kind is Kind.SYMLINK:
            return Symlink(self.target)
        return Directory()

    def unpack_in(self, destination, policy: NormalizationPolicy = DEFAULT_POLICY) -> None:
        """Recreate just this entry on a DestinationTree.

        Lets a caller extract some entries and pass over others while
        iterating. The entry's parent must already exist on `destination`.
        Files and symlinks get their attributes at once; a directory is only
        created, and its attributes are the caller's to apply after its
        children, as unpack() does.
        """
        if self.kind is Kind.DIRECTORY:
            destination.create_directory(self.path)
            return
        if self.kind is Kind.SYMLINK:
            destination.create_symlink(self.path, self.target)
        else:
            destination.create_file(self.path, self.executable, self.content)
        destination.apply_attributes(
            self.path, self.kind, policy.unpack_attributes(self.kind, self.executable)
        )


@dataclass
class _Frame:
    path: bytes
    last: bytes | None = None


class Archive:
    """A NAR being read from a binary stream.

    The stream belongs to the caller, who closes it. Entries can be iterated
    only once, since the stream cannot be rewound.
    """

    def __init__(
        self,
        source: BinaryIO,
        *,
        max_field_size: int = DEFAULT_MAX_FIELD_SIZE,
        max_content_size: int | None = None,
    ):
        self._fields = FieldReader(source)
        self.max_field_size = max_field_size
        self.max_content_size = max_content_size
        self._magic_checked = False
        self._started = False

    @property
    def position(self) -> int:
        return self._fields.position

    def read_magic(self) -> None:
        start = self.position
        length = self._fields.read_u64()
        if length != len(MAGIC):
            raise BadMagic("not a NAR archive", offset=start)
        if self._fields.read_exact(length) != MAGIC:
            raise BadMagic("not a NAR archive", offset=start)
        self._fields.read_padding(length)
        self._magic_checked = True

    def entries(self) -> Iterator[Entry]:
        if self._started:
            raise RuntimeError("archive entries can only be read once")
        self._started = True
        return self._parse()

    def __iter__(self) -> Iterator[Entry]:
        return self.entries()

    def _parse(self) -> Iterator[Entry]:
        if not self._magic_checked:
            self.read_magic()
        frames: list[_Frame] = []
        path = b""
        count = 0
        try:
            while True:
                entry = self._read_node(path)
                count += 1
                yield entry
                if entry.kind is Kind.DIRECTORY:
                    frames.append(_Frame(path))
                else:
                    if entry.content is not None:
                        entry.content._finish()
                    self._expect(b")", path)
                    if frames:
                        self._expect(b")", path)
                next_path = self._next_child(frames)
                if next_path is None:
                    break
                path = next_path
        except NarError as err:
            if err.path is None:
                err.path = path
            raise
        logger.debug("parsed %d entries, %d bytes", count, self.position)

    def _read_token(self) -> bytes:
        return self._fields.read_field(self.max_field_size)

    def _expect(self, token: bytes, path: bytes) -> None:
        start = self.position
        got = self._read_token()
        if got != token:
            raise MalformedGrammar(f"expected {token!r}, got {got!r}", offset=start, path=path)

    def _read_node(self, path: bytes) -> Entry:
        self._expect(b"(", path)
        self._expect(b"type", path)
        start = self.position
        tag = self._read_token()
        kind = _KINDS.get(tag)
        if kind is None:
            raise MalformedGrammar(f"unknown node type {tag!r}", offset=start, path=path)

        if kind is Kind.DIRECTORY:
            return Entry(path, kind)

        if kind is Kind.SYMLINK:
            self._expect(b"target", path)
            return Entry(path, kind, target=self._read_token())

        executable = False
        start = self.position
        tag = self._read_token()
        if tag == b"executable":
            start = self.position
            if self._read_token() != b"":
                raise MalformedGrammar("executable marker must be empty", offset=start, path=path)
            executable = True
            start = self.position
            tag = self._read_token()
        if tag != b"contents":
            raise MalformedGrammar(f"expected b'contents', got {tag!r}", offset=start, path=path)
        start = self.position
        size = self._fields.read_u64()
        if self.max_content_size is not None and size > self.max_content_size:
            raise FieldTooLarge(
                f"file of {size} bytes exceeds limit of {self.max_content_size}",
                offset=start,
                path=path,
            )
        return Entry(
            path,
            kind,
            executable=executable,
            size=size,
            content=ContentReader(self._fields, size),
        )

    def _next_child(self, frames: list[_Frame]) -> bytes | None:
        """Read up to the next child node, closing finished directories on the way.

        Returns the child's path with the stream positioned at its "(",
        or None once the root is closed.
        """
        while frames:
            frame = frames[-1]
            start = self.position
            tag = self._read_token()
            if tag == b")":
                frames.pop()
                if frames:
                    self._expect(b")", frame.path)
                continue
            if tag != b"entry":
                raise MalformedGrammar(
                    f"expected b'entry' or b')', got {tag!r}", offset=start, path=frame.path
                )
            self._expect(b"(", frame.path)
            self._expect(b"name", frame.path)
            start = self.position
            name = self._read_token()
            try:
                validate_name(name)
            except InvalidEntryName as err:
                err.offset = start
                err.path = frame.path
                raise
            if frame.last is not None and name <= frame.last:
                what = "duplicate entry" if name == frame.last else "unsorted entry"
                raise UnsortedEntries(
                    f"{what} {name!r} after {frame.last!r}", offset=start, path=frame.path
                )
            frame.last = name
            self._expect(b"node", frame.path)
            return join(frame.path, name)
        return None


def open_archive(source: BinaryIO, **kwargs) -> Archive:
    """Check the magic and return an Archive ready for entries()."""
    archive = Archive(source, **kwargs)
    archive.read_magic()
    return archive


def decode(source: BinaryIO, **kwargs) -> Node:
    """Read a whole archive into memory as a Node tree."""
    tree = TreeDestination()
    for entry in open_archive(source, **kwargs).entries():
        entry.unpack_in(tree)
    return tree.root

