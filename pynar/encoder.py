"""NAR serialization.

The encoder walks a source tree through the SourceTree protocol and writes
each field to the sink as soon as it is known. File contents are streamed,
never held whole in memory.

Grammar (where str(x) is the wire encoding in pynar.wire):
    str("nix-archive-1")
    str("(") str("type")
      str("regular") [str("executable") str("")] str("contents") str(<data>)
    | str("symlink") str("target") str(<target>)
    | str("directory") { str("entry") str("(") str("name") str(<n>) str("node") <recurse> str(")") }
    str(")")

See: nix/src/libutil/archive.cc — dump(), dumpContents()
"""

import io
import logging
import os
from typing import BinaryIO, Iterable, Iterator, Protocol

from pynar.errors import NarError, SourceReadError, UnsortedEntries
from pynar.node import Directory, File, Kind, Node, Symlink, join, validate_name
from pynar.policy import DEFAULT_POLICY, NormalizationPolicy
from pynar.wire import MAGIC, Writable, write_field, write_field_from

logger = logging.getLogger(__name__)


class SourceTree(Protocol):
    """One object of a tree being packed.

    Implementations raise OSError when the object cannot be read; the encoder
    turns that into SourceReadError.
    """

    def kind(self) -> Kind: ...

    def is_executable(self) -> bool: ...

    def open_content(self) -> tuple[int, BinaryIO]:
        """Size in bytes and an open stream positioned at the first byte."""
        ...

    def read_link_target(self) -> bytes: ...

    def list_children(self) -> Iterable[tuple[bytes | str, "SourceTree"]]: ...


def _sorted_children(source: SourceTree, path: bytes) -> Iterator[tuple[bytes, SourceTree]]:
    # Entries MUST be sorted by raw bytes; this is what makes NAR
    # deterministic. Listing order varies by filesystem and OS.
    children = []
    for name, child in source.list_children():
        if isinstance(name, str):
            name = os.fsencode(name)
        try:
            validate_name(name)
        except NarError as err:
            err.path = path
            raise
        children.append((name, child))
    children.sort(key=lambda c: c[0])
    for (a, _), (b, _) in zip(children, children[1:]):
        if a == b:
            raise UnsortedEntries(f"duplicate entry {a!r}", path=path)
    return iter(children)


class Encoder:
    def __init__(self, sink: Writable, policy: NormalizationPolicy = DEFAULT_POLICY):
        self.sink = sink
        self.policy = policy

    def encode(self, root: SourceTree) -> None:
        write_field(self.sink, MAGIC)
        # Stack of directories still being written: (path, remaining children).
        stack: list[tuple[bytes, Iterator[tuple[bytes, SourceTree]]]] = []
        children = self._begin(root, b"")
        if children is not None:
            stack.append((b"", children))
        count = 1
        while stack:
            path, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                write_field(self.sink, ")")
                if stack:
                    write_field(self.sink, ")")
                continue
            name, source = child
            child_path = join(path, name)
            write_field(self.sink, "entry")
            write_field(self.sink, "(")
            write_field(self.sink, "name")
            write_field(self.sink, name)
            write_field(self.sink, "node")
            grandchildren = self._begin(source, child_path)
            count += 1
            if grandchildren is None:
                write_field(self.sink, ")")
            else:
                stack.append((child_path, grandchildren))
        logger.debug("encoded %d entries", count)

    def _begin(self, source: SourceTree, path: bytes):
        """Write one node.

        Files and symlinks are written whole, including their closing paren.
        For a directory only the header is written and its sorted children are
        returned; the caller closes it once they are done.
        """
        try:
            kind = source.kind()
            write_field(self.sink, "(")
            write_field(self.sink, "type")
            write_field(self.sink, kind.value)

            if kind is Kind.DIRECTORY:
                return _sorted_children(source, path)

            if kind is Kind.SYMLINK:
                write_field(self.sink, "target")
                write_field(self.sink, source.read_link_target())
            else:
                # NAR only preserves the executable bit. All other permission
                # bits, ownership, and timestamps are discarded.
                if self.policy.pack_executable(kind, source.is_executable()):
                    write_field(self.sink, "executable")
                    write_field(self.sink, "")
                write_field(self.sink, "contents")
                size, stream = source.open_content()
                with stream:
                    write_field_from(self.sink, stream, size)
        except NarError as err:
            if err.path is None:
                err.path = path
            raise
        except OSError as err:
            raise SourceReadError(f"cannot read source: {err}", path=path) from err

        write_field(self.sink, ")")
        return None


def encode(sink: Writable, root: SourceTree, policy: NormalizationPolicy = DEFAULT_POLICY) -> None:
    """Serialize `root` to `sink`.

    On error, whatever was already written to the sink is not a usable
    archive and must be discarded.
    """
    Encoder(sink, policy).encode(root)


def to_bytes(root: SourceTree, policy: NormalizationPolicy = DEFAULT_POLICY) -> bytes:
    buf = io.BytesIO()
    encode(buf, root, policy)
    return buf.getvalue()


def read_tree(root: SourceTree, policy: NormalizationPolicy = DEFAULT_POLICY) -> Node:
    """The Node tree an archive of `root` describes, with file contents loaded."""

    def load(source: SourceTree, path: bytes) -> Node:
        try:
            kind = source.kind()
            if kind is Kind.SYMLINK:
                return Symlink(source.read_link_target())
            if kind is Kind.REGULAR:
                size, stream = source.open_content()
                with stream:
                    contents = stream.read(size)
                if len(contents) != size:
                    raise SourceReadError(
                        f"file contents ended after {len(contents)} of {size} bytes", path=path
                    )
                return File(policy.pack_executable(kind, source.is_executable()), contents)
        except OSError as err:
            raise SourceReadError(f"cannot read object: {err}", path=path) from err
        return Directory()

    # Children are added to their directory in sorted order as soon as the
    # directory is listed; traversal order past that point does not matter.
    result = load(root, b"")
    pending = [(b"", root, result)]
    while pending:
        path, source, node = pending.pop()
        if not isinstance(node, Directory):
            continue
        try:
            children = list(_sorted_children(source, path))
        except OSError as err:
            raise SourceReadError(f"cannot list directory: {err}", path=path) from err
        for name, child in children:
            child_path = join(path, name)
            child_node = load(child, child_path)
            node.add(name, child_node)
            pending.append((child_path, child, child_node))
    return result
