"""Tests for NAR serialization from in-memory source trees."""

import io
import struct

import pytest

from pynar.decoder import decode
from pynar.encoder import encode, read_tree, to_bytes
from pynar.errors import InvalidEntryName, SinkWriteError, SourceReadError, UnsortedEntries
from pynar.memory import NodeSource
from pynar.node import Directory, File, Kind, Symlink


def _str(s: str | bytes) -> bytes:
    """NAR string encoding helper for building expected output."""
    if isinstance(s, str):
        s = s.encode()
    pad = (8 - len(s) % 8) % 8
    return struct.pack("<Q", len(s)) + s + b"\0" * pad


def _nar(*tokens) -> bytes:
    return b"".join(_str(t) for t in tokens)


class FakeSource:
    """A source tree that lists children in whatever order it is given."""

    def __init__(self, kind, children=(), contents=b"", executable=False, target=b"", fail=None):
        self._kind = kind
        self._children = list(children)
        self._contents = contents
        self._executable = executable
        self._target = target
        self._fail = fail

    def _check(self, op):
        if self._fail == op:
            raise PermissionError(13, "Permission denied")

    def kind(self):
        self._check("kind")
        return self._kind

    def is_executable(self):
        return self._executable

    def open_content(self):
        self._check("open_content")
        return len(self._contents), io.BytesIO(self._contents)

    def read_link_target(self):
        self._check("read_link_target")
        return self._target

    def list_children(self):
        self._check("list_children")
        return self._children


def test_empty_directory():
    assert to_bytes(NodeSource(Directory())) == _nar(
        "nix-archive-1", "(", "type", "directory", ")"
    )


def test_single_executable_file():
    out = to_bytes(NodeSource(File(True, b"abc")))
    assert out == _nar(
        "nix-archive-1", "(", "type", "regular", "executable", "", "contents", "abc", ")"
    )
    contents_field = struct.pack("<Q", 3) + b"abc" + b"\0" * 5
    assert contents_field in out


def test_plain_file():
    assert to_bytes(NodeSource(File(False, b"hello"))) == _nar(
        "nix-archive-1", "(", "type", "regular", "contents", "hello", ")"
    )


def test_symlink_target_is_raw_bytes():
    assert to_bytes(NodeSource(Symlink(b"\xff/x"))) == _nar(
        "nix-archive-1", "(", "type", "symlink", "target", b"\xff/x", ")"
    )


def test_nested_layout():
    tree = Directory.from_sorted([
        (b"a", File(False, b"")),
        (b"b", Directory.from_sorted([(b"c", Symlink(b"../a"))])),
    ])
    assert to_bytes(NodeSource(tree)) == _nar(
        "nix-archive-1",
        "(", "type", "directory",
        "entry", "(", "name", "a", "node",
        "(", "type", "regular", "contents", "", ")",
        ")",
        "entry", "(", "name", "b", "node",
        "(", "type", "directory",
        "entry", "(", "name", "c", "node",
        "(", "type", "symlink", "target", "../a", ")",
        ")",
        ")",
        ")",
        ")",
    )


def test_children_sorted_by_bytes():
    source = FakeSource(Kind.DIRECTORY, [
        ("b", FakeSource(Kind.REGULAR)),
        (b"B", FakeSource(Kind.REGULAR)),
        ("a", FakeSource(Kind.REGULAR)),
    ])
    out = to_bytes(source)
    assert out.index(_str("B")) < out.index(_str("a")) < out.index(_str("b"))
    assert to_bytes(NodeSource(decode(io.BytesIO(out)))) == out


def test_executable_only_for_regular_files():
    source = FakeSource(Kind.DIRECTORY, [
        ("d", FakeSource(Kind.DIRECTORY, executable=True)),
        ("l", FakeSource(Kind.SYMLINK, target=b"d", executable=True)),
    ])
    assert _str("executable") not in to_bytes(source)


def test_round_trip():
    tree = Directory.from_unsorted([
        (b"bin", Directory.from_sorted([(b"hello", File(True, b"#!/bin/sh\necho hi\n"))])),
        (b"share", Directory.from_sorted([
            (b"doc", Directory()),
            (b"empty", File()),
            (b"link", Symlink(b"../bin/hello")),
        ])),
        (b"README", File(False, b"x" * 1000)),
    ])
    assert decode(io.BytesIO(to_bytes(NodeSource(tree)))) == tree


def test_round_trip_through_read_tree():
    source = FakeSource(Kind.DIRECTORY, [
        ("z", FakeSource(Kind.REGULAR, contents=b"zz", executable=True)),
        ("m", FakeSource(Kind.DIRECTORY, [("x", FakeSource(Kind.SYMLINK, target=b"/"))])),
    ])
    assert decode(io.BytesIO(to_bytes(source))) == read_tree(source)


def test_deterministic():
    def make():
        return FakeSource(Kind.DIRECTORY, [
            ("two", FakeSource(Kind.REGULAR, contents=b"2")),
            ("one", FakeSource(Kind.REGULAR, contents=b"1")),
        ])

    reversed_listing = FakeSource(Kind.DIRECTORY, list(reversed(make().list_children())))
    assert to_bytes(make()) == to_bytes(make()) == to_bytes(reversed_listing)


@pytest.mark.parametrize("name", ["", ".", "..", "a/b", "a\0b"])
def test_rejects_bad_names(name):
    source = FakeSource(Kind.DIRECTORY, [(name, FakeSource(Kind.REGULAR))])
    with pytest.raises(InvalidEntryName):
        to_bytes(source)


def test_rejects_duplicate_names():
    source = FakeSource(Kind.DIRECTORY, [
        ("x", FakeSource(Kind.REGULAR)),
        (b"x", FakeSource(Kind.SYMLINK, target=b"y")),
    ])
    with pytest.raises(UnsortedEntries):
        to_bytes(source)


@pytest.mark.parametrize("op,kind", [
    ("kind", Kind.REGULAR),
    ("open_content", Kind.REGULAR),
    ("read_link_target", Kind.SYMLINK),
    ("list_children", Kind.DIRECTORY),
])
def test_source_errors(op, kind):
    source = FakeSource(Kind.DIRECTORY, [("sub", FakeSource(kind, fail=op))])
    with pytest.raises(SourceReadError) as exc:
        to_bytes(source)
    assert exc.value.path == b"sub"
    assert isinstance(exc.value.__cause__, PermissionError)


def test_file_shrinks_while_reading():
    class Shrinking(FakeSource):
        def open_content(self):
            return 10, io.BytesIO(b"abc")

    with pytest.raises(SourceReadError):
        to_bytes(Shrinking(Kind.REGULAR))


def test_sink_errors():
    class BrokenPipe:
        def __init__(self):
            self.written = 0

        def write(self, data):
            self.written += 1
            if self.written > 3:
                raise BrokenPipeError(32, "Broken pipe")

    with pytest.raises(SinkWriteError):
        encode(BrokenPipe(), NodeSource(File(False, b"data")))


def test_deep_tree_does_not_recurse():
    tree = File(False, b"leaf")
    for _ in range(3000):
        tree = Directory.from_sorted([(b"d", tree)])
    out = to_bytes(NodeSource(tree))
    assert out.count(_str("entry")) == 3000
