"""In-memory model of the filesystem objects a NAR can hold.

A NAR stores exactly three kinds of object. Nothing else survives
serialization: no timestamps, no owners, no permission bits beyond
"executable".

Directories keep their children in a dict whose insertion order is the
canonical NAR order: ascending by raw byte value of the name. Byte order, not
locale order, is what keeps archives identical across platforms: "B" sorts
before "a", and "a-b" before "a.b".
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Union

from pynar.errors import InvalidEntryName, UnsortedEntries


class Kind(Enum):
    REGULAR = "regular"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


@dataclass(frozen=True)
class File:
    executable: bool = False
    contents: bytes = b""

    kind = Kind.REGULAR


@dataclass(frozen=True)
class Symlink:
    target: bytes

    kind = Kind.SYMLINK


@dataclass
class Directory:
    entries: dict[bytes, "Node"] = field(default_factory=dict)

    kind = Kind.DIRECTORY

    def __post_init__(self):
        if self.entries:
            given, self.entries = self.entries, {}
            for name, node in given.items():
                self.add(name, node)

    def add(self, name: bytes, node: "Node") -> None:
        """Append a child. Names must arrive in strictly ascending order."""
        validate_name(name)
        if self.entries:
            last = next(reversed(self.entries))
            if name == last:
                raise UnsortedEntries(f"duplicate entry {name!r}")
            if name < last:
                raise UnsortedEntries(f"entry {name!r} sorts before {last!r}")
        self.entries[name] = node

    @classmethod
    def from_sorted(cls, pairs: Iterable[tuple[bytes, "Node"]]) -> "Directory":
        """Build from pairs already in canonical order; reject anything else."""
        d = cls()
        for name, node in pairs:
            d.add(name, node)
        return d

    @classmethod
    def from_unsorted(cls, pairs: Iterable[tuple[bytes, "Node"]]) -> "Directory":
        """Build from pairs in any order. Duplicate names are still rejected."""
        return cls.from_sorted(sorted(pairs, key=lambda p: p[0]))

    def __getitem__(self, name: bytes) -> "Node":
        return self.entries[name]

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


Node = Union[File, Directory, Symlink]


def validate_name(name: bytes) -> None:
    if not name:
        raise InvalidEntryName("empty entry name")
    if name in (b".", b".."):
        raise InvalidEntryName(f"reserved entry name {name!r}")
    if b"/" in name:
        raise InvalidEntryName(f"entry name {name!r} contains '/'")
    if b"\0" in name:
        raise InvalidEntryName(f"entry name {name!r} contains NUL")


def join(parent: bytes, name: bytes) -> bytes:
    """Archive path of a child; the root itself is b""."""
    return parent + b"/" + name if parent else name


def iter_nodes(root: Node) -> Iterator[tuple[bytes, Node]]:
    """Yield (path, node) for every node, parents before children, in NAR order."""
    stack: list[tuple[bytes, Node]] = [(b"", root)]
    while stack:
        path, node = stack.pop()
        yield path, node
        if isinstance(node, Directory):
            for name in reversed(node.entries):
                stack.append((join(path, name), node.entries[name]))
