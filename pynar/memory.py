"""Source and destination trees backed by Node objects instead of a filesystem."""

import io
from typing import BinaryIO

from pynar.node import Directory, File, Kind, Node, Symlink
from pynar.policy import Attributes


class NodeSource:
    """Expose a Node tree through the SourceTree protocol."""

    def __init__(self, node: Node):
        self.node = node

    def kind(self) -> Kind:
        return self.node.kind

    def is_executable(self) -> bool:
        return isinstance(self.node, File) and self.node.executable

    def open_content(self) -> tuple[int, BinaryIO]:
        return len(self.node.contents), io.BytesIO(self.node.contents)

    def read_link_target(self) -> bytes:
        return self.node.target

    def list_children(self):
        return [(name, NodeSource(child)) for name, child in self.node.entries.items()]


class TreeDestination:
    """Collect unpacked entries into a Node tree, available as `root`.

    Entries must arrive in archive order, parents first.
    """

    def __init__(self):
        self.root: Node | None = None
        self._directories: dict[bytes, Directory] = {}
        # attributes the policy asked for, by path
        self.attributes: dict[bytes, Attributes] = {}

    def _attach(self, path: bytes, node: Node) -> None:
        if not path:
            self.root = node
            return
        parent, _, name = path.rpartition(b"/")
        self._directories[parent].add(name, node)

    def create_directory(self, path: bytes) -> None:
        d = Directory()
        self._attach(path, d)
        self._directories[path] = d

    def create_file(self, path: bytes, executable: bool, content: BinaryIO) -> None:
        self._attach(path, File(executable, content.read()))

    def create_symlink(self, path: bytes, target: bytes) -> None:
        self._attach(path, Symlink(target))

    def apply_attributes(self, path: bytes, kind: Kind, attributes: Attributes) -> None:
        self.attributes[path] = attributes
