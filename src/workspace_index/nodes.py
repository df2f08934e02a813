"""File and directory nodes for the workspace Merkle tree."""

from __future__ import annotations

import hashlib
import re
import weakref
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

HASH_LENGTH = 16

_SEPARATORS = re.compile(r"[/\\]")


class NodeType(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


def compute_hash(content: str) -> str:
    """MD5 of the content, truncated to HASH_LENGTH hex chars."""
    return hashlib.md5(content.encode()).hexdigest()[:HASH_LENGTH]


def parse_path_segments(path: str) -> list[str]:
    """Split a relative path on either separator, dropping empty segments."""
    return [segment for segment in _SEPARATORS.split(path) if segment]


def _format_number(value: float) -> str:
    # 1.0 and 1 must hash the same so JSON round-trips stay stable
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(eq=False)
class TreeNode:
    """Common part of file and directory nodes.

    The parent link is a weak reference: ownership flows from a directory's
    ``children`` mapping only, the parent link exists for hash propagation.
    """

    type: ClassVar[NodeType]

    name: str
    path: str  # Relative to workspace root, "/" separated
    hash: str = field(default="", init=False)
    _parent_ref: weakref.ReferenceType[DirectoryNode] | None = field(
        default=None, init=False, repr=False
    )

    @property
    def parent(self) -> DirectoryNode | None:
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    @parent.setter
    def parent(self, node: DirectoryNode | None) -> None:
        self._parent_ref = weakref.ref(node) if node is not None else None

    @property
    def is_file(self) -> bool:
        return self.type is NodeType.FILE

    @property
    def is_directory(self) -> bool:
        return self.type is NodeType.DIRECTORY

    def update_hash(self) -> None:
        raise NotImplementedError

    def iter_files(self) -> Iterator[FileNode]:
        """Depth-first iteration over every file at or below this node."""
        raise NotImplementedError


@dataclass(eq=False)
class FileNode(TreeNode):
    type: ClassVar[NodeType] = NodeType.FILE

    mtime: float = 0
    size: int = 0

    def __post_init__(self) -> None:
        self.update_hash()

    def update_hash(self) -> None:
        """Fingerprint from metadata only, no file read."""
        self.hash = compute_hash(
            f"{self.path}:{_format_number(self.mtime)}:{_format_number(self.size)}"
        )

    def iter_files(self) -> Iterator[FileNode]:
        yield self


@dataclass(eq=False)
class DirectoryNode(TreeNode):
    type: ClassVar[NodeType] = NodeType.DIRECTORY

    children: dict[str, TreeNode] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.update_hash()

    def add_child(self, node: TreeNode) -> None:
        node.parent = self
        self.children[node.name] = node

    def remove_child(self, name: str) -> TreeNode | None:
        child = self.children.pop(name, None)
        if child is not None:
            child.parent = None
        return child

    def get_child(self, name: str) -> TreeNode | None:
        return self.children.get(name)

    def update_hash(self) -> None:
        if not self.children:
            self.hash = compute_hash(f"empty:{self.path}")
            return

        joined = "|".join(
            f"{name}:{self.children[name].hash}" for name in sorted(self.children)
        )
        self.hash = compute_hash(joined)

    def update_hash_to_root(self) -> None:
        """Recompute this directory's hash and every ancestor's."""
        node: DirectoryNode | None = self
        while node is not None:
            node.update_hash()
            node = node.parent

    def iter_files(self) -> Iterator[FileNode]:
        for child in self.children.values():
            yield from child.iter_files()
