"""Merkle tree implementation for change detection in Workspace Index."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, NamedTuple

from .errors import PathConflictError, TreeCorruptedError
from .nodes import DirectoryNode, FileNode, TreeNode, parse_path_segments

logger = logging.getLogger(__name__)

ChangeType = Literal["add", "modify", "delete"]


class FileStat(NamedTuple):
    """Filesystem metadata for one file, as supplied by a directory scan."""

    mtime: float
    size: int


@dataclass
class FileChange:
    """A single file-level change emitted by the tree or the differ."""

    path: str
    type: ChangeType
    old_hash: str | None = None  # Set for modify/delete
    new_hash: str | None = None  # Set for add/modify
    replaced: list[str] = field(default_factory=list)  # Files dropped when a file replaced a directory

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the camelCase keys consumers expect."""
        result: dict[str, Any] = {"path": self.path, "type": self.type}
        if self.old_hash is not None:
            result["oldHash"] = self.old_hash
        if self.new_hash is not None:
            result["newHash"] = self.new_hash
        return result


class MerkleTree:
    """In-memory mirror of a workspace's file hierarchy.

    Every mutation recomputes the hashes from the touched directory up to the
    root before returning, so the tree is never observed with stale ancestors.
    """

    def __init__(self, workspace_path: str):
        self.workspace_path = workspace_path
        self.root = DirectoryNode("", "")

    @property
    def root_hash(self) -> str:
        return self.root.hash

    def get_node(self, path: str) -> TreeNode | None:
        """Look up a node by relative path. Empty path or "." returns the root."""
        if not path or path == ".":
            return self.root

        current: TreeNode = self.root
        for segment in parse_path_segments(path):
            if not isinstance(current, DirectoryNode):
                return None
            child = current.get_child(segment)
            if child is None:
                return None
            current = child
        return current

    def upsert_file(self, path: str, mtime: float, size: int) -> FileChange | None:
        """
        Add or update a file node.

        Missing ancestor directories are created. A directory already present
        at the file's own name is replaced by the file and its subtree dropped;
        the dropped file paths are listed in ``FileChange.replaced``.

        Returns:
            The resulting change, or None if (mtime, size) are unchanged

        Raises:
            PathConflictError: If an ancestor segment exists as a file
        """
        segments = parse_path_segments(path)
        if not segments:
            return None

        file_name = segments.pop()
        parent_dir = self._ensure_directory(segments)
        file_path = "/".join([*segments, file_name])

        existing = parent_dir.get_child(file_name)
        change: FileChange | None = None

        if isinstance(existing, FileNode):
            if existing.mtime != mtime or existing.size != size:
                old_hash = existing.hash
                existing.mtime = mtime
                existing.size = size
                existing.update_hash()
                change = FileChange(
                    path=file_path, type="modify", old_hash=old_hash, new_hash=existing.hash
                )
        else:
            replaced: list[str] = []
            if existing is not None:
                replaced = [node.path for node in existing.iter_files()]
                logger.warning(
                    "Directory %s replaced by a file, dropping %d file(s) below it",
                    file_path,
                    len(replaced),
                )
                parent_dir.remove_child(file_name)

            new_file = FileNode(file_name, file_path, mtime, size)
            parent_dir.add_child(new_file)
            change = FileChange(
                path=file_path, type="add", new_hash=new_file.hash, replaced=replaced
            )

        if change is not None:
            parent_dir.update_hash_to_root()
        return change

    def delete_node(self, path: str) -> FileChange | None:
        """
        Remove a node and prune directories left empty.

        Returns:
            A delete change carrying the node's hash before removal, or None
            if nothing exists at the path. The root is never removed.
        """
        segments = parse_path_segments(path)
        if not segments:
            return None

        node_name = segments.pop()
        parent = self.get_node("/".join(segments))
        if not isinstance(parent, DirectoryNode):
            return None

        node = parent.get_child(node_name)
        if node is None:
            return None

        old_hash = node.hash
        parent.remove_child(node_name)

        # Prune empty ancestors, stopping at the root
        directory = parent
        while directory is not self.root and not directory.children:
            grandparent = directory.parent
            if grandparent is None:
                break
            grandparent.remove_child(directory.name)
            directory = grandparent
        directory.update_hash_to_root()

        return FileChange(path=node.path, type="delete", old_hash=old_hash)

    def detect_changes(
        self,
        paths: Iterable[str],
        stats_by_path: Mapping[str, FileStat | tuple[float, int] | None],
    ) -> list[FileChange]:
        """
        Bring the tree in line with fresh filesystem metadata.

        Paths missing from ``stats_by_path`` (or mapped to None) are treated as
        deleted, the rest as upserts. Changes are returned in input order.
        """
        changes: list[FileChange] = []
        for path in paths:
            stat = stats_by_path.get(path)
            if stat is None:
                change = self.delete_node(path)
            else:
                mtime, size = stat
                change = self.upsert_file(path, mtime, size)
            if change is not None:
                changes.append(change)
        return changes

    def get_all_file_paths(self) -> list[str]:
        """Every file path in the tree, depth-first."""
        return [node.path for node in self.root.iter_files()]

    def clear(self) -> None:
        """Drop everything, leaving an empty root."""
        self.root = DirectoryNode("", "")

    def to_dict(self) -> dict[str, Any]:
        """Serialize the tree to the compact {t, n, p, h, m?, s?, c?} structure."""
        return _node_to_dict(self.root)

    @classmethod
    def from_dict(cls, workspace_path: str, data: Any) -> MerkleTree:
        """Build a tree from a serialized structure. Hashes are trusted as-is."""
        tree = cls(workspace_path)
        tree.root = _root_from_dict(data)
        return tree

    def serialize(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    def deserialize(self, data: str) -> None:
        """
        Replace the whole tree with a serialized one.

        The new root is fully built before it is swapped in, so a failure
        leaves the current tree untouched.

        Raises:
            TreeCorruptedError: If the data is not a valid serialized tree
        """
        try:
            parsed = json.loads(data)
        except (TypeError, ValueError) as e:
            raise TreeCorruptedError(f"Serialized tree is not valid JSON: {e}") from e
        self.root = _root_from_dict(parsed)

    def _ensure_directory(self, segments: list[str]) -> DirectoryNode:
        """Walk (creating as needed) the directories named by segments."""
        current = self.root
        current_path = ""
        for segment in segments:
            current_path = f"{current_path}/{segment}" if current_path else segment
            child = current.get_child(segment)
            if child is None:
                child = DirectoryNode(segment, current_path)
                current.add_child(child)
            elif not isinstance(child, DirectoryNode):
                raise PathConflictError(current_path)
            current = child
        return current


def _node_to_dict(node: TreeNode) -> dict[str, Any]:
    if isinstance(node, FileNode):
        return {
            "t": "f",
            "n": node.name,
            "p": node.path,
            "h": node.hash,
            "m": node.mtime,
            "s": node.size,
        }
    assert isinstance(node, DirectoryNode)
    return {
        "t": "d",
        "n": node.name,
        "p": node.path,
        "h": node.hash,
        "c": [_node_to_dict(child) for child in node.children.values()],
    }


def _root_from_dict(data: Any) -> DirectoryNode:
    root = _node_from_dict(data, "$")
    if not isinstance(root, DirectoryNode):
        raise TreeCorruptedError("Serialized tree root must be a directory")
    return root


def _require(data: dict[str, Any], key: str, kind: type | tuple[type, ...], where: str) -> Any:
    value = data.get(key)
    if not isinstance(value, kind) or isinstance(value, bool):
        raise TreeCorruptedError(f"Invalid or missing '{key}' at {where}", details=data.get(key))
    return value


def _node_from_dict(data: Any, where: str) -> TreeNode:
    """Rebuild a node recursively without recomputing hashes."""
    if not isinstance(data, dict):
        raise TreeCorruptedError(f"Expected an object at {where}")

    kind = data.get("t")
    name = _require(data, "n", str, where)
    path = _require(data, "p", str, where)
    node_hash = _require(data, "h", str, where)

    if kind == "f":
        node: TreeNode = FileNode(
            name,
            path,
            _require(data, "m", (int, float), where),
            _require(data, "s", int, where),
        )
        node.hash = node_hash
        return node

    if kind != "d":
        raise TreeCorruptedError(f"Unknown node type {kind!r} at {where}")

    directory = DirectoryNode(name, path)
    children = data.get("c", [])
    if not isinstance(children, list):
        raise TreeCorruptedError(f"Invalid 'c' at {where}")
    for index, child_data in enumerate(children):
        child = _node_from_dict(child_data, f"{where}.c[{index}]")
        if child.name in directory.children:
            raise TreeCorruptedError(f"Duplicate child {child.name!r} at {where}")
        directory.add_child(child)
    directory.hash = node_hash
    return directory
