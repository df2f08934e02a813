"""Snapshot-to-snapshot comparison of Merkle trees."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from .merkle import FileChange, MerkleTree
from .nodes import DirectoryNode, FileNode, TreeNode


@dataclass
class ChangeSummary:
    """File paths grouped by change type."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        """Check if there are any changes."""
        return bool(self.added or self.modified or self.deleted)

    @property
    def total_changes(self) -> int:
        """Total number of changed files."""
        return len(self.added) + len(self.modified) + len(self.deleted)


def summarize_changes(changes: Iterable[FileChange]) -> ChangeSummary:
    summary = ChangeSummary()
    buckets = {"add": summary.added, "modify": summary.modified, "delete": summary.deleted}
    for change in changes:
        buckets[change.type].append(change.path)
    return summary


class TreeDiffer:
    """
    Computes file changes between two trees.

    Subtrees whose hashes match are skipped without being visited, so the
    cost follows the number of changed nodes rather than the tree size.
    """

    def __init__(self) -> None:
        self.nodes_visited = 0  # Node pairs compared during the last find_changes

    def is_identical(self, tree_a: MerkleTree, tree_b: MerkleTree) -> bool:
        return tree_a.root_hash == tree_b.root_hash

    def find_changes(self, old_tree: MerkleTree, new_tree: MerkleTree) -> list[FileChange]:
        """
        Compare an old tree with a newer one.

        Args:
            old_tree: The earlier snapshot (typically the persisted tree)
            new_tree: The later snapshot

        Returns:
            FileChange list: add/delete for files on one side only, modify
            for files whose hash differs
        """
        self.nodes_visited = 0
        changes: list[FileChange] = []

        if old_tree.root_hash == new_tree.root_hash:
            return changes

        self._compare_nodes(old_tree.root, new_tree.root, changes)
        return changes

    def _compare_nodes(
        self,
        old_node: TreeNode | None,
        new_node: TreeNode | None,
        changes: list[FileChange],
    ) -> None:
        self.nodes_visited += 1

        if old_node is None:
            if new_node is not None:
                _collect_files(new_node, "add", changes)
            return

        if new_node is None:
            _collect_files(old_node, "delete", changes)
            return

        # Quick check: if hashes match, entire subtree is unchanged
        if old_node.hash == new_node.hash:
            return

        # Handle type changes (file -> dir or dir -> file)
        if old_node.type is not new_node.type:
            _collect_files(old_node, "delete", changes)
            _collect_files(new_node, "add", changes)
            return

        if isinstance(old_node, FileNode):
            changes.append(
                FileChange(
                    path=new_node.path,
                    type="modify",
                    old_hash=old_node.hash,
                    new_hash=new_node.hash,
                )
            )
            return

        assert isinstance(old_node, DirectoryNode) and isinstance(new_node, DirectoryNode)
        for name in sorted(old_node.children.keys() | new_node.children.keys()):
            old_child = old_node.get_child(name)
            new_child = new_node.get_child(name)
            old_hash = old_child.hash if old_child is not None else None
            new_hash = new_child.hash if new_child is not None else None
            # Only descend into pairs whose hashes differ
            if old_hash != new_hash:
                self._compare_nodes(old_child, new_child, changes)


def _collect_files(
    node: TreeNode,
    change_type: Literal["add", "delete"],
    changes: list[FileChange],
) -> None:
    """Emit one change per file at or below node."""
    for file_node in node.iter_files():
        if change_type == "add":
            changes.append(FileChange(path=file_node.path, type="add", new_hash=file_node.hash))
        else:
            changes.append(FileChange(path=file_node.path, type="delete", old_hash=file_node.hash))
