"""Tests for file and directory nodes."""

import gc

from workspace_index.nodes import (
    HASH_LENGTH,
    DirectoryNode,
    FileNode,
    NodeType,
    compute_hash,
    parse_path_segments,
)


class TestComputeHash:
    def test_fixed_length_hex(self):
        digest = compute_hash("anything")
        assert len(digest) == HASH_LENGTH
        int(digest, 16)

    def test_deterministic(self):
        assert compute_hash("a:1:2") == compute_hash("a:1:2")
        assert compute_hash("a:1:2") != compute_hash("a:1:3")


class TestParsePathSegments:
    def test_splits_both_separators(self):
        assert parse_path_segments("a/b\\c.txt") == ["a", "b", "c.txt"]

    def test_drops_empty_segments(self):
        assert parse_path_segments("/a//b/") == ["a", "b"]
        assert parse_path_segments("") == []


class TestFileNode:
    def test_hash_is_metadata_fingerprint(self):
        """File hash is hash(path:mtime:size), not content."""
        node = FileNode("b.txt", "a/b.txt", 1, 10)
        assert node.type is NodeType.FILE
        assert node.hash == compute_hash("a/b.txt:1:10")

    def test_integral_float_mtime_hashes_like_int(self):
        assert FileNode("x", "x", 5.0, 1).hash == FileNode("x", "x", 5, 1).hash

    def test_fractional_mtime_changes_hash(self):
        assert FileNode("x", "x", 5.5, 1).hash != FileNode("x", "x", 5, 1).hash

    def test_same_metadata_different_path(self):
        assert FileNode("x", "a/x", 1, 1).hash != FileNode("x", "b/x", 1, 1).hash


class TestDirectoryNode:
    def test_empty_directory_sentinel_hash(self):
        directory = DirectoryNode("a", "a")
        assert directory.hash == compute_hash("empty:a")

    def test_empty_directories_differ_by_path(self):
        assert DirectoryNode("a", "a").hash != DirectoryNode("b", "b").hash

    def test_hash_is_order_independent(self):
        """Children are sorted by name before hashing."""
        first = DirectoryNode("d", "d")
        first.add_child(FileNode("b", "d/b", 1, 1))
        first.add_child(FileNode("a", "d/a", 1, 1))
        first.update_hash()

        second = DirectoryNode("d", "d")
        second.add_child(FileNode("a", "d/a", 1, 1))
        second.add_child(FileNode("b", "d/b", 1, 1))
        second.update_hash()

        assert first.hash == second.hash

    def test_hash_joins_name_and_child_hash(self):
        directory = DirectoryNode("d", "d")
        a = FileNode("a", "d/a", 1, 1)
        b = FileNode("b", "d/b", 2, 2)
        directory.add_child(b)
        directory.add_child(a)
        directory.update_hash()
        assert directory.hash == compute_hash(f"a:{a.hash}|b:{b.hash}")

    def test_add_and_remove_child_maintain_parent(self):
        directory = DirectoryNode("d", "d")
        child = FileNode("a", "d/a")
        directory.add_child(child)
        assert child.parent is directory
        assert directory.get_child("a") is child

        removed = directory.remove_child("a")
        assert removed is child
        assert child.parent is None
        assert directory.remove_child("a") is None

    def test_parent_link_does_not_own(self):
        """Dropping the only strong reference to a parent frees it."""
        child = FileNode("a", "d/a")
        directory = DirectoryNode("d", "d")
        directory.add_child(child)
        del directory
        gc.collect()
        assert child.parent is None

    def test_update_hash_to_root(self):
        root = DirectoryNode("", "")
        middle = DirectoryNode("m", "m")
        root.add_child(middle)
        leaf = FileNode("f", "m/f", 1, 1)
        middle.add_child(leaf)
        middle.update_hash_to_root()
        before = root.hash

        leaf.mtime = 2
        leaf.update_hash()
        middle.update_hash_to_root()

        assert root.hash != before
        assert root.hash == compute_hash(f"m:{middle.hash}")

    def test_iter_files_depth_first(self):
        root = DirectoryNode("", "")
        sub = DirectoryNode("s", "s")
        root.add_child(sub)
        sub.add_child(FileNode("x", "s/x"))
        root.add_child(FileNode("y", "y"))
        assert sorted(node.path for node in root.iter_files()) == ["s/x", "y"]
