"""Shared test fixtures for workspace-index."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from workspace_index.config import IndexConfig, save_config
from workspace_index.merkle import MerkleTree


@pytest.fixture
def cli_runner():
    """Click CLI test runner."""
    return CliRunner()


def setup_wsi_workspace(workspace_root: Path, config: IndexConfig | None = None) -> IndexConfig:
    """Initialize a wsi workspace at the given path without going through the CLI."""
    if config is None:
        config = IndexConfig()
    save_config(config, workspace_root)
    return config


@pytest.fixture
def initialized_workspace(tmp_path: Path) -> Path:
    """A temporary workspace with wsi initialized."""
    setup_wsi_workspace(tmp_path)
    return tmp_path


def build_tree(files: dict[str, tuple[float, int]], workspace: str = "/w") -> MerkleTree:
    """Build a tree directly from a {path: (mtime, size)} mapping."""
    tree = MerkleTree(workspace)
    for path, (mtime, size) in files.items():
        tree.upsert_file(path, mtime, size)
    return tree


@pytest.fixture
def sample_files() -> dict[str, tuple[float, int]]:
    """
    A small workspace layout.

    Structure:
        root_file.py
        level1/
            file1.py
            level2/
                file2.py
                level3/
                    file3.py
        sibling/
            sibling1.py
            sibling2.py
    """
    return {
        "root_file.py": (100, 10),
        "level1/file1.py": (101, 11),
        "level1/level2/file2.py": (102, 12),
        "level1/level2/level3/file3.py": (103, 13),
        "sibling/sibling1.py": (104, 14),
        "sibling/sibling2.py": (105, 15),
    }


@pytest.fixture
def sample_tree(sample_files) -> MerkleTree:
    return build_tree(sample_files)
