"""Persisted Merkle tree snapshots, one file per workspace."""

from __future__ import annotations

import base64
import json
import logging
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, ValidationError

from . import SNAPSHOT_DIR, SNAPSHOT_VERSION
from .errors import TreeCorruptedError
from .merkle import MerkleTree

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(days=30)


class Snapshot(BaseModel):
    """A serialized tree plus the metadata needed to trust it."""

    version: int = SNAPSHOT_VERSION
    workspace_path: str
    created_at: datetime
    updated_at: datetime
    tree: str  # MerkleTree.serialize() output


class SnapshotMetadata(BaseModel):
    created_at: datetime
    updated_at: datetime


class SnapshotStore:
    """Saves and loads MerkleTree snapshots under a cache directory."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir) / SNAPSHOT_DIR

    def snapshot_path(self, workspace_path: str) -> Path:
        """File holding the snapshot for a workspace (base64url-encoded name)."""
        encoded = base64.urlsafe_b64encode(workspace_path.encode()).decode().rstrip("=")
        return self.cache_dir / f"{encoded}.json"

    def save(self, tree: MerkleTree) -> Snapshot:
        """Write the tree atomically (temp file, then rename)."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self.snapshot_path(tree.workspace_path)

        now = datetime.now(UTC)
        created_at = now
        try:
            existing = self._read(path)
        except TreeCorruptedError as e:
            logger.warning("Overwriting unreadable snapshot: %s", e)
            existing = None
        if existing is not None and existing.workspace_path == tree.workspace_path:
            created_at = existing.created_at

        snapshot = Snapshot(
            workspace_path=tree.workspace_path,
            created_at=created_at,
            updated_at=now,
            tree=tree.serialize(),
        )

        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(snapshot.model_dump(mode="json"), f)
        os.replace(tmp_path, path)
        return snapshot

    def load(self, workspace_path: str) -> MerkleTree | None:
        """
        Load the stored tree for a workspace.

        Returns:
            The tree, or None if there is no usable snapshot (missing, written
            by another format version, or recorded for a different workspace)

        Raises:
            TreeCorruptedError: If the snapshot file is unreadable
        """
        path = self.snapshot_path(workspace_path)
        snapshot = self._read(path)
        if snapshot is None:
            return None

        if snapshot.version != SNAPSHOT_VERSION:
            logger.warning(
                "Snapshot version mismatch (%s vs %s), discarding %s",
                snapshot.version,
                SNAPSHOT_VERSION,
                path,
            )
            self.delete(workspace_path)
            return None

        if snapshot.workspace_path != workspace_path:
            logger.warning("Snapshot %s belongs to %s, ignoring", path, snapshot.workspace_path)
            return None

        tree = MerkleTree(workspace_path)
        tree.deserialize(snapshot.tree)
        return tree

    def delete(self, workspace_path: str) -> bool:
        """Remove a workspace's snapshot. Returns True if one existed."""
        path = self.snapshot_path(workspace_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def exists(self, workspace_path: str) -> bool:
        return self.snapshot_path(workspace_path).is_file()

    def get_metadata(self, workspace_path: str) -> SnapshotMetadata | None:
        try:
            snapshot = self._read(self.snapshot_path(workspace_path))
        except TreeCorruptedError:
            return None
        if snapshot is None:
            return None
        return SnapshotMetadata(created_at=snapshot.created_at, updated_at=snapshot.updated_at)

    def cleanup(self, max_age: timedelta = DEFAULT_MAX_AGE) -> int:
        """Delete snapshots not updated within max_age, and unreadable ones.

        Returns:
            Number of files removed
        """
        if not self.cache_dir.is_dir():
            return 0

        cutoff = datetime.now(UTC) - max_age
        removed = 0
        for path in self.cache_dir.glob("*.json"):
            try:
                snapshot = self._read(path)
            except TreeCorruptedError:
                snapshot = None
            if snapshot is None or snapshot.updated_at < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        return removed

    def list_workspaces(self) -> list[str]:
        """Workspace paths of every readable snapshot."""
        if not self.cache_dir.is_dir():
            return []

        workspaces = []
        for path in sorted(self.cache_dir.glob("*.json")):
            try:
                snapshot = self._read(path)
            except TreeCorruptedError:
                continue
            if snapshot is not None:
                workspaces.append(snapshot.workspace_path)
        return workspaces

    def _read(self, path: Path) -> Snapshot | None:
        if not path.exists():
            return None
        try:
            with open(path) as f:
                data = json.load(f)
            return Snapshot.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise TreeCorruptedError(f"Unreadable snapshot {path}: {e}") from e
