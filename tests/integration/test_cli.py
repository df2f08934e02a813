"""Integration tests for the wsi command line."""

import json
from pathlib import Path

import httpx
import pytest

from tests.conftest import build_tree, setup_wsi_workspace
from workspace_index import cli
from workspace_index.api_embeddings import ApiEmbeddingProvider
from workspace_index.cli import main
from workspace_index.config import IndexConfig, load_config
from workspace_index.snapshot import SnapshotStore


@pytest.fixture
def in_workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return Path.cwd()


@pytest.fixture
def in_initialized_workspace(initialized_workspace, monkeypatch):
    monkeypatch.chdir(initialized_workspace)
    return Path.cwd()


class TestCLIEntry:
    def test_version_flag(self, cli_runner):
        result = cli_runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "wsi" in result.output
        assert "0.1.0" in result.output

    def test_help_flag(self, cli_runner):
        result = cli_runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Workspace Index" in result.output
        for command in ("init", "status", "show", "diff", "test-provider", "clean"):
            assert command in result.output


class TestInit:
    def test_creates_config_and_gitignore(self, cli_runner, in_workspace):
        result = cli_runner.invoke(main, ["init", "--embedding", "api"])

        assert result.exit_code == 0
        assert "Initialized Workspace Index" in result.output
        assert load_config(in_workspace).embedding_provider == "api"
        assert ".workspace-index/" in (in_workspace / ".gitignore").read_text()

    def test_refuses_to_overwrite(self, cli_runner, in_workspace):
        cli_runner.invoke(main, ["init"])
        result = cli_runner.invoke(main, ["init"])
        assert result.exit_code == 1

        result = cli_runner.invoke(main, ["init", "--force"])
        assert result.exit_code == 0

    def test_gitignore_entry_not_duplicated(self, cli_runner, in_workspace):
        (in_workspace / ".gitignore").write_text("node_modules/\n.workspace-index/\n")
        cli_runner.invoke(main, ["init"])
        assert (in_workspace / ".gitignore").read_text().count(".workspace-index") == 1


class TestStatusAndShow:
    def test_requires_init(self, cli_runner, in_workspace):
        assert cli_runner.invoke(main, ["status"]).exit_code == 1
        assert cli_runner.invoke(main, ["show"]).exit_code == 1

    def test_status_without_snapshot(self, cli_runner, in_initialized_workspace):
        result = cli_runner.invoke(main, ["status"])
        assert result.exit_code == 0
        assert "local" in result.output
        assert "None" in result.output

    def test_status_shows_configured_provider(self, cli_runner, in_workspace, monkeypatch):
        monkeypatch.delenv("WSI_EMBEDDING_PROVIDER", raising=False)
        monkeypatch.delenv("WSI_EMBEDDING_MODEL", raising=False)
        setup_wsi_workspace(
            in_workspace, IndexConfig(embedding_provider="api", embedding_model="text-embedding-3-large")
        )

        result = cli_runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert "text-embedding-3-large" in result.output

    def test_show_snapshot(self, cli_runner, in_initialized_workspace, sample_files):
        tree = build_tree(sample_files, workspace=str(in_initialized_workspace))
        SnapshotStore(in_initialized_workspace / ".workspace-index").save(tree)

        result = cli_runner.invoke(main, ["show"])

        assert result.exit_code == 0
        assert tree.root_hash in result.output
        assert "level1/level2/file2.py" in result.output
        assert "Files: 6" in result.output

    def test_show_without_snapshot(self, cli_runner, in_initialized_workspace):
        result = cli_runner.invoke(main, ["show"])
        assert result.exit_code == 0
        assert "No snapshot" in result.output


class TestDiff:
    def write_trees(self, directory: Path, sample_files):
        old = build_tree(sample_files)
        new = build_tree(sample_files)
        new.upsert_file("added.py", 1, 1)
        new.delete_node("root_file.py")
        old_path = directory / "old.json"
        new_path = directory / "new.json"
        old_path.write_text(old.serialize())
        new_path.write_text(new.serialize())
        return old_path, new_path

    def test_table_output(self, cli_runner, tmp_path, sample_files):
        old_path, new_path = self.write_trees(tmp_path, sample_files)
        result = cli_runner.invoke(main, ["diff", str(old_path), str(new_path)])
        assert result.exit_code == 0
        assert "added.py" in result.output
        assert "root_file.py" in result.output
        assert "2 change(s)" in result.output

    def test_json_output(self, cli_runner, tmp_path, sample_files):
        old_path, new_path = self.write_trees(tmp_path, sample_files)
        result = cli_runner.invoke(main, ["diff", str(old_path), str(new_path), "--json"])
        assert result.exit_code == 0
        changes = {c["path"]: c for c in json.loads(result.output)}
        assert changes["added.py"]["type"] == "add"
        assert "newHash" in changes["added.py"]
        assert changes["root_file.py"]["type"] == "delete"
        assert "oldHash" in changes["root_file.py"]

    def test_identical(self, cli_runner, tmp_path, sample_files):
        old_path, _ = self.write_trees(tmp_path, sample_files)
        result = cli_runner.invoke(main, ["diff", str(old_path), str(old_path)])
        assert result.exit_code == 0
        assert "identical" in result.output

    def test_accepts_snapshot_files(self, cli_runner, tmp_path, sample_files):
        store = SnapshotStore(tmp_path)
        store.save(build_tree(sample_files, workspace="/a"))
        changed = build_tree(sample_files, workspace="/b")
        changed.upsert_file("root_file.py", 999, 10)
        store.save(changed)

        result = cli_runner.invoke(
            main, ["diff", str(store.snapshot_path("/a")), str(store.snapshot_path("/b")), "--json"]
        )

        assert result.exit_code == 0
        assert [c["type"] for c in json.loads(result.output)] == ["modify"]

    def test_corrupt_input(self, cli_runner, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("[1, 2")
        result = cli_runner.invoke(main, ["diff", str(bad), str(bad)])
        assert result.exit_code == 1


class TestTestProvider:
    def install_provider(self, monkeypatch, handler):
        def factory(config: IndexConfig):
            client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
            return ApiEmbeddingProvider(
                "text-embedding-3-small",
                base_url="https://example.test/v1",
                name="openai",
                retry_base_delay=0,
                client=client,
            )

        monkeypatch.setattr(cli, "get_embedding_provider", factory)

    def test_success(self, cli_runner, in_workspace, monkeypatch):
        self.install_provider(
            monkeypatch,
            lambda request: httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1] * 8}]}),
        )
        result = cli_runner.invoke(main, ["test-provider"])
        assert result.exit_code == 0
        assert "Provider OK" in result.output
        assert "8 dimensions" in result.output

    def test_failure_exits_nonzero(self, cli_runner, in_workspace, monkeypatch):
        self.install_provider(monkeypatch, lambda request: httpx.Response(401, text="bad key"))
        result = cli_runner.invoke(main, ["test-provider"])
        assert result.exit_code == 1


class TestClean:
    def test_removes_directory(self, cli_runner, in_initialized_workspace):
        result = cli_runner.invoke(main, ["clean", "--force"])
        assert result.exit_code == 0
        assert not (in_initialized_workspace / ".workspace-index").exists()

    def test_nothing_to_clean(self, cli_runner, in_workspace):
        result = cli_runner.invoke(main, ["clean", "--force"])
        assert result.exit_code == 0
        assert "Nothing to clean" in result.output
