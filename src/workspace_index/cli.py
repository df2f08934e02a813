"""CLI for Workspace Index."""

import asyncio
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import Literal

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import WSI_DIR, __version__
from .config import create_default_config, get_wsi_dir, load_config, save_config
from .diff import TreeDiffer, summarize_changes
from .embeddings import get_embedding_provider
from .errors import IndexingError
from .merkle import MerkleTree
from .snapshot import SnapshotStore

console = Console()
error_console = Console(stderr=True)


def get_workspace_root() -> Path:
    """Get the workspace root directory (current working directory)."""
    return Path.cwd()


def is_initialized(workspace_root: Path) -> bool:
    """Check if wsi is initialized in the workspace."""
    return get_wsi_dir(workspace_root).exists()


def require_initialized(workspace_root: Path) -> None:
    """Exit with an error if wsi is not initialized."""
    if not is_initialized(workspace_root):
        error_console.print(
            "[red]Error:[/red] Not initialized. Run [bold]wsi init[/bold] first."
        )
        sys.exit(1)


def get_snapshot_store(workspace_root: Path) -> SnapshotStore:
    return SnapshotStore(get_wsi_dir(workspace_root))


@click.group()
@click.version_option(version=__version__, prog_name="wsi")
@click.option("--verbose", "-v", is_flag=True, help="Log retries, fallbacks and model loads")
def main(verbose: bool) -> None:
    """Workspace Index - incremental change detection and embeddings."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=error_console, show_path=False)],
        )


@main.command()
@click.option(
    "--embedding",
    type=click.Choice(["local", "api"]),
    default="local",
    help="Embedding provider to use",
)
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(embedding: Literal["local", "api"], force: bool) -> None:
    """Initialize wsi in the current workspace."""
    workspace_root = get_workspace_root()
    wsi_dir = get_wsi_dir(workspace_root)

    if wsi_dir.exists() and not force:
        error_console.print(
            f"[yellow]Warning:[/yellow] {WSI_DIR}/ already exists. Use --force to reinitialize."
        )
        sys.exit(1)

    wsi_dir.mkdir(parents=True, exist_ok=True)
    config = create_default_config(embedding)
    save_config(config, workspace_root)
    _update_gitignore(workspace_root)

    console.print(
        Panel(
            f"[green]Initialized Workspace Index[/green]\n\n"
            f"Embedding provider: [bold]{embedding}[/bold]\n"
            f"Embedding model: [bold]{config.embedding_model}[/bold]\n"
            f"Config directory: [dim]{wsi_dir}[/dim]",
            title="wsi init",
        )
    )


@main.command()
def status() -> None:
    """Show configuration and snapshot status."""
    workspace_root = get_workspace_root()
    require_initialized(workspace_root)

    config = load_config(workspace_root)
    store = get_snapshot_store(workspace_root)

    table = Table(title="Workspace Index Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("Workspace root", str(workspace_root))
    table.add_row("Embedding provider", config.embedding_provider)
    table.add_row("Embedding model", config.embedding_model)

    metadata = store.get_metadata(str(workspace_root))
    if metadata is None:
        table.add_row("Snapshot", "[yellow]None[/yellow]")
    else:
        table.add_row("Snapshot created", metadata.created_at.isoformat())
        table.add_row("Snapshot updated", metadata.updated_at.isoformat())

    console.print(table)


@main.command()
def show() -> None:
    """List the files recorded in the workspace's snapshot."""
    workspace_root = get_workspace_root()
    require_initialized(workspace_root)

    try:
        tree = get_snapshot_store(workspace_root).load(str(workspace_root))
    except IndexingError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if tree is None:
        console.print("[yellow]No snapshot for this workspace.[/yellow]")
        return

    paths = tree.get_all_file_paths()
    console.print(f"Root hash: [bold]{tree.root_hash}[/bold]")
    console.print(f"Files: {len(paths)}")
    for path in sorted(paths):
        console.print(f"  {path}")


@main.command()
@click.argument("old", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("new", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print changes as JSON")
def diff(old: Path, new: Path, as_json: bool) -> None:
    """Compare two serialized trees (or snapshot files)."""
    try:
        old_tree = _read_tree(old)
        new_tree = _read_tree(new)
    except IndexingError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    changes = TreeDiffer().find_changes(old_tree, new_tree)

    if as_json:
        click.echo(json.dumps([change.to_dict() for change in changes], indent=2))
        return

    summary = summarize_changes(changes)
    if not summary.has_changes:
        console.print("[green]Trees are identical.[/green]")
        return

    table = Table(title="Tree Changes")
    table.add_column("Change", style="cyan")
    table.add_column("Path")
    for path in summary.added:
        table.add_row("[green]add[/green]", path)
    for path in summary.modified:
        table.add_row("[yellow]modify[/yellow]", path)
    for path in summary.deleted:
        table.add_row("[red]delete[/red]", path)
    console.print(table)
    console.print(f"{summary.total_changes} change(s)")


@main.command("test-provider")
def test_provider() -> None:
    """Check that the configured embedding provider works."""
    workspace_root = get_workspace_root()
    config = load_config(workspace_root)

    try:
        provider = get_embedding_provider(config)
    except ValueError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    async def run():
        try:
            return await provider.test()
        finally:
            await provider.dispose()

    with console.status(f"Testing {provider.embedding_id}..."):
        result = asyncio.run(run())

    if result.success:
        console.print(
            f"[green]Provider OK[/green] ({provider.embedding_id}, {result.dimensions} dimensions)"
        )
    else:
        error_console.print(f"[red]Provider failed:[/red] {result.error}")
        sys.exit(1)


@main.command()
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt")
def clean(force: bool) -> None:
    """Remove the .workspace-index directory."""
    workspace_root = get_workspace_root()
    wsi_dir = get_wsi_dir(workspace_root)

    if not wsi_dir.exists():
        console.print(f"[dim]Nothing to clean - {WSI_DIR}/ does not exist.[/dim]")
        return

    if not force:
        if not click.confirm(f"Remove {wsi_dir}?"):
            console.print("[dim]Cancelled.[/dim]")
            return

    shutil.rmtree(wsi_dir)
    console.print(f"[green]Removed {WSI_DIR}/[/green]")


def _read_tree(path: Path) -> MerkleTree:
    """Load a tree from a raw serialized tree or a snapshot record."""
    text = path.read_text()
    tree = MerkleTree(str(path))
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict) and isinstance(data.get("tree"), str):
        tree.workspace_path = data.get("workspace_path", str(path))
        text = data["tree"]
    tree.deserialize(text)
    return tree


def _update_gitignore(workspace_root: Path) -> None:
    """Add .workspace-index/ to .gitignore if not already present."""
    gitignore_path = workspace_root / ".gitignore"
    entry = f"{WSI_DIR}/"

    if gitignore_path.exists():
        content = gitignore_path.read_text()
        if entry in content or WSI_DIR in content:
            return  # Already present
        with open(gitignore_path, "a") as f:
            f.write(f"\n# Workspace Index\n{entry}\n")
    else:
        gitignore_path.write_text(f"# Workspace Index\n{entry}\n")


if __name__ == "__main__":
    main()
