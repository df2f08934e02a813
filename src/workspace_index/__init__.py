"""Workspace Index - incremental change detection and embeddings for workspace indexing."""

__version__ = "0.1.0"

# Directory and file constants
WSI_DIR = ".workspace-index"
CONFIG_FILE = "config.json"
SNAPSHOT_DIR = "merkle-trees"
SNAPSHOT_VERSION = 1
