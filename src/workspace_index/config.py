"""Configuration management for Workspace Index."""

import json
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from . import CONFIG_FILE, WSI_DIR

ProviderName = Literal["local", "api"]


class IndexConfig(BaseModel):
    """Configuration for Workspace Index."""

    version: int = 1
    embedding_provider: ProviderName = "local"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"

    # Remote (OpenAI-compatible) endpoint
    api_name: str = "openai"
    api_base_url: str = "https://api.openai.com/v1"
    api_key: str = ""

    # Input slicing and batching for the remote provider
    max_input_chars: int = Field(default=8000, ge=1)
    max_batch_chars: int = Field(default=16000, ge=1)

    # Retry policy for the remote provider
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=8.0, ge=0)
    request_timeout: float = Field(default=30.0, gt=0)

    # Local model download location (None uses fastembed's default)
    cache_dir: str | None = None


# Model configurations for each provider
EMBEDDING_MODELS = {
    "local": {
        "default": "sentence-transformers/all-MiniLM-L6-v2",
        "dimensions": 384,
    },
    "api": {
        "default": "text-embedding-3-small",
        "dimensions": 1536,
    },
}


def get_wsi_dir(workspace_root: Path) -> Path:
    """Get the .workspace-index directory path."""
    return workspace_root / WSI_DIR


def get_config_path(workspace_root: Path) -> Path:
    """Get the config file path."""
    return get_wsi_dir(workspace_root) / CONFIG_FILE


def load_config(workspace_root: Path) -> IndexConfig:
    """Load configuration from the workspace's config file.

    Falls back to defaults if file doesn't exist.
    Environment variables can override config values.
    """
    config_path = get_config_path(workspace_root)

    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)
        config = IndexConfig.model_validate(data)
    else:
        config = IndexConfig()

    return _apply_env_overrides(config)


def save_config(config: IndexConfig, workspace_root: Path) -> None:
    """Save configuration to the workspace's config file."""
    config_path = get_config_path(workspace_root)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(config.model_dump(), f, indent=2)


def create_default_config(embedding_provider: ProviderName = "local") -> IndexConfig:
    """Create a default configuration with the specified embedding provider."""
    return IndexConfig(
        embedding_provider=embedding_provider,
        embedding_model=EMBEDDING_MODELS[embedding_provider]["default"],
    )


def _apply_env_overrides(config: IndexConfig) -> IndexConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    # WSI_EMBEDDING_PROVIDER
    if provider := os.environ.get("WSI_EMBEDDING_PROVIDER"):
        if provider in EMBEDDING_MODELS:
            data["embedding_provider"] = provider
            data["embedding_model"] = EMBEDDING_MODELS[provider]["default"]

    # WSI_EMBEDDING_MODEL
    if model := os.environ.get("WSI_EMBEDDING_MODEL"):
        data["embedding_model"] = model

    if base_url := os.environ.get("WSI_API_BASE_URL"):
        data["api_base_url"] = base_url

    if api_key := os.environ.get("WSI_API_KEY"):
        data["api_key"] = api_key

    return IndexConfig.model_validate(data)
