"""Shared settings loaded from environment / .env file."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration for the forgevault registry.

    Values are read from environment variables and from a ``.env`` file
    in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Shared
    log_level: str = "INFO"
    base_url: str = "http://localhost:8000"  # prefix for content_url / manifest_url

    # Content store
    blob_backend: Literal["filesystem", "memory"] = "filesystem"
    blob_root: str = ".forgevault/blobs"

    # Relational index
    database_url: str = "sqlite+aiosqlite:///.forgevault/index.db"

    # Vector index / embeddings
    embedding_url: str | None = None  # OpenAI-compatible base URL; unset = local hashing
    embedding_model: str = "text-embedding-3-small"
    embedding_api_key: str | None = None
    embedding_dimensions: int = 768
    embedding_timeout_seconds: float = 30.0
    embedding_sample_chars: int = 1000
    search_default_limit: int = 10

    # Batch operations
    reindex_page_size: int = 100
    reindex_on_startup: bool = True  # the vector backend is in-memory

    # Drafts
    draft_max_age_hours: int = 48
    draft_cleanup_interval_seconds: int = 0  # 0 disables the background janitor

    # MCP
    mcp_transport: str = "stdio"
    mcp_server_host: str = "localhost"
    mcp_server_port: int = 9000
