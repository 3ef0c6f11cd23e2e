from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PagedGraphSettings(BaseSettings):
    """Unified configuration for the paged graph store.

    Environment variables are prefixed with PAGED_GRAPH_.
    """

    model_config = SettingsConfigDict(env_prefix="PAGED_GRAPH_", extra="ignore")

    # --- Core ---
    log_level: str = Field(default="INFO", description="Python logging level")
    backend: str = Field(default="memory", description="memory|arango")

    # --- ArangoDB ---
    arango_url: str = Field(default="http://localhost:8529")
    arango_username: str = Field(default="root")
    arango_password: str = Field(default="")
    arango_database: str = Field(default="paged_graph")
    collection_prefix: str = Field(default="mcp_memory")

    # --- Connection retry ---
    connect_attempts: int = Field(default=5, ge=1)
    connect_backoff_initial: float = Field(default=0.5, ge=0.0)
    connect_backoff_max: float = Field(default=10.0, ge=0.0)
    connect_backoff_jitter: float = Field(default=1.0, ge=0.0)

    # --- Summary index ---
    summary_queue_size: int = Field(default=1024, ge=1)
    summary_recent_limit: int = Field(default=10, ge=1)
    summary_term_limit: int = Field(default=20, ge=0)
    summary_term_sample: int = Field(default=500, ge=1)

    # --- Queries ---
    search_default_limit: int = Field(default=20, ge=1)
    traversal_timeout: float | None = Field(default=None, description="Seconds; unset means no limit")

    # --- HTTP ---
    bind_host: str = "0.0.0.0"
    bind_port: int = 8089
    api_key: str | None = Field(default=None, description="If set, require X-API-Key")


settings = PagedGraphSettings()
