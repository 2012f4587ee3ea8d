"""Configuration management using Pydantic Settings."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field("INFO")
    log_format: str = Field("json", pattern="^(json|text)$")

    # Identity resolution. Hand-tuned; calibrate against a labeled set
    # before relying on them for production merges.
    duplicate_title_threshold: float = Field(
        0.85, ge=0.0, le=1.0,
        description="Title Jaccard similarity required when the first author also matches",
    )
    duplicate_title_strict_threshold: float = Field(
        0.95, ge=0.0, le=1.0,
        description="Title Jaccard similarity sufficient on its own (same year)",
    )

    # Relevance boosts
    author_boost_factor: float = Field(0.1, ge=0.0)
    author_boost_cap: float = Field(0.25, ge=0.0)
    cluster_boost_factor: float = Field(0.08, ge=0.0)
    cluster_boost_cap: float = Field(0.2, ge=0.0)
    cluster_boost_min_size: int = Field(3, ge=1)

    # Centrality
    pagerank_damping: float = Field(0.85, gt=0.0, lt=1.0)
    pagerank_iterations: int = Field(20, ge=1)

    # Community detection
    label_propagation_iterations: int = Field(15, ge=1)
    community_seed: Optional[int] = Field(
        0, description="Seed for the node visiting order; None draws a fresh order each run",
    )

    # Layout
    layout_iterations: int = Field(100, ge=1)
    incremental_layout_iterations: int = Field(60, ge=1)
    ego_cleanup_iterations: int = Field(40, ge=0)
    ego_ring_radius: float = Field(300.0, gt=0)
    ego_max_hops: int = Field(3, ge=1)
    layout_seed: int = Field(0)

    # Write queue
    write_queue_max_unknown_attempts: int = Field(3, ge=1, le=10)


# Instantiate global settings
settings = Settings()
