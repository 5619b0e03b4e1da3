"""Application configuration resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from gridkeeper.persistence.config import DatabaseConfig


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{value}'") from None


@dataclass
class GridConfig:
    """Runtime settings for the query service.

    Attributes:
        database: Database connection settings
        metadata_path: Directory holding ``entities/*.yaml`` (None = packaged definitions)
        access_cache_ttl: Seconds a resolved access set is served from cache
        default_page_size: Page size used when a request does not specify one
        max_page_size: Upper bound applied to requested page sizes
    """

    database: DatabaseConfig = field(default_factory=lambda: DatabaseConfig(url="sqlite://"))
    metadata_path: Path | None = None
    access_cache_ttl: int = 300
    default_page_size: int = 25
    max_page_size: int = 500

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> GridConfig:
        """Create config from environment variables.

        Reads DATABASE_URL / GRIDKEEPER_DB_PATH (see DatabaseConfig),
        GRIDKEEPER_METADATA_PATH, GRIDKEEPER_ACCESS_CACHE_TTL,
        GRIDKEEPER_DEFAULT_PAGE_SIZE and GRIDKEEPER_MAX_PAGE_SIZE.
        """
        metadata_path = os.environ.get("GRIDKEEPER_METADATA_PATH")
        config = cls(
            database=DatabaseConfig.from_env(base_path),
            metadata_path=Path(metadata_path) if metadata_path else None,
            access_cache_ttl=_env_int("GRIDKEEPER_ACCESS_CACHE_TTL", 300),
            default_page_size=_env_int("GRIDKEEPER_DEFAULT_PAGE_SIZE", 25),
            max_page_size=_env_int("GRIDKEEPER_MAX_PAGE_SIZE", 500),
        )
        if config.max_page_size < 1 or config.default_page_size < 1:
            raise ValueError("Page sizes must be positive")
        if config.access_cache_ttl < 0:
            raise ValueError("GRIDKEEPER_ACCESS_CACHE_TTL must not be negative")
        return config
