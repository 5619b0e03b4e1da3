"""Database URL resolution and engine factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

DEFAULT_DB_NAME = "gridkeeper.db"


@dataclass
class DatabaseConfig:
    """Where entity rows, access grants and saved views live.

    ``sqlite://`` (file or in-memory) and ``postgresql://`` URLs are accepted.
    """

    url: str

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> DatabaseConfig:
        """Resolve the database URL.

        DATABASE_URL is used as-is when set. Otherwise GRIDKEEPER_DB_PATH
        names a SQLite file, falling back to ``data/gridkeeper.db`` under
        ``base_path`` (or the working directory).
        """
        if url := os.environ.get("DATABASE_URL"):
            return cls(url=url)

        if db_path := os.environ.get("GRIDKEEPER_DB_PATH"):
            return cls(url=f"sqlite:///{db_path}")

        location = base_path / "data" / DEFAULT_DB_NAME if base_path else Path(DEFAULT_DB_NAME)
        return cls(url=f"sqlite:///{location}")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith("postgresql")

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and self.url.replace("sqlite://", "").lstrip("/") in ("", ":memory:")

    @property
    def sqlalchemy_url(self) -> str:
        """The URL handed to SQLAlchemy; bare postgresql:// selects the psycopg 3 driver."""
        scheme = "postgresql://"
        if self.url.startswith(scheme):
            return "postgresql+psycopg://" + self.url[len(scheme):]
        return self.url


def create_db_engine(config: DatabaseConfig) -> Engine:
    """Build the engine every store shares.

    Raises:
        ValueError: For unsupported URL schemes.
    """
    if config.is_postgresql:
        return create_engine(config.sqlalchemy_url, pool_pre_ping=True)

    if not config.is_sqlite:
        raise ValueError(f"Unsupported database URL scheme: {config.url}")

    # Queries run in worker threads, so connections may not be pinned to one
    connect_args = {"check_same_thread": False}
    if config.is_memory:
        # A single shared connection, otherwise each checkout sees an empty database
        return create_engine("sqlite://", connect_args=connect_args, poolclass=StaticPool)

    Path(config.url.replace("sqlite:///", "", 1)).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(config.url, connect_args=connect_args)
