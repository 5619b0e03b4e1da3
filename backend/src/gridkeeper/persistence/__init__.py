"""Persistence layer - engine configuration, entity tables and descriptor execution."""

from gridkeeper.persistence.config import DatabaseConfig, create_db_engine
from gridkeeper.persistence.executor import QueryExecutor
from gridkeeper.persistence.tables import EntityTables

__all__ = ["DatabaseConfig", "EntityTables", "QueryExecutor", "create_db_engine"]
