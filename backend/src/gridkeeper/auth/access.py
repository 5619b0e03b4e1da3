"""Resolve a principal's allowed columns and action permissions.

Effective access is role grants merged with per-user overrides (see
``merge_grants``), cached per principal with a TTL. Lookups fail closed:
a missing or suspended principal, or a database error, yields an empty
set and nothing is cached.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from gridkeeper.auth.cache import CacheService, TTLCache
from gridkeeper.auth.permissions import merge_grants
from gridkeeper.auth.store import AccessStore
from gridkeeper.metadata.registry import SchemaRegistry

logger = logging.getLogger(__name__)


class AccessResolver:
    """Computes effective access sets on demand."""

    def __init__(
        self,
        store: AccessStore,
        registry: SchemaRegistry,
        cache: CacheService | None = None,
    ):
        self._store = store
        self._registry = registry
        self._cache = cache if cache is not None else TTLCache()

    @property
    def cache(self) -> CacheService:
        return self._cache

    def resolve_columns(self, user_id: str, table: str) -> list[str]:
        """Allowed columns of ``table`` and its related tables, in schema order.

        Columns are canonical dotted paths: bare names for the root table,
        ``table.column`` for related tables.
        """
        entity = self._registry.get_entity(table)
        if entity is None:
            return []

        key = ("columns", user_id, entity.table.lower())
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Access cache hit for %s", key)
            return list(cached)

        try:
            principal = self._store.get_principal(user_id)
            if principal is None or principal.suspended:
                logger.warning("No column access for user '%s': unknown or suspended", user_id)
                return []
            reachable = self._registry.reachable_tables(entity.name)
            role_grants = self._store.role_resources(principal.role_id, reachable.keys())
            overrides = self._store.resource_overrides(user_id, reachable.keys())
        except SQLAlchemyError as e:
            logger.warning(
                "Column access lookup failed for user '%s' on '%s', failing closed: %s",
                user_id, table, e,
            )
            return []

        effective = {
            path
            for t, c in merge_grants(role_grants, overrides)
            if (path := self._registry.canonical(entity.name, f"{t}.{c}")) is not None
        }
        columns = [p for p in self._registry.column_paths(entity.name) if p in effective]

        self._cache.set(key, tuple(columns))
        return columns

    def resolve_permissions(self, user_id: str) -> frozenset[str]:
        """Effective action permission keys for a principal."""
        key = ("permissions", user_id)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Access cache hit for %s", key)
            return cached

        try:
            principal = self._store.get_principal(user_id)
            if principal is None or principal.suspended:
                logger.warning("No permissions for user '%s': unknown or suspended", user_id)
                return frozenset()
            role_permissions = self._store.role_permissions(principal.role_id)
            overrides = self._store.permission_overrides(user_id)
        except SQLAlchemyError as e:
            logger.warning(
                "Permission lookup failed for user '%s', failing closed: %s", user_id, e
            )
            return frozenset()

        permissions = frozenset(merge_grants(role_permissions, overrides))
        self._cache.set(key, permissions)
        return permissions
