"""Access control: principals, grants, overrides and the cached resolver."""

from gridkeeper.auth.access import AccessResolver
from gridkeeper.auth.cache import CacheService, TTLCache
from gridkeeper.auth.permissions import (
    Action,
    can_access_resource,
    merge_grants,
    permission_key,
    require_permission,
)
from gridkeeper.auth.store import AccessStore
from gridkeeper.auth.types import Principal, UserContext

__all__ = [
    "AccessResolver",
    "AccessStore",
    "Action",
    "CacheService",
    "Principal",
    "TTLCache",
    "UserContext",
    "can_access_resource",
    "merge_grants",
    "permission_key",
    "require_permission",
]
