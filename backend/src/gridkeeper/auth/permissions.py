"""Action permission keys and checks."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from gridkeeper.errors import AccessDenied


class Action(str, Enum):
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def permission_key(action: Action | str, resource: str) -> str:
    """Permission key for an action on a resource.

    Viewing is granted by the bare resource name (``site``); mutations use
    ``_{action}_{resource}`` (``_create_site``).
    """
    action = Action(action)
    resource = resource.lower()
    if action == Action.VIEW:
        return resource
    return f"_{action.value}_{resource}"


def merge_grants(
    role_grants: Iterable,
    overrides: Iterable[tuple[object, bool]],
) -> set:
    """Effective grants: (role grants | granted overrides) - revoked overrides.

    Order-independent: a revocation always wins over a role grant or a
    granted override for the same target.
    """
    overrides = list(overrides)
    granted = {target for target, allowed in overrides if allowed}
    revoked = {target for target, allowed in overrides if not allowed}
    return (set(role_grants) | granted) - revoked


def can_access_resource(
    permissions: Iterable[str],
    resource: str,
    action: Action | str = Action.VIEW,
) -> tuple[bool, str | None]:
    """Check if a permission set allows an action on a resource.

    Returns:
        Tuple of (allowed, error_message). error_message is None if allowed.
    """
    key = permission_key(action, resource)
    if key in set(permissions):
        return True, None
    return False, f"Permission '{key}' required"


def require_permission(
    permissions: Iterable[str],
    resource: str,
    action: Action | str = Action.VIEW,
) -> None:
    """Raise AccessDenied unless the action is allowed."""
    allowed, error_msg = can_access_resource(permissions, resource, action)
    if not allowed:
        raise AccessDenied(error_msg)
