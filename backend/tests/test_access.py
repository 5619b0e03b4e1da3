"""Tests for grants, overrides and the cached access resolver."""

import pytest
from sqlalchemy.exc import OperationalError

from gridkeeper.auth import (
    AccessResolver,
    Action,
    TTLCache,
    can_access_resource,
    merge_grants,
    permission_key,
    require_permission,
)
from gridkeeper.errors import AccessDenied

ALICE_SITE_COLUMNS = [
    "website", "costPrice", "remark", "tags", "websiteStatus", "createdAt", "categories", "vendor.name",
]


class BrokenStore:
    """Access store whose database is unreachable."""

    def get_principal(self, user_id):
        raise OperationalError("SELECT * FROM _users", {}, Exception("database is locked"))


class TestPermissionKeys:
    def test_view_uses_bare_resource(self):
        assert permission_key(Action.VIEW, "Site") == "site"

    def test_mutations_are_prefixed(self):
        assert permission_key("create", "site") == "_create_site"
        assert permission_key(Action.DELETE, "order") == "_delete_order"

    def test_can_access_resource(self):
        assert can_access_resource({"site"}, "site") == (True, None)
        allowed, message = can_access_resource({"site"}, "site", Action.UPDATE)
        assert not allowed
        assert message == "Permission '_update_site' required"

    def test_require_permission_raises(self):
        require_permission(["order"], "order")
        with pytest.raises(AccessDenied, match="'vendor'"):
            require_permission(["order"], "vendor")


class TestMergeGrants:
    def test_override_grant_adds(self):
        assert merge_grants({"a"}, [("b", True)]) == {"a", "b"}

    def test_revocation_wins(self):
        assert merge_grants({"a", "b"}, [("b", False)]) == {"a"}

    def test_revocation_wins_over_granted_override(self):
        assert merge_grants(set(), [("a", True), ("a", False)]) == set()
        assert merge_grants(set(), [("a", False), ("a", True)]) == set()


class TestResolveColumns:
    def test_role_grants_in_schema_order(self, resolver, users):
        assert resolver.resolve_columns("alice", "site") == ALICE_SITE_COLUMNS

    def test_table_name_is_case_insensitive(self, resolver, users):
        assert resolver.resolve_columns("alice", "Site") == ALICE_SITE_COLUMNS

    def test_related_tables_use_dotted_paths(self, resolver, users):
        columns = resolver.resolve_columns("alice", "order")
        assert columns[:4] == ["orderNumber", "amount", "status", "orderDate"]
        assert "client.name" in columns
        assert "site.website" in columns
        assert "site.categories" in columns
        assert "vendor.name" in columns
        assert "client.email" not in columns

    def test_user_without_role_gets_nothing(self, resolver, users):
        assert resolver.resolve_columns("nobody", "site") == []

    def test_granted_override_adds_column(self, resolver, access_store, users):
        access_store.set_resource_override("alice", "site", "sellingPrice", True)
        columns = resolver.resolve_columns("alice", "site")
        assert "sellingPrice" in columns
        assert "sellingPrice" not in resolver.resolve_columns("bob", "site")

    def test_revoked_override_removes_role_grant(self, resolver, access_store, users):
        access_store.set_resource_override("alice", "vendor", "name", False)
        assert "vendor.name" not in resolver.resolve_columns("alice", "site")
        assert "vendor.name" in resolver.resolve_columns("bob", "site")

    def test_override_on_user_without_role(self, resolver, access_store, users):
        access_store.set_resource_override("nobody", "site", "website", True)
        assert resolver.resolve_columns("nobody", "site") == ["website"]

    def test_unknown_user_fails_closed_uncached(self, resolver, users):
        assert resolver.resolve_columns("mallory", "site") == []
        assert len(resolver.cache) == 0

    def test_suspended_user_gets_nothing(self, resolver, access_store, users):
        access_store.suspend_user("alice")
        assert resolver.resolve_columns("alice", "site") == []
        assert len(resolver.cache) == 0

    def test_unknown_table(self, resolver, users):
        assert resolver.resolve_columns("alice", "planet") == []

    def test_database_error_fails_closed(self, registry):
        resolver = AccessResolver(BrokenStore(), registry, TTLCache())
        assert resolver.resolve_columns("alice", "site") == []
        assert resolver.resolve_permissions("alice") == frozenset()
        assert len(resolver.cache) == 0


class TestResolvePermissions:
    def test_role_permissions(self, resolver, users):
        assert resolver.resolve_permissions("alice") == frozenset({"site", "order", "_update_site"})

    def test_overrides(self, resolver, access_store, users):
        access_store.set_permission_override("alice", "order", False)
        access_store.set_permission_override("alice", "_create_site", True)
        assert resolver.resolve_permissions("alice") == frozenset({"site", "_update_site", "_create_site"})

    def test_no_role(self, resolver, users):
        assert resolver.resolve_permissions("nobody") == frozenset()

    def test_unknown_user(self, resolver, users):
        assert resolver.resolve_permissions("mallory") == frozenset()


class TestAccessCaching:
    def test_grant_changes_are_stale_until_expiry(self, resolver, access_store, users, clock):
        assert "remark" in resolver.resolve_columns("alice", "site")

        access_store.revoke_role_resource(users["role"], "site", "remark")
        clock.advance(299)
        assert "remark" in resolver.resolve_columns("alice", "site")

        clock.advance(1)
        assert "remark" not in resolver.resolve_columns("alice", "site")

    def test_permission_changes_are_stale_until_expiry(self, resolver, access_store, users, clock):
        assert "order" in resolver.resolve_permissions("alice")
        access_store.set_permission_override("alice", "order", False)
        assert "order" in resolver.resolve_permissions("alice")
        clock.advance(300)
        assert "order" not in resolver.resolve_permissions("alice")

    def test_entries_are_per_user_and_table(self, resolver, users):
        resolver.resolve_columns("alice", "site")
        resolver.resolve_columns("alice", "order")
        resolver.resolve_columns("bob", "site")
        assert len(resolver.cache) == 3

    def test_cached_result_is_a_copy(self, resolver, users):
        first = resolver.resolve_columns("alice", "site")
        first.append("secret")
        assert "secret" not in resolver.resolve_columns("alice", "site")
