"""Persistence for principals, roles, grants and per-user overrides.

System tables:

* ``_users`` / ``_roles``: principals and the role each belongs to
* ``_permissions`` / ``_resources``: action keys and ``(table, column)`` grants
* ``_role_permissions`` / ``_role_resources``: what a role grants
* ``_permission_overrides`` / ``_resource_overrides``: per-user grants
  (``granted = 1``) and revocations (``granted = 0``)

Dialect-neutral via SQLAlchemy Core ``text()``.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import Engine

from gridkeeper.auth.types import Principal

_DDL = [
    """
    CREATE TABLE IF NOT EXISTS _roles (
        id      TEXT PRIMARY KEY,
        name    TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS _users (
        id          TEXT PRIMARY KEY,
        email       TEXT NOT NULL UNIQUE,
        name        TEXT NOT NULL,
        role_id     TEXT REFERENCES _roles(id),
        suspended   INTEGER NOT NULL DEFAULT 0,
        created_at  TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS _permissions (
        id      TEXT PRIMARY KEY,
        name    TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS _resources (
        id           TEXT PRIMARY KEY,
        table_name   TEXT NOT NULL,
        column_name  TEXT NOT NULL,
        UNIQUE (table_name, column_name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS _role_permissions (
        role_id        TEXT NOT NULL REFERENCES _roles(id),
        permission_id  TEXT NOT NULL REFERENCES _permissions(id),
        PRIMARY KEY (role_id, permission_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS _role_resources (
        role_id      TEXT NOT NULL REFERENCES _roles(id),
        resource_id  TEXT NOT NULL REFERENCES _resources(id),
        PRIMARY KEY (role_id, resource_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS _permission_overrides (
        user_id        TEXT NOT NULL REFERENCES _users(id),
        permission_id  TEXT NOT NULL REFERENCES _permissions(id),
        granted        INTEGER NOT NULL,
        PRIMARY KEY (user_id, permission_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS _resource_overrides (
        user_id      TEXT NOT NULL REFERENCES _users(id),
        resource_id  TEXT NOT NULL REFERENCES _resources(id),
        granted      INTEGER NOT NULL,
        PRIMARY KEY (user_id, resource_id)
    )
    """,
]


class AccessStore:
    """Reads and writes access grants. Dialect-neutral via SQLAlchemy Core."""

    def __init__(self, engine: Engine | str):
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine, or a database URL to create one from.
        """
        self._engine = create_engine(engine) if isinstance(engine, str) else engine
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        with self._engine.connect() as conn:
            for statement in _DDL:
                conn.execute(text(statement))
            conn.commit()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_principal(self, user_id: str) -> Principal | None:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT * FROM _users WHERE id = :id"),
                {"id": user_id},
            ).mappings().fetchone()

        if not row:
            return None
        return Principal(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            role_id=row["role_id"],
            suspended=bool(row["suspended"]),
        )

    def role_permissions(self, role_id: str | None) -> set[str]:
        if role_id is None:
            return set()
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT p.name FROM _role_permissions rp
                    JOIN _permissions p ON p.id = rp.permission_id
                    WHERE rp.role_id = :role_id
                """),
                {"role_id": role_id},
            ).fetchall()
        return {row[0] for row in rows}

    def permission_overrides(self, user_id: str) -> list[tuple[str, bool]]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text("""
                    SELECT p.name, o.granted FROM _permission_overrides o
                    JOIN _permissions p ON p.id = o.permission_id
                    WHERE o.user_id = :user_id
                """),
                {"user_id": user_id},
            ).fetchall()
        return [(row[0], bool(row[1])) for row in rows]

    def role_resources(self, role_id: str | None, tables: Iterable[str]) -> set[tuple[str, str]]:
        table_names = sorted({t.lower() for t in tables})
        if role_id is None or not table_names:
            return set()
        stmt = text("""
            SELECT r.table_name, r.column_name FROM _role_resources rr
            JOIN _resources r ON r.id = rr.resource_id
            WHERE rr.role_id = :role_id AND r.table_name IN :tables
        """).bindparams(bindparam("tables", expanding=True))
        with self._engine.connect() as conn:
            rows = conn.execute(stmt, {"role_id": role_id, "tables": table_names}).fetchall()
        return {(row[0], row[1]) for row in rows}

    def resource_overrides(
        self, user_id: str, tables: Iterable[str]
    ) -> list[tuple[tuple[str, str], bool]]:
        table_names = sorted({t.lower() for t in tables})
        if not table_names:
            return []
        stmt = text("""
            SELECT r.table_name, r.column_name, o.granted FROM _resource_overrides o
            JOIN _resources r ON r.id = o.resource_id
            WHERE o.user_id = :user_id AND r.table_name IN :tables
        """).bindparams(bindparam("tables", expanding=True))
        with self._engine.connect() as conn:
            rows = conn.execute(stmt, {"user_id": user_id, "tables": table_names}).fetchall()
        return [((row[0], row[1]), bool(row[2])) for row in rows]

    # ------------------------------------------------------------------
    # Writes (seeding and administration)
    # ------------------------------------------------------------------

    def create_role(self, name: str, role_id: str | None = None) -> str:
        role_id = role_id or uuid.uuid4().hex
        with self._engine.connect() as conn:
            conn.execute(
                text("INSERT INTO _roles (id, name) VALUES (:id, :name)"),
                {"id": role_id, "name": name},
            )
            conn.commit()
        return role_id

    def create_user(
        self,
        email: str,
        name: str,
        role_id: str | None = None,
        user_id: str | None = None,
        suspended: bool = False,
    ) -> str:
        user_id = user_id or uuid.uuid4().hex
        with self._engine.connect() as conn:
            conn.execute(
                text("""
                    INSERT INTO _users (id, email, name, role_id, suspended, created_at)
                    VALUES (:id, :email, :name, :role_id, :suspended, :created_at)
                """),
                {
                    "id": user_id,
                    "email": email,
                    "name": name,
                    "role_id": role_id,
                    "suspended": int(suspended),
                    "created_at": datetime.now(UTC).isoformat(),
                },
            )
            conn.commit()
        return user_id

    def suspend_user(self, user_id: str, suspended: bool = True) -> None:
        with self._engine.connect() as conn:
            conn.execute(
                text("UPDATE _users SET suspended = :suspended WHERE id = :id"),
                {"suspended": int(suspended), "id": user_id},
            )
            conn.commit()

    def _ensure_permission(self, conn, name: str) -> str:
        row = conn.execute(
            text("SELECT id FROM _permissions WHERE name = :name"), {"name": name}
        ).fetchone()
        if row:
            return row[0]
        permission_id = uuid.uuid4().hex
        conn.execute(
            text("INSERT INTO _permissions (id, name) VALUES (:id, :name)"),
            {"id": permission_id, "name": name},
        )
        return permission_id

    def _ensure_resource(self, conn, table: str, column: str) -> str:
        params = {"table_name": table.lower(), "column_name": column}
        row = conn.execute(
            text("""
                SELECT id FROM _resources
                WHERE table_name = :table_name AND column_name = :column_name
            """),
            params,
        ).fetchone()
        if row:
            return row[0]
        resource_id = uuid.uuid4().hex
        conn.execute(
            text("""
                INSERT INTO _resources (id, table_name, column_name)
                VALUES (:id, :table_name, :column_name)
            """),
            {"id": resource_id, **params},
        )
        return resource_id

    def grant_role_permission(self, role_id: str, permission: str) -> None:
        with self._engine.connect() as conn:
            permission_id = self._ensure_permission(conn, permission)
            conn.execute(
                text("""
                    DELETE FROM _role_permissions
                    WHERE role_id = :role_id AND permission_id = :permission_id
                """),
                {"role_id": role_id, "permission_id": permission_id},
            )
            conn.execute(
                text("""
                    INSERT INTO _role_permissions (role_id, permission_id)
                    VALUES (:role_id, :permission_id)
                """),
                {"role_id": role_id, "permission_id": permission_id},
            )
            conn.commit()

    def grant_role_resources(self, role_id: str, table: str, columns: Iterable[str]) -> None:
        with self._engine.connect() as conn:
            for column in columns:
                resource_id = self._ensure_resource(conn, table, column)
                params = {"role_id": role_id, "resource_id": resource_id}
                conn.execute(
                    text("""
                        DELETE FROM _role_resources
                        WHERE role_id = :role_id AND resource_id = :resource_id
                    """),
                    params,
                )
                conn.execute(
                    text("""
                        INSERT INTO _role_resources (role_id, resource_id)
                        VALUES (:role_id, :resource_id)
                    """),
                    params,
                )
            conn.commit()

    def revoke_role_resource(self, role_id: str, table: str, column: str) -> None:
        with self._engine.connect() as conn:
            conn.execute(
                text("""
                    DELETE FROM _role_resources
                    WHERE role_id = :role_id AND resource_id IN (
                        SELECT id FROM _resources
                        WHERE table_name = :table_name AND column_name = :column_name
                    )
                """),
                {"role_id": role_id, "table_name": table.lower(), "column_name": column},
            )
            conn.commit()

    def set_permission_override(self, user_id: str, permission: str, granted: bool) -> None:
        with self._engine.connect() as conn:
            permission_id = self._ensure_permission(conn, permission)
            params = {"user_id": user_id, "permission_id": permission_id}
            conn.execute(
                text("""
                    DELETE FROM _permission_overrides
                    WHERE user_id = :user_id AND permission_id = :permission_id
                """),
                params,
            )
            conn.execute(
                text("""
                    INSERT INTO _permission_overrides (user_id, permission_id, granted)
                    VALUES (:user_id, :permission_id, :granted)
                """),
                {**params, "granted": int(granted)},
            )
            conn.commit()

    def set_resource_override(self, user_id: str, table: str, column: str, granted: bool) -> None:
        with self._engine.connect() as conn:
            resource_id = self._ensure_resource(conn, table, column)
            params = {"user_id": user_id, "resource_id": resource_id}
            conn.execute(
                text("""
                    DELETE FROM _resource_overrides
                    WHERE user_id = :user_id AND resource_id = :resource_id
                """),
                params,
            )
            conn.execute(
                text("""
                    INSERT INTO _resource_overrides (user_id, resource_id, granted)
                    VALUES (:user_id, :resource_id, :granted)
                """),
                {**params, "granted": int(granted)},
            )
            conn.commit()
