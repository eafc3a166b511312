from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from vexillum.logging import get_logger
from vexillum.storage.errors import ConstraintViolation
from vexillum.storage.models import MagicLink, User, UserRole


_REQUIRED_TABLES = ("users", "magic_links")


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class PostgresStore:
    """Postgres-backed store for principals and magic links.

    Every public method is one round trip on a pooled connection; the
    connection context commits on exit.
    """

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 2,
        max_size: int = 10,
        verify_schema: bool = True,
    ) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        if verify_schema:
            self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        """Ensure the auth tables exist before serving requests."""

        with self._connect() as conn:
            missing_tables = []
            for table in _REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Apply the database migrations first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _row_to_user(row: Mapping[str, Any]) -> User:
        return User(
            id=_as_uuid(row["id"]),
            email=row["email"],
            password_hash=row["password_hash"],
            role=UserRole(row.get("role", UserRole.VIEWER.value)),
            created_at=_as_aware(row["created_at"]),
            updated_at=_as_aware(row["updated_at"]),
        )

    @staticmethod
    def _row_to_link(row: Mapping[str, Any]) -> MagicLink:
        return MagicLink(
            id=_as_uuid(row["id"]),
            user_id=_as_uuid(row.get("user_id")),
            token=_as_uuid(row["token"]),
            expires_at=_as_aware(row["expires_at"]),
            created_at=_as_aware(row["created_at"]),
        )

    # principals
    def find_principal_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = %s", (email,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_principal(self, user_id: uuid.UUID) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = %s", (user_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def insert_principal(self, user: User) -> User:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users (id, email, password_hash, role, created_at, updated_at)
                    VALUES (%s, %s, %s, %s::user_role, %s, %s)
                    """,
                    (
                        user.id,
                        user.email,
                        user.password_hash,
                        user.role.value,
                        user.created_at,
                        user.updated_at,
                    ),
                )
        except errors.UniqueViolation as exc:
            self.logger.info("principal_insert_conflict", user_id=str(user.id))
            raise ConstraintViolation("email already exists", field="email") from exc
        return user

    def update_principal_role(self, user_id: uuid.UUID, role: UserRole) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE users SET role = %s::user_role, updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (role.value, user_id),
            ).fetchone()
        return self._row_to_user(row) if row else None

    # magic links
    def insert_magic_link(self, link: MagicLink) -> MagicLink:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO magic_links (id, user_id, token, expires_at, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (link.id, link.user_id, link.token, link.expires_at, link.created_at),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("magic link token already exists", field="token")
        return link

    def find_magic_link_by_token(self, token: uuid.UUID) -> Optional[MagicLink]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM magic_links WHERE token = %s", (token,)
            ).fetchone()
        return self._row_to_link(row) if row else None

    def delete_magic_link_by_id(self, link_id: uuid.UUID) -> bool:
        """Conditional delete: only the caller that removes the row sees True."""
        with self._connect() as conn:
            result = conn.execute("DELETE FROM magic_links WHERE id = %s", (link_id,))
            return result.rowcount > 0
