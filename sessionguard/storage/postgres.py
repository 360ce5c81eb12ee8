from __future__ import annotations

import contextlib
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from sessionguard.logging import get_logger
from sessionguard.storage.errors import ConstraintViolation, StoreUnavailable
from sessionguard.storage.models import User


class PostgresUserDirectory:
    """Postgres-backed user directory (lookup, registration, password updates)."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=True,
        )
        self._ensure_schema()

    @contextlib.contextmanager
    def _connect(self, operation: str) -> Iterator[Any]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except (errors.OperationalError, PoolTimeout) as exc:
            self.logger.error("postgres_unavailable", operation=operation, error=str(exc))
            raise StoreUnavailable("postgres", operation, exc) from exc

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` table if it is missing."""

        with self._connect("ensure_schema") as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_user (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    password_hash TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            name=row["name"],
            password_hash=row.get("password_hash"),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
            updated_at=row.get("updated_at"),
        )

    def create_user(self, email: str, name: str, password_hash: str) -> User:
        user_id = str(uuid.uuid4())
        normalized = email.strip().lower()
        try:
            with self._connect("create_user") as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (id, email, name, password_hash)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (user_id, normalized, name, password_hash),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._row_to_user(row)

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._connect("find_user_by_email") as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s",
                (email.strip().lower(),),
            ).fetchone()
        return self._row_to_user(row) if row else None

    def find_user_by_id(self, user_id: str) -> Optional[User]:
        with self._connect("find_user_by_id") as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def set_password_hash(self, user_id: str, password_hash: str) -> None:
        with self._connect("set_password_hash") as conn:
            cur = conn.execute(
                "UPDATE app_user SET password_hash = %s, updated_at = now() WHERE id = %s",
                (password_hash, user_id),
            )
        if cur.rowcount == 0:
            self.logger.warning("set_password_hash_missing_user", user_id=user_id)

    def delete_user(self, user_id: str) -> bool:
        with self._connect("delete_user") as conn:
            cur = conn.execute("DELETE FROM app_user WHERE id = %s", (user_id,))
        return cur.rowcount > 0

    def close(self) -> None:
        self.pool.close()
