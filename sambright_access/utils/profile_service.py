"""
PostgreSQL-backed profile store.

Reads and updates the 'profiles' table directly, for deployments that run
the database themselves instead of going through the hosted REST API.
Each statement runs with a statement_timeout so a stuck query cannot hold
identity resolution past its deadline.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

import psycopg2
import psycopg2.extras
from psycopg2 import sql

from sambright_access.utils.auth_providers import ProfileStore, ProfileStoreError
from sambright_access.utils.logging import get_logger

logger = get_logger(__name__)


class PostgresProfileStore(ProfileStore):
    """
    Profile store over a psycopg2 connection.

    Example:
        >>> store = PostgresProfileStore({'host': 'localhost', 'dbname': 'sambright', ...})
        >>> store.get_profile('3f9c...')
        {'id': '3f9c...', 'email': 'a@b.com', 'name': 'Ann', 'role': 'field', ...}
    """

    def __init__(self, pg_config: Dict[str, Any], table: str = "profiles", timeout: float = 10.0):
        """
        Args:
            pg_config: psycopg2.connect keyword arguments
            table: Profiles table name
            timeout: Default per-statement timeout in seconds
        """
        self._pg_config = dict(pg_config)
        self._pg_config.setdefault("connect_timeout", max(1, int(timeout)))
        self._table = sql.Identifier(table)
        self._timeout = timeout

    @contextmanager
    def _connect(self) -> Generator[psycopg2.extensions.connection, None, None]:
        try:
            conn = psycopg2.connect(**self._pg_config)
        except psycopg2.Error as exc:
            raise ProfileStoreError(f"Could not connect to profile database: {exc}") from exc
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _execute(self, query: sql.Composable, params: tuple, timeout: Optional[float] = None, fetch: str = "all"):
        timeout_ms = int((timeout or self._timeout) * 1000)
        try:
            with self._connect() as conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    cur.execute("SET LOCAL statement_timeout = %s", (timeout_ms,))
                    cur.execute(query, params)
                    if fetch == "one":
                        row = cur.fetchone()
                        return dict(row) if row else None
                    if fetch == "all":
                        return [dict(row) for row in cur.fetchall()]
                    return cur.rowcount
        except psycopg2.Error as exc:
            logger.warning("Profile query failed: %s", exc)
            raise ProfileStoreError(f"Profile query failed: {exc}") from exc

    def get_profile(self, user_id: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        query = sql.SQL("SELECT id, email, name, role, created_at FROM {} WHERE id = %s").format(self._table)
        return self._execute(query, (user_id,), timeout=timeout, fetch="one")

    def list_profiles(self) -> List[Dict[str, Any]]:
        query = sql.SQL(
            "SELECT id, email, name, role, created_at FROM {} ORDER BY created_at DESC"
        ).format(self._table)
        return self._execute(query, ())

    def update_role(self, user_id: str, role: str) -> Dict[str, Any]:
        query = sql.SQL(
            "UPDATE {} SET role = %s WHERE id = %s RETURNING id, email, name, role, created_at"
        ).format(self._table)
        row = self._execute(query, (role, user_id), fetch="one")
        if row is None:
            raise ProfileStoreError(f"No profile found for user {user_id}")
        return row

    def delete_user(self, user_id: str) -> None:
        query = sql.SQL("DELETE FROM {} WHERE id = %s").format(self._table)
        deleted = self._execute(query, (user_id,), fetch="count")
        if not deleted:
            raise ProfileStoreError(f"No profile found for user {user_id}")
