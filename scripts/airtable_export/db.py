"""PostgreSQL store for workspaces, bases and record data."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

import psycopg2
import psycopg2.extras
import psycopg2.pool

from scripts.airtable_export.config import DatabaseConfig

logger = logging.getLogger("export.db")

SCHEMA_STATEMENTS = (
    """CREATE TABLE IF NOT EXISTS workspaces (
           id TEXT PRIMARY KEY,
           owners TEXT,
           created_time TEXT,
           name TEXT
       )""",
    """CREATE TABLE IF NOT EXISTS bases (
           id TEXT PRIMARY KEY,
           workspace_id TEXT,
           name TEXT,
           created_time TEXT,
           scan_time TEXT,
           scan_id TEXT
       )""",
    """CREATE TABLE IF NOT EXISTS data (
           base_id TEXT REFERENCES bases(id) ON DELETE CASCADE,
           table_id TEXT,
           record_id TEXT PRIMARY KEY,
           data TEXT,
           created_time TEXT,
           scan_id TEXT
       )""",
    "CREATE INDEX IF NOT EXISTS data_base_id_idx ON data (base_id)",
    "CREATE INDEX IF NOT EXISTS data_scan_id_idx ON data (scan_id)",
)


def _dict_rows(cur) -> list[dict[str, Any]]:
    names = [column[0] for column in cur.description]
    return [dict(zip(names, row)) for row in cur.fetchall()]


class Database:
    """psycopg2 connection pool plus the handful of queries the export needs.

    Methods are blocking; the async side calls them through
    ``PersistenceGateway``.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self.max_connections = config.max_connections
        self.pool = psycopg2.pool.ThreadedConnectionPool(
            config.min_connections, config.max_connections, dsn=config.url
        )

    def close(self) -> None:
        self.pool.closeall()

    @contextmanager
    def connection(self) -> Iterator:
        conn = self.pool.getconn()
        try:
            yield conn
        finally:
            self.pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator:
        """Cursor whose work is committed on exit, or rolled back on error."""
        with self.connection() as conn:
            cur = conn.cursor()
            try:
                yield cur
            except Exception:
                conn.rollback()
                raise
            else:
                conn.commit()
            finally:
                cur.close()

    def ensure_schema(self) -> None:
        with self.transaction() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)
        logger.info("Schema ready")

    def upsert_batch(
        self,
        cur,
        table: str,
        columns: Sequence[str],
        rows: Sequence[tuple],
        conflict: Sequence[str],
        update: Sequence[str],
    ) -> int:
        """INSERT ... ON CONFLICT DO UPDATE for a page of rows.

        Columns outside ``update`` keep their stored value on conflict.
        """
        if not rows:
            return 0
        assignments = ", ".join(f"{name} = EXCLUDED.{name}" for name in update)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES %s "
            f"ON CONFLICT ({', '.join(conflict)}) DO UPDATE SET {assignments}"
        )
        psycopg2.extras.execute_values(cur, sql, rows, page_size=500)
        return cur.rowcount

    # -- scan bookkeeping ------------------------------------------------

    def bases_pending(self, scan_id: str) -> list[dict[str, Any]]:
        """Bases not yet tagged with ``scan_id``, never-scanned ones included."""
        with self.transaction() as cur:
            cur.execute(
                """SELECT id, workspace_id, name, created_time, scan_time, scan_id
                   FROM bases
                   WHERE scan_id IS DISTINCT FROM %s
                   ORDER BY id""",
                (scan_id,),
            )
            return _dict_rows(cur)

    def mark_base_scanned(self, base_id: str, scan_id: str, scan_time: str) -> None:
        with self.transaction() as cur:
            cur.execute(
                "UPDATE bases SET scan_time = %s, scan_id = %s WHERE id = %s",
                (scan_time, scan_id, base_id),
            )

    def stale_ids(
        self,
        table: str,
        id_column: str,
        scan_id: str,
        exclude_column: Optional[str] = None,
        exclude_values: Sequence[str] = (),
    ) -> list[str]:
        # NULL tags count as stale.
        sql = f"SELECT {id_column} FROM {table} WHERE scan_id IS DISTINCT FROM %s"
        params: list[Any] = [scan_id]
        if exclude_column and exclude_values:
            sql += f" AND NOT ({exclude_column} = ANY(%s))"
            params.append(list(exclude_values))
        with self.transaction() as cur:
            cur.execute(sql, params)
            return [row[0] for row in cur.fetchall()]

    def delete_ids(self, table: str, id_column: str, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        with self.transaction() as cur:
            cur.execute(f"DELETE FROM {table} WHERE {id_column} = ANY(%s)", (list(ids),))
            return cur.rowcount

    def scan_summary(self) -> list[dict[str, Any]]:
        """Base counts per scan id, most recent first."""
        with self.transaction() as cur:
            cur.execute(
                """SELECT scan_id, COUNT(*) AS bases, MAX(scan_time) AS last_scan_time
                   FROM bases
                   GROUP BY scan_id
                   ORDER BY MAX(scan_time) DESC NULLS LAST"""
            )
            return _dict_rows(cur)
