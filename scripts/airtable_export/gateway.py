"""Async persistence gateway over the blocking psycopg2 Database."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, TypeVar

from scripts.airtable_export.db import Database
from scripts.airtable_export.models import Base, Record, Workspace

logger = logging.getLogger("export.gateway")

T = TypeVar("T")


@dataclass(frozen=True)
class EntityKind:
    """Where one kind of entity lives and how it is upserted."""

    table: str
    id_column: str
    columns: tuple[str, ...]
    conflict: tuple[str, ...]
    update: tuple[str, ...]
    base_column: Optional[str] = None


WORKSPACES = EntityKind(
    table="workspaces",
    id_column="id",
    columns=("id", "owners", "created_time", "name"),
    conflict=("id",),
    update=("owners", "created_time", "name"),
)

# scan_time / scan_id are absent from the crawl upsert so a re-crawl never
# undoes the progress of a resumed scan.
BASES = EntityKind(
    table="bases",
    id_column="id",
    columns=("id", "workspace_id", "created_time", "name"),
    conflict=("id",),
    update=("workspace_id", "created_time", "name"),
    base_column="id",
)

RECORDS = EntityKind(
    table="data",
    id_column="record_id",
    columns=("base_id", "table_id", "record_id", "data", "created_time", "scan_id"),
    conflict=("record_id",),
    update=("base_id", "table_id", "data", "created_time", "scan_id"),
    base_column="base_id",
)


class PersistenceGateway:
    """Idempotent upsert/read/delete operations, awaitable from scan tasks.

    psycopg2 calls run in worker threads; the semaphore keeps the number of
    concurrent calls within the connection pool size.
    """

    def __init__(self, db: Database, max_concurrency: Optional[int] = None) -> None:
        self.db = db
        self._semaphore = asyncio.Semaphore(max_concurrency or db.max_connections)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        async with self._semaphore:
            return await asyncio.to_thread(fn, *args)

    def _upsert(self, kind: EntityKind, rows: Sequence[tuple]) -> int:
        with self.db.transaction() as cur:
            return self.db.upsert_batch(
                cur,
                kind.table,
                list(kind.columns),
                rows,
                list(kind.conflict),
                list(kind.update),
            )

    async def ensure_schema(self) -> None:
        await self._run(self.db.ensure_schema)

    async def upsert_workspace(self, workspace: Workspace) -> int:
        row = (workspace.id, workspace.owners, workspace.created_time, workspace.name)
        return await self._run(self._upsert, WORKSPACES, [row])

    async def upsert_base(self, base: Base) -> int:
        row = (base.id, base.workspace_id, base.created_time, base.name)
        return await self._run(self._upsert, BASES, [row])

    async def upsert_records(self, records: Sequence[Record], scan_id: str) -> int:
        rows = [
            (
                r.base_id,
                r.table_id,
                r.record_id,
                json.dumps(r.fields),
                r.created_time,
                scan_id,
            )
            for r in records
        ]
        return await self._run(self._upsert, RECORDS, rows)

    async def mark_base_scanned(self, base_id: str, scan_id: str, scan_time: str) -> None:
        await self._run(self.db.mark_base_scanned, base_id, scan_id, scan_time)

    async def bases_pending(self, scan_id: str) -> list[Base]:
        rows = await self._run(self.db.bases_pending, scan_id)
        return [Base(**row) for row in rows]

    async def stale_ids(
        self,
        kind: EntityKind,
        scan_id: str,
        exclude_base_ids: Sequence[str] = (),
    ) -> list[str]:
        return await self._run(
            self.db.stale_ids,
            kind.table,
            kind.id_column,
            scan_id,
            kind.base_column,
            list(exclude_base_ids),
        )

    async def delete_ids(self, kind: EntityKind, ids: Sequence[str]) -> int:
        return await self._run(self.db.delete_ids, kind.table, kind.id_column, list(ids))

    async def scan_summary(self) -> list[dict[str, Any]]:
        return await self._run(self.db.scan_summary)
