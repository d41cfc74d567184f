"""Shared fakes for the export engine: an in-memory store and a scripted API."""

from __future__ import annotations

import json
from collections import defaultdict
from typing import Any, Optional, Sequence
from unittest.mock import AsyncMock

import pytest

from scripts.airtable_export.config import (
    AirtableConfig,
    ConcurrencyConfig,
    DatabaseConfig,
    ExportConfig,
)
from scripts.airtable_export.errors import ApiError
from scripts.airtable_export.gateway import EntityKind
from scripts.airtable_export.models import Base, Record, Workspace
from scripts.airtable_export.retry import RetryExecutor


class FakeGateway:
    """PersistenceGateway stand-in backed by dicts, with ON DELETE CASCADE."""

    def __init__(self) -> None:
        self.workspaces: dict[str, dict[str, Any]] = {}
        self.bases: dict[str, dict[str, Any]] = {}
        self.data: dict[str, dict[str, Any]] = {}
        self.fail_upsert_for: set[str] = set()

    def _rows(self, table: str) -> dict[str, dict[str, Any]]:
        return {"workspaces": self.workspaces, "bases": self.bases, "data": self.data}[table]

    async def ensure_schema(self) -> None:
        return None

    async def upsert_workspace(self, workspace: Workspace) -> int:
        self.workspaces[workspace.id] = {
            "id": workspace.id,
            "owners": workspace.owners,
            "created_time": workspace.created_time,
            "name": workspace.name,
        }
        return 1

    async def upsert_base(self, base: Base) -> int:
        row = self.bases.setdefault(base.id, {"id": base.id, "scan_time": None, "scan_id": None})
        row.update(workspace_id=base.workspace_id, name=base.name, created_time=base.created_time)
        return 1

    async def upsert_records(self, records: Sequence[Record], scan_id: str) -> int:
        for r in records:
            if r.table_id in self.fail_upsert_for:
                raise RuntimeError(f"write failed for {r.table_id}")
            self.data[r.record_id] = {
                "base_id": r.base_id,
                "table_id": r.table_id,
                "record_id": r.record_id,
                "data": json.dumps(r.fields),
                "created_time": r.created_time,
                "scan_id": scan_id,
            }
        return len(records)

    async def mark_base_scanned(self, base_id: str, scan_id: str, scan_time: str) -> None:
        if base_id in self.bases:
            self.bases[base_id].update(scan_id=scan_id, scan_time=scan_time)

    async def bases_pending(self, scan_id: str) -> list[Base]:
        return [
            Base(**row)
            for _, row in sorted(self.bases.items())
            if row["scan_id"] != scan_id
        ]

    async def stale_ids(
        self, kind: EntityKind, scan_id: str, exclude_base_ids: Sequence[str] = ()
    ) -> list[str]:
        excluded = set(exclude_base_ids)
        return [
            row[kind.id_column]
            for row in self._rows(kind.table).values()
            if row["scan_id"] != scan_id and row[kind.base_column] not in excluded
        ]

    async def delete_ids(self, kind: EntityKind, ids: Sequence[str]) -> int:
        rows = self._rows(kind.table)
        deleted = 0
        for i in ids:
            if rows.pop(i, None) is not None:
                deleted += 1
            if kind.table == "bases":
                for rid in [k for k, v in self.data.items() if v["base_id"] == i]:
                    del self.data[rid]
        return deleted

    async def scan_summary(self) -> list[dict[str, Any]]:
        counts: dict[Optional[str], int] = defaultdict(int)
        for row in self.bases.values():
            counts[row["scan_id"]] += 1
        return [{"scan_id": k, "bases": v, "last_scan_time": None} for k, v in counts.items()]

    def snapshot(self) -> dict[str, Any]:
        def strip(rows: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
            return {k: {c: v for c, v in row.items() if c != "scan_time"} for k, row in rows.items()}

        return {
            "workspaces": dict(self.workspaces),
            "bases": strip(self.bases),
            "data": dict(self.data),
        }


class FakeAirtable:
    """Scripted AirtableClient.

    ``fail(method, key, *errors)`` queues exceptions for a call; an error
    queued with ``always=True`` is raised on every call.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, dict[str, Any]] = {}
        self.workspaces: dict[str, dict[str, Any]] = {}
        self.bases: dict[str, dict[str, Any]] = {}
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.pages: dict[tuple[str, str], list[list[dict[str, Any]]]] = {}
        self.calls: list[tuple[str, str]] = []
        self._queued: dict[tuple[str, str], list[BaseException]] = defaultdict(list)
        self._always: dict[tuple[str, str], BaseException] = {}

    # -- scripting -----------------------------------------------------

    def add_base(
        self,
        base_id: str,
        tables: dict[str, list[list[dict[str, Any]]]],
        fields: Optional[dict[str, list[dict[str, Any]]]] = None,
        name: Optional[str] = None,
    ) -> None:
        fields = fields or {}
        self.bases[base_id] = {"id": base_id, "name": name or base_id, "createdTime": "2021-01-01T00:00:00.000Z"}
        self.tables[base_id] = [
            {"id": table_id, "name": table_id, "fields": fields.get(table_id, [])}
            for table_id in tables
        ]
        for table_id, pages in tables.items():
            self.pages[(base_id, table_id)] = pages

    def fail(self, method: str, key: str, *errors: BaseException, always: bool = False) -> None:
        if always:
            self._always[(method, key)] = errors[0]
        else:
            self._queued[(method, key)].extend(errors)

    def _call(self, method: str, key: str) -> None:
        self.calls.append((method, key))
        if (method, key) in self._always:
            raise self._always[(method, key)]
        queue = self._queued.get((method, key))
        if queue:
            raise queue.pop(0)

    def touched(self, key: str) -> bool:
        return any(k == key or k.startswith(f"{key}/") for _, k in self.calls)

    # -- AirtableClient interface -------------------------------------

    async def get_enterprise_account(self, account_id: str) -> dict[str, Any]:
        self._call("get_enterprise_account", account_id)
        return self.accounts[account_id]

    async def get_workspace(self, workspace_id: str) -> dict[str, Any]:
        self._call("get_workspace", workspace_id)
        return self.workspaces[workspace_id]

    async def get_base(self, base_id: str) -> dict[str, Any]:
        self._call("get_base", base_id)
        return self.bases[base_id]

    async def list_tables(self, base_id: str) -> list[dict[str, Any]]:
        self._call("list_tables", base_id)
        return self.tables[base_id]

    async def add_base_collaborator(self, base_id: str, user_id: str, permission_level: str = "read") -> dict:
        self._call("add_base_collaborator", base_id)
        return {}

    async def remove_base_collaborator(self, base_id: str, user_id: str) -> dict:
        self._call("remove_base_collaborator", base_id)
        return {}

    async def list_records_page(self, base_id: str, table_id: str, offset: Optional[str] = None) -> dict:
        self._call("list_records_page", f"{base_id}/{table_id}")
        pages = self.pages[(base_id, table_id)]
        index = int(offset or 0)
        payload: dict[str, Any] = {"records": pages[index] if pages else []}
        if index + 1 < len(pages):
            payload["offset"] = str(index + 1)
        return payload


def rec(record_id: str, **fields: Any) -> dict[str, Any]:
    return {"id": record_id, "createdTime": "2022-03-04T05:06:07.000Z", "fields": fields}


def api_error(cls: type[ApiError], status: int) -> ApiError:
    return cls(f"HTTP {status}", status, {"error": "x"})


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def airtable() -> FakeAirtable:
    return FakeAirtable()


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def retry(fake_sleep) -> RetryExecutor:
    return RetryExecutor(max_attempts=5, backoff_seconds=10.0, sleep=fake_sleep)


@pytest.fixture
def export_config(tmp_path) -> ExportConfig:
    return ExportConfig(
        airtable=AirtableConfig(
            api_key="key-test",
            enterprise_account_ids=["entAcct1"],
            admin_user_id="usrAdmin",
        ),
        database=DatabaseConfig(url="postgresql://test@localhost/test"),
        concurrency=ConcurrencyConfig(),
    )


@pytest.fixture
def make_record():
    return rec


@pytest.fixture
def make_api_error():
    return api_error
