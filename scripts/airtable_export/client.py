"""Airtable admin API client: metadata, collaborators and record pages."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

import requests
from requests.adapters import HTTPAdapter

from scripts.airtable_export.config import AirtableConfig
from scripts.airtable_export.errors import (
    ApiError,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
)
from scripts.airtable_export.models import Record
from scripts.airtable_export.retry import RetryExecutor

logger = logging.getLogger("export.client")


def _error_code(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("type")
    return error


def raise_for_api_status(resp: requests.Response) -> None:
    """Map an Airtable error response onto the exporter's error types."""
    if 200 <= resp.status_code < 300:
        return
    try:
        payload = resp.json()
    except ValueError:
        payload = resp.text

    message = f"{resp.request.method if resp.request else 'GET'} {resp.url} -> {resp.status_code}: {payload}"
    if resp.status_code == 404 or _error_code(payload) == "NOT_FOUND":
        raise NotFoundError(message, resp.status_code, payload)
    if resp.status_code == 403:
        raise ForbiddenError(message, resp.status_code, payload)
    if resp.status_code == 429:
        raise RateLimitedError(message, resp.status_code, payload)
    raise ApiError(message, resp.status_code, payload)


class AirtableClient:
    """Blocking ``requests`` calls exposed as awaitables.

    Each request runs in a worker thread so a slow response suspends only
    the task that issued it.
    """

    def __init__(
        self,
        config: AirtableConfig,
        session: Optional[requests.Session] = None,
        pool_size: int = 32,
    ) -> None:
        self._base = config.api_base_url.rstrip("/")
        self._timeout = config.request_timeout_s
        self.page_size = config.page_size
        self._session = session or requests.Session()
        if session is None:
            adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
            self._session.mount("https://", adapter)
            self._session.mount("http://", adapter)
        self._session.headers.update({
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
        })

    def close(self) -> None:
        self._session.close()

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        resp = self._session.request(
            method,
            f"{self._base}/{path.lstrip('/')}",
            params=params,
            json=json,
            timeout=self._timeout,
        )
        raise_for_api_status(resp)
        if not resp.content:
            return {}
        return resp.json()

    async def _call(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    # ------------------------------------------------------------------
    # Enterprise metadata
    # ------------------------------------------------------------------

    async def get_enterprise_account(self, account_id: str) -> dict[str, Any]:
        return await self._call("GET", f"meta/enterpriseAccounts/{account_id}")

    async def get_workspace(self, workspace_id: str) -> dict[str, Any]:
        return await self._call(
            "GET",
            f"meta/workspaces/{workspace_id}",
            params={"include": "collaborators"},
        )

    async def get_base(self, base_id: str) -> dict[str, Any]:
        return await self._call("GET", f"meta/bases/{base_id}")

    async def list_tables(self, base_id: str) -> list[dict[str, Any]]:
        data = await self._call("GET", f"meta/bases/{base_id}/tables")
        return data.get("tables", [])

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def add_base_collaborator(
        self, base_id: str, user_id: str, permission_level: str = "read"
    ) -> dict[str, Any]:
        body = {
            "collaborators": [
                {"user": {"id": user_id}, "permissionLevel": permission_level}
            ]
        }
        return await self._call("POST", f"meta/bases/{base_id}/collaborators", json=body)

    async def remove_base_collaborator(self, base_id: str, user_id: str) -> dict[str, Any]:
        return await self._call("DELETE", f"meta/bases/{base_id}/collaborators/{user_id}")

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def list_records_page(
        self, base_id: str, table_id: str, offset: Optional[str] = None
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"pageSize": self.page_size}
        if offset:
            params["offset"] = offset
        return await self._call("GET", f"{base_id}/{table_id}", params=params)


class RecordPager:
    """Restartable lazy sequence of record pages for one table.

    Every ``async for`` starts again from the first page and follows the
    ``offset`` cursor until Airtable stops returning one. Each page is a
    single bounded fetch wrapped in the retry executor, so a timeout only
    repeats that page.
    """

    def __init__(
        self,
        client: AirtableClient,
        retry: RetryExecutor,
        base_id: str,
        table_id: str,
    ) -> None:
        self.client = client
        self.retry = retry
        self.base_id = base_id
        self.table_id = table_id

    def __aiter__(self) -> AsyncIterator[list[Record]]:
        return self.pages()

    async def pages(self) -> AsyncIterator[list[Record]]:
        offset: Optional[str] = None
        label = f"{self.base_id}/{self.table_id}"
        while True:
            payload = await self.retry.run(
                lambda: self.client.list_records_page(self.base_id, self.table_id, offset),
                label,
            )
            yield [self._to_record(raw) for raw in payload.get("records", [])]
            offset = payload.get("offset")
            if not offset:
                return

    def _to_record(self, raw: dict[str, Any]) -> Record:
        rec_id = raw.get("id")
        if not rec_id:
            raise ApiError(f"Airtable returned a record without an id in {self.base_id}/{self.table_id}")
        return Record(
            base_id=self.base_id,
            table_id=self.table_id,
            record_id=rec_id,
            fields=raw.get("fields") or {},
            created_time=raw.get("createdTime"),
        )
