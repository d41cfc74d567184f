"""Per-base scan lifecycle: grant, discover, scan tables, revoke, commit.

A base only receives the current scan id after every one of its tables was
written. Anything short of that leaves the previous tag in place, so the base
is picked up again by the next run with the same or a new scan id.

    GRANTING -> DISCOVERING -> SCANNING_TABLES -> REVOKING -> COMMITTING -> DONE
        |            |                |
        v            v                v
      DONE         DONE             DONE      (outcome explains why)
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Iterator, Optional

import requests

from scripts.airtable_export.attachments import AttachmentDownloader
from scripts.airtable_export.client import AirtableClient, RecordPager
from scripts.airtable_export.concurrency import map_bounded
from scripts.airtable_export.errors import (
    ApiError,
    ForbiddenError,
    InvalidTransition,
    NotFoundError,
)
from scripts.airtable_export.gateway import PersistenceGateway
from scripts.airtable_export.models import Base, BaseScanResult, ScanOutcome, Table
from scripts.airtable_export.retry import RetryExecutor

logger = logging.getLogger("export.scanner")


class ScanState(str, enum.Enum):
    GRANTING = "granting"
    DISCOVERING = "discovering"
    SCANNING_TABLES = "scanning_tables"
    REVOKING = "revoking"
    COMMITTING = "committing"
    DONE = "done"


TRANSITIONS: dict[ScanState, frozenset[ScanState]] = {
    ScanState.GRANTING: frozenset({ScanState.DISCOVERING, ScanState.DONE}),
    ScanState.DISCOVERING: frozenset({ScanState.SCANNING_TABLES, ScanState.DONE}),
    ScanState.SCANNING_TABLES: frozenset({ScanState.REVOKING, ScanState.DONE}),
    ScanState.REVOKING: frozenset({ScanState.COMMITTING, ScanState.DONE}),
    ScanState.COMMITTING: frozenset({ScanState.DONE}),
    ScanState.DONE: frozenset(),
}


class SkipList:
    """Bases that could not be fully scanned in this run.

    Append-only, keeps first-seen order and ignores duplicates.
    """

    def __init__(self) -> None:
        self._ids: list[str] = []
        self._lock = threading.Lock()

    def add(self, base_id: str) -> None:
        with self._lock:
            if base_id not in self._ids:
                self._ids.append(base_id)

    def __contains__(self, base_id: object) -> bool:
        return base_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    def as_list(self) -> list[str]:
        return list(self._ids)


class _BaseScan:
    """State of one base while it moves through the lifecycle."""

    def __init__(self, base_id: str) -> None:
        self.base_id = base_id
        self.state = ScanState.GRANTING
        self.tables = 0
        self.records = 0
        self.attachments = 0

    def advance(self, target: ScanState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"{self.base_id}: cannot move from {self.state.value} to {target.value}"
            )
        logger.debug(
            "%s -> %s", self.state.value, target.value, extra={"base_id": self.base_id}
        )
        self.state = target

    def finish(self, outcome: ScanOutcome) -> BaseScanResult:
        self.advance(ScanState.DONE)
        return BaseScanResult(
            base_id=self.base_id,
            outcome=outcome,
            tables=self.tables,
            records=self.records,
            attachments=self.attachments,
        )


class BaseScanner:
    """Read every table of a base into the store under the admin principal."""

    def __init__(
        self,
        client: AirtableClient,
        gateway: PersistenceGateway,
        retry: RetryExecutor,
        admin_user_id: str,
        table_concurrency: int = 5,
        attachments: Optional[AttachmentDownloader] = None,
        write_records: bool = True,
    ) -> None:
        self.client = client
        self.gateway = gateway
        self.retry = retry
        self.admin_user_id = admin_user_id
        self.table_concurrency = table_concurrency
        self.attachments = attachments
        self.write_records = write_records
        if not write_records and attachments is None:
            raise ValueError("an attachment-only scanner needs an AttachmentDownloader")

    async def scan(self, base: Base, scan_id: str, skip_list: SkipList) -> BaseScanResult:
        scan = _BaseScan(base.id)
        started = time.monotonic()
        result = await self._run(scan, scan_id, skip_list)
        logger.info(
            "Base scan finished: %s",
            result.outcome.value,
            extra={
                "base_id": base.id,
                "scan_id": scan_id,
                "outcome": result.outcome.value,
                "records": result.records,
                "attachments": result.attachments,
                "duration_s": round(time.monotonic() - started, 3),
            },
        )
        return result

    async def _run(self, scan: _BaseScan, scan_id: str, skip_list: SkipList) -> BaseScanResult:
        base_id = scan.base_id

        # GRANTING
        logger.info("Adding admin to base", extra={"base_id": base_id})
        try:
            await self.retry.run(
                lambda: self.client.add_base_collaborator(base_id, self.admin_user_id, "read"),
                base_id,
            )
        except NotFoundError:
            logger.warning("Base cannot be found, skipping scan", extra={"base_id": base_id})
            return scan.finish(ScanOutcome.NOT_FOUND)
        except ForbiddenError:
            logger.warning("Admin could not be added to base, skipping", extra={"base_id": base_id})
            skip_list.add(base_id)
            return scan.finish(ScanOutcome.GRANT_FORBIDDEN)
        scan.advance(ScanState.DISCOVERING)

        # DISCOVERING
        try:
            raw_tables = await self.retry.run(lambda: self.client.list_tables(base_id), base_id)
        except ForbiddenError:
            logger.warning(
                "Base is not enabled for the metadata API, it may still be on a Pro plan",
                extra={"base_id": base_id},
            )
            await self._release_grant(base_id)
            return scan.finish(ScanOutcome.METADATA_FORBIDDEN)
        tables = [Table.from_api(t) for t in raw_tables]
        scan.tables = len(tables)
        scan.advance(ScanState.SCANNING_TABLES)

        # SCANNING_TABLES
        try:
            await map_bounded(
                tables,
                lambda table: self._scan_table(scan, table, scan_id),
                self.table_concurrency,
            )
        except Exception:
            logger.exception(
                "Could not scan all tables, skipping base so other bases can be scanned",
                extra={"base_id": base_id},
            )
            skip_list.add(base_id)
            await self._release_grant(base_id)
            return scan.finish(ScanOutcome.TABLE_FAILED)
        logger.info(
            "All tables written",
            extra={"base_id": base_id, "records": scan.records, "attachments": scan.attachments},
        )
        scan.advance(ScanState.REVOKING)

        # REVOKING
        try:
            await self.retry.run(
                lambda: self.client.remove_base_collaborator(base_id, self.admin_user_id),
                base_id,
            )
        except ForbiddenError as exc:
            # The admin is a workspace collaborator; base level removal does not apply.
            logger.warning(
                "Removing admin from base failed with %s, leaving access as is",
                exc.status_code,
                extra={"base_id": base_id},
            )

        if not self.write_records:
            return scan.finish(ScanOutcome.SCANNED)
        scan.advance(ScanState.COMMITTING)

        # COMMITTING
        scan_time = datetime.now(timezone.utc).isoformat()
        await self.gateway.mark_base_scanned(base_id, scan_id, scan_time)
        return scan.finish(ScanOutcome.SCANNED)

    async def _release_grant(self, base_id: str) -> None:
        """Revoke the admin grant on an early exit. Failures are logged only."""
        try:
            await self.retry.run(
                lambda: self.client.remove_base_collaborator(base_id, self.admin_user_id),
                base_id,
            )
        except (ApiError, requests.RequestException) as exc:
            logger.warning(
                "Could not remove admin from base: %s", exc, extra={"base_id": base_id}
            )

    async def _scan_table(self, scan: _BaseScan, table: Table, scan_id: str) -> None:
        base_id = scan.base_id
        attachment_fields = table.attachment_fields() if self.attachments else []
        if not self.write_records and not attachment_fields:
            logger.info(
                "No attachment fields, skipping table",
                extra={"base_id": base_id, "table_id": table.id},
            )
            return

        logger.info("Pulling data", extra={"base_id": base_id, "table_id": table.id})
        written = 0
        async for page in RecordPager(self.client, self.retry, base_id, table.id):
            if self.write_records and page:
                await self.gateway.upsert_records(page, scan_id)
                written += len(page)
                scan.records += len(page)
            if attachment_fields:
                scan.attachments += await self.attachments.download_page(
                    base_id, table.id, page, attachment_fields
                )
        logger.info(
            "Table written",
            extra={"base_id": base_id, "table_id": table.id, "records": written},
        )
