"""Top-level export run: crawl, scan pending bases, reconcile."""

from __future__ import annotations

import enum
import logging
import time
import uuid
from pathlib import Path
from typing import Iterable, Optional

from scripts.airtable_export.attachments import AttachmentDownloader
from scripts.airtable_export.client import AirtableClient
from scripts.airtable_export.concurrency import map_bounded
from scripts.airtable_export.config import ExportConfig
from scripts.airtable_export.crawler import WorkspaceCrawler
from scripts.airtable_export.gateway import PersistenceGateway
from scripts.airtable_export.models import (
    Base,
    BaseScanResult,
    CrawlResult,
    ExportResult,
    ScanOutcome,
)
from scripts.airtable_export.reconcile import ReconciliationEngine
from scripts.airtable_export.retry import RetryExecutor
from scripts.airtable_export.scanner import BaseScanner, SkipList

logger = logging.getLogger("export.coordinator")


class RunPhase(str, enum.Enum):
    INIT = "init"
    CRAWLING = "crawling"
    SCANNING = "scanning"
    RECONCILING = "reconciling"
    DONE = "done"


def resolve_scan_id(scan_id: Optional[str] = None) -> str:
    """Use a supplied scan id verbatim (resume), otherwise mint a new one."""
    if scan_id:
        logger.info("Using supplied scan ID", extra={"scan_id": scan_id})
        return scan_id
    return str(uuid.uuid4())


class ScanCoordinator:
    """Owns the scan id and skip list of one run and drives the phases."""

    def __init__(
        self,
        client: AirtableClient,
        gateway: PersistenceGateway,
        config: ExportConfig,
        retry: Optional[RetryExecutor] = None,
        crawler: Optional[WorkspaceCrawler] = None,
        scanner: Optional[BaseScanner] = None,
        reconciler: Optional[ReconciliationEngine] = None,
        attachments: Optional[bool] = None,
    ) -> None:
        self.client = client
        self.gateway = gateway
        self.config = config
        self.retry = retry or RetryExecutor(
            max_attempts=config.retry.max_attempts,
            backoff_seconds=config.retry.backoff_seconds,
        )
        conc = config.concurrency
        self.crawler = crawler or WorkspaceCrawler(
            client,
            gateway,
            self.retry,
            workspace_concurrency=conc.workspaces,
            base_concurrency=conc.base_metadata,
        )
        want_attachments = config.attachments.enabled if attachments is None else attachments
        self.scanner = scanner or BaseScanner(
            client,
            gateway,
            self.retry,
            config.airtable.admin_user_id,
            table_concurrency=conc.tables,
            attachments=self._downloader() if want_attachments else None,
        )
        self.reconciler = reconciler or ReconciliationEngine(gateway)
        self.phase = RunPhase.INIT

    def _downloader(self) -> AttachmentDownloader:
        return AttachmentDownloader(
            Path(self.config.attachments.directory),
            self.retry,
            concurrency=self.config.concurrency.attachments,
            timeout_s=self.config.airtable.request_timeout_s,
        )

    def _enter(self, phase: RunPhase, scan_id: str) -> None:
        logger.info("Entering %s phase", phase.value, extra={"scan_id": scan_id})
        self.phase = phase

    async def run(
        self,
        scan_id: Optional[str] = None,
        delete: bool = False,
        crawl: bool = True,
    ) -> ExportResult:
        tic = time.monotonic()
        self.phase = RunPhase.INIT
        scan_id = resolve_scan_id(scan_id)
        logger.info("Scan ID: %s", scan_id, extra={"scan_id": scan_id})
        skip_list = SkipList()

        crawl_result: Optional[CrawlResult] = None
        if crawl:
            self._enter(RunPhase.CRAWLING, scan_id)
            crawl_result = await self.crawler.crawl(self.config.airtable.enterprise_account_ids)
            logger.info(
                "Workspaces and bases tables populated: %s", crawl_result, extra={"scan_id": scan_id}
            )

        self._enter(RunPhase.SCANNING, scan_id)
        bases = await self.gateway.bases_pending(scan_id)
        logger.info("Found %d bases to scan", len(bases), extra={"scan_id": scan_id})
        results = await self.scan_bases(bases, scan_id, skip_list, self.scanner)

        # Bases the crawl just saw but whose tables could not be listed still
        # exist upstream, even though they are not on the skip list.
        protected = skip_list.as_list() + [
            r.base_id for r in results if r.outcome is ScanOutcome.METADATA_FORBIDDEN
        ]
        if delete:
            self._enter(RunPhase.RECONCILING, scan_id)
        reconcile_result = await self.reconciler.reconcile(
            scan_id, delete=delete, protected_base_ids=protected
        )

        self._enter(RunPhase.DONE, scan_id)
        self._report_skipped(skip_list, scan_id)
        result = ExportResult(
            scan_id=scan_id,
            crawl=crawl_result,
            bases_selected=len(bases),
            results=results,
            skipped=skip_list.as_list(),
            reconcile=reconcile_result,
            duration_s=round(time.monotonic() - tic, 3),
        )
        logger.info(
            "Success %s. Base data parsed",
            scan_id,
            extra={"scan_id": scan_id, "records": result.records, "duration_s": result.duration_s},
        )
        return result

    async def export_attachments(self, base_ids: Iterable[str]) -> ExportResult:
        """Download attachments only, for an explicit list of bases.

        Nothing is tagged, so the run has no effect on resumption or
        reconciliation of the regular export.
        """
        tic = time.monotonic()
        scan_id = resolve_scan_id()
        skip_list = SkipList()
        scanner = BaseScanner(
            self.client,
            self.gateway,
            self.retry,
            self.config.airtable.admin_user_id,
            table_concurrency=self.config.concurrency.tables,
            attachments=self._downloader(),
            write_records=False,
        )
        bases = [Base(id=b, workspace_id=None) for b in base_ids]
        self._enter(RunPhase.SCANNING, scan_id)
        results = await self.scan_bases(bases, scan_id, skip_list, scanner)
        self._enter(RunPhase.DONE, scan_id)
        self._report_skipped(skip_list, scan_id)
        return ExportResult(
            scan_id=scan_id,
            crawl=None,
            bases_selected=len(bases),
            results=results,
            skipped=skip_list.as_list(),
            duration_s=round(time.monotonic() - tic, 3),
        )

    async def scan_bases(
        self,
        bases: list[Base],
        scan_id: str,
        skip_list: SkipList,
        scanner: BaseScanner,
    ) -> list[BaseScanResult]:
        """Scan bases with bounded concurrency; one failing base never stops the others."""

        async def _scan_one(base: Base) -> BaseScanResult:
            try:
                return await scanner.scan(base, scan_id, skip_list)
            except Exception:
                logger.exception(
                    "Base scan failed, skipping", extra={"base_id": base.id, "scan_id": scan_id}
                )
                skip_list.add(base.id)
                return BaseScanResult(base_id=base.id, outcome=ScanOutcome.FAILED)

        return await map_bounded(bases, _scan_one, self.config.concurrency.bases)

    @staticmethod
    def _report_skipped(skip_list: SkipList, scan_id: str) -> None:
        if len(skip_list):
            logger.warning(
                "Could not scan all bases. Skipped: %s",
                skip_list.as_list(),
                extra={"scan_id": scan_id},
            )
