"""Remove bases and records that the current scan did not see."""

from __future__ import annotations

import logging
from typing import Iterable

from scripts.airtable_export.gateway import BASES, RECORDS, EntityKind, PersistenceGateway
from scripts.airtable_export.models import ReconcileResult

logger = logging.getLogger("export.reconcile")


class ReconciliationEngine:
    """Delete rows whose scan id is not the current one.

    A missing tag is the only signal that something disappeared upstream,
    and a base skipped this run looks exactly the same. Callers pass the
    run's skip list as ``protected_base_ids``; those bases and their records
    are kept until a later clean scan decides about them.
    """

    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    async def reconcile(
        self,
        scan_id: str,
        delete: bool = False,
        protected_base_ids: Iterable[str] = (),
    ) -> ReconcileResult:
        protected = sorted(set(protected_base_ids))
        if not delete:
            logger.info(
                "Delete data flag not passed, not deleting any bases or data",
                extra={"scan_id": scan_id},
            )
            return ReconcileResult(deleted=False, protected_bases=len(protected))

        if protected:
            logger.warning(
                "Keeping %d skipped bases and their records out of the delete set: %s",
                len(protected),
                protected,
                extra={"scan_id": scan_id},
            )

        bases_deleted = await self._delete_stale(BASES, scan_id, protected)
        records_deleted = await self._delete_stale(RECORDS, scan_id, protected)
        return ReconcileResult(
            deleted=True,
            bases_deleted=bases_deleted,
            records_deleted=records_deleted,
            protected_bases=len(protected),
        )

    async def _delete_stale(
        self, kind: EntityKind, scan_id: str, protected: list[str]
    ) -> int:
        stale = await self.gateway.stale_ids(kind, scan_id, protected)
        logger.info(
            "Found %d stale rows in %s", len(stale), kind.table, extra={"scan_id": scan_id}
        )
        if not stale:
            return 0
        deleted = await self.gateway.delete_ids(kind, stale)
        logger.info("Deleted %d rows from %s", deleted, kind.table, extra={"scan_id": scan_id})
        return deleted
