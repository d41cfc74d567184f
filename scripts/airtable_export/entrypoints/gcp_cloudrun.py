"""GCP Cloud Run Job entry point for the Airtable export.

Deployed as a Cloud Run Job triggered by Cloud Scheduler. Behaviour is
controlled through the environment so the job definition needs no args.

Usage:
  python -m scripts.airtable_export.entrypoints.gcp_cloudrun
  EXPORT_SCAN_ID=<id> python -m scripts.airtable_export.entrypoints.gcp_cloudrun   # resume
  EXPORT_DELETE_DATA=true python -m scripts.airtable_export.entrypoints.gcp_cloudrun
  EXPORT_SCAN_ID=<id> EXPORT_SKIP_CRAWL=true python -m scripts.airtable_export.entrypoints.gcp_cloudrun   # resume, no crawl
"""

from __future__ import annotations

import logging
import os
import sys

from scripts.airtable_export.cli import run_export
from scripts.airtable_export.config import load_config
from scripts.airtable_export.db import Database
from scripts.airtable_export.logging_config import configure_logging

logger = logging.getLogger("export.cloudrun")


def main() -> None:
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    scan_id = os.environ.get("EXPORT_SCAN_ID") or None
    delete = os.environ.get("EXPORT_DELETE_DATA", "").lower() == "true"
    crawl = os.environ.get("EXPORT_SKIP_CRAWL", "").lower() != "true"
    logger.info("Cloud Run Job started", extra={"scan_id": scan_id})

    config = load_config()
    db = Database(config.database)

    try:
        result = run_export(config, db, scan_id=scan_id, delete=delete, crawl=crawl)
        logger.info(
            "Export complete, skipped bases: %s",
            result.skipped,
            extra={"scan_id": result.scan_id, "duration_s": result.duration_s},
        )
    except Exception as exc:
        logger.error("Export failed: %s", exc, exc_info=True)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
