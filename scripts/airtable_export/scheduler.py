"""APScheduler-based interval scheduling for export runs."""

from __future__ import annotations

import logging

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from scripts.airtable_export.config import ExportConfig
from scripts.airtable_export.db import Database

logger = logging.getLogger("export.scheduler")


def _export_job(config: ExportConfig, db: Database, delete: bool) -> None:
    """Run one export with a fresh scan id. Failures wait for the next interval."""
    from scripts.airtable_export.cli import run_export

    try:
        result = run_export(config, db, delete=delete)
        logger.info(
            "Scheduled export complete, %d skipped bases",
            len(result.skipped),
            extra={"scan_id": result.scan_id, "duration_s": result.duration_s},
        )
    except Exception as exc:
        logger.error("Scheduled export failed: %s", exc, exc_info=True)


def _on_job_error(event) -> None:
    logger.error("Job %s failed: %s", event.job_id, event.exception)


def build_scheduler(config: ExportConfig, db: Database, delete: bool = False) -> BlockingScheduler:
    scheduler = BlockingScheduler()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_job(
        _export_job,
        "interval",
        hours=config.scheduler.interval_hours,
        args=[config, db, delete],
        id="airtable_export",
        max_instances=1,
        misfire_grace_time=config.scheduler.misfire_grace_time,
    )
    return scheduler


def start_scheduler(config: ExportConfig, db: Database, delete: bool = False) -> None:
    """Start the blocking scheduler with one interval export job."""
    scheduler = build_scheduler(config, db, delete=delete)
    logger.info("Exporting every %d hours", config.scheduler.interval_hours)
    scheduler.start()
