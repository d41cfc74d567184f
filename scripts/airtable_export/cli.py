"""CLI entry point: export, attachments, schema, status, scheduler."""

from __future__ import annotations

import argparse
import asyncio
import csv
import logging
import sys
from typing import Optional

from scripts.airtable_export.client import AirtableClient
from scripts.airtable_export.config import ExportConfig, load_config
from scripts.airtable_export.coordinator import ScanCoordinator
from scripts.airtable_export.db import Database
from scripts.airtable_export.gateway import PersistenceGateway
from scripts.airtable_export.logging_config import configure_logging
from scripts.airtable_export.models import ExportResult

logger = logging.getLogger("export.cli")


def run_export(
    config: ExportConfig,
    db: Database,
    scan_id: Optional[str] = None,
    delete: bool = False,
    crawl: bool = True,
    attachments: Optional[bool] = None,
) -> ExportResult:
    """One full export run against an open database."""
    client = AirtableClient(config.airtable)
    try:

        async def _run() -> ExportResult:
            gateway = PersistenceGateway(db)
            await gateway.ensure_schema()
            coordinator = ScanCoordinator(client, gateway, config, attachments=attachments)
            return await coordinator.run(scan_id=scan_id, delete=delete, crawl=crawl)

        return asyncio.run(_run())
    finally:
        client.close()


def read_base_ids(path: str) -> list[str]:
    """Base ids from the ``id`` column of a CSV file."""
    with open(path, newline="") as fh:
        reader = csv.DictReader(fh)
        if not reader.fieldnames or "id" not in reader.fieldnames:
            raise ValueError(f"{path} must have an 'id' column")
        return [row["id"].strip() for row in reader if row.get("id", "").strip()]


def cmd_export(args: argparse.Namespace) -> None:
    """Run one export; a failure in the crawl phase exits non-zero."""
    config = load_config()
    db = Database(config.database)

    try:
        result = run_export(
            config,
            db,
            scan_id=args.scan_id,
            delete=args.delete_data,
            crawl=not args.skip_crawl,
            attachments=True if args.attachments else None,
        )
        logger.info(
            "Operation took %.1f seconds, %d bases scanned, %d skipped",
            result.duration_s,
            sum(1 for r in result.results if r.committed),
            len(result.skipped),
        )
        if result.skipped:
            print("Skipped bases: " + ",".join(result.skipped))
        print(f"Success {result.scan_id}")
    except Exception as exc:
        logger.error("Export failed: %s", exc, exc_info=True)
        sys.exit(1)
    finally:
        db.close()


def cmd_attachments(args: argparse.Namespace) -> None:
    """Download attachments for the bases listed in a CSV file."""
    config = load_config()
    base_ids = read_base_ids(args.bases_csv)
    db = Database(config.database)
    client = AirtableClient(config.airtable)

    try:

        async def _run() -> ExportResult:
            coordinator = ScanCoordinator(client, PersistenceGateway(db), config)
            return await coordinator.export_attachments(base_ids)

        result = asyncio.run(_run())
        downloaded = sum(r.attachments for r in result.results)
        print(f"Success. {downloaded} attachments downloaded")
        if result.skipped:
            print("Skipped bases: " + ",".join(result.skipped))
    except Exception as exc:
        logger.error("Attachment export failed: %s", exc, exc_info=True)
        sys.exit(1)
    finally:
        client.close()
        db.close()


def cmd_schema(args: argparse.Namespace) -> None:
    """Create the workspaces, bases and data tables if they are missing."""
    config = load_config()
    db = Database(config.database)
    try:
        db.ensure_schema()
    finally:
        db.close()


def cmd_scheduler(args: argparse.Namespace) -> None:
    """Start the APScheduler-based interval export loop."""
    from scripts.airtable_export.scheduler import start_scheduler

    config = load_config()
    db = Database(config.database)
    try:
        start_scheduler(config, db, delete=args.delete_data)
    finally:
        db.close()


def cmd_status(args: argparse.Namespace) -> None:
    """Show how many bases carry each scan id."""
    config = load_config()
    db = Database(config.database)

    try:
        rows = db.scan_summary()
        if not rows:
            print("No bases found. Run an export first.")
            return

        fmt = "{:<36}  {:>8}  {}"
        print(fmt.format("SCAN ID", "BASES", "LAST SCAN"))
        print("-" * 80)
        for r in rows:
            print(fmt.format(
                r["scan_id"] or "(never scanned)",
                r["bases"],
                (r["last_scan_time"] or "")[:19],
            ))
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="airtable-export",
        description="Resumable bulk export of an Airtable Enterprise account",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # export command
    export_parser = subparsers.add_parser("export", help="Crawl and export all bases")
    export_parser.add_argument(
        "--scan-id",
        help="Resume the run with this scan ID instead of starting a new one",
    )
    export_parser.add_argument(
        "--delete-data",
        action="store_true",
        help="Delete bases and records not seen by this run",
    )
    export_parser.add_argument(
        "--skip-crawl",
        action="store_true",
        help="Scan the bases already in the database without re-crawling workspaces",
    )
    export_parser.add_argument(
        "--attachments",
        action="store_true",
        help="Also download attachments (default: EXPORT_ATTACHMENTS)",
    )
    export_parser.set_defaults(func=cmd_export)

    # attachments command
    att_parser = subparsers.add_parser(
        "attachments", help="Download attachments for bases listed in a CSV"
    )
    att_parser.add_argument(
        "--bases-csv",
        default="listofbases.csv",
        help="CSV file with an 'id' column (default: listofbases.csv)",
    )
    att_parser.set_defaults(func=cmd_attachments)

    # schema command
    schema_parser = subparsers.add_parser("schema", help="Create missing tables")
    schema_parser.set_defaults(func=cmd_schema)

    # status command
    status_parser = subparsers.add_parser("status", help="Show base counts per scan ID")
    status_parser.set_defaults(func=cmd_status)

    # scheduler command
    sched_parser = subparsers.add_parser("scheduler", help="Run exports on an interval")
    sched_parser.add_argument(
        "--delete-data",
        action="store_true",
        help="Delete stale bases and records after each run",
    )
    sched_parser.set_defaults(func=cmd_scheduler)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main CLI entry point."""
    configure_logging()
    args = build_parser().parse_args(argv)
    args.func(args)
