"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables (local dev)
  - AWS Secrets Manager (aws-secret://name#key)
  - GCP Secret Manager (gcp-secret://name)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from scripts.airtable_export.secrets import resolve_database_url, resolve_secret


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    min_connections: int = 2
    max_connections: int = 10


@dataclass(frozen=True)
class AirtableConfig:
    api_key: str
    enterprise_account_ids: list[str]
    admin_user_id: str
    api_base_url: str = "https://api.airtable.com/v0"
    request_timeout_s: float = 30.0
    page_size: int = 100


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 5
    backoff_seconds: float = 10.0


@dataclass(frozen=True)
class ConcurrencyConfig:
    # API rate limits are per base, so bases run few at a time while each
    # base fans out over its tables.
    workspaces: int = 10
    base_metadata: int = 10
    bases: int = 2
    tables: int = 5
    attachments: int = 10


@dataclass(frozen=True)
class AttachmentConfig:
    enabled: bool = False
    directory: str = "attachments"


@dataclass(frozen=True)
class SchedulerConfig:
    interval_hours: int = 24
    misfire_grace_time: int = 3600


@dataclass(frozen=True)
class ExportConfig:
    airtable: AirtableConfig
    database: DatabaseConfig
    retry: RetryConfig = field(default_factory=RetryConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    attachments: AttachmentConfig = field(default_factory=AttachmentConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


def _require(name: str) -> str:
    value = os.environ.get(name, "")
    if not value:
        raise ValueError(f"{name} environment variable is required")
    return value


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_config() -> ExportConfig:
    """Load configuration from environment variables.

    The admin key and database URL may be cloud secret references; they are
    resolved here so the rest of the exporter only ever sees plaintext.
    """
    load_dotenv()

    api_key = resolve_secret(_require("AIRTABLE_API_ADMIN_KEY"))
    accounts_raw = _require("AIRTABLE_ENTERPRISE_ACCOUNT_IDS")
    accounts = [s.strip() for s in accounts_raw.split(",") if s.strip()]
    if not accounts:
        raise ValueError("AIRTABLE_ENTERPRISE_ACCOUNT_IDS must list at least one account")

    airtable = AirtableConfig(
        api_key=api_key,
        enterprise_account_ids=accounts,
        admin_user_id=_require("AIRTABLE_ADMIN_USER_ID"),
        api_base_url=os.environ.get("AIRTABLE_API_BASE_URL", "https://api.airtable.com/v0"),
        request_timeout_s=float(os.environ.get("AIRTABLE_REQUEST_TIMEOUT", "30")),
    )

    database = DatabaseConfig(
        url=resolve_database_url(),
        min_connections=int(os.environ.get("DB_MIN_CONNECTIONS", "2")),
        max_connections=int(os.environ.get("DB_MAX_CONNECTIONS", "10")),
    )

    retry = RetryConfig(
        max_attempts=int(os.environ.get("EXPORT_RETRY_ATTEMPTS", "5")),
        backoff_seconds=float(os.environ.get("EXPORT_RETRY_BACKOFF_S", "10")),
    )

    concurrency = ConcurrencyConfig(
        workspaces=int(os.environ.get("EXPORT_WORKSPACE_CONCURRENCY", "10")),
        base_metadata=int(os.environ.get("EXPORT_BASE_META_CONCURRENCY", "10")),
        bases=int(os.environ.get("EXPORT_BASE_CONCURRENCY", "2")),
        tables=int(os.environ.get("EXPORT_TABLE_CONCURRENCY", "5")),
        attachments=int(os.environ.get("EXPORT_ATTACHMENT_CONCURRENCY", "10")),
    )

    attachments = AttachmentConfig(
        enabled=_flag("EXPORT_ATTACHMENTS"),
        directory=os.environ.get("EXPORT_ATTACHMENT_DIR", "attachments"),
    )

    scheduler = SchedulerConfig(
        interval_hours=int(os.environ.get("EXPORT_INTERVAL_HOURS", "24")),
    )

    return ExportConfig(
        airtable=airtable,
        database=database,
        retry=retry,
        concurrency=concurrency,
        attachments=attachments,
        scheduler=scheduler,
    )
