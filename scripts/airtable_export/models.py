"""Value types shared by the crawler, scanner, reconciler and store."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

ATTACHMENT_FIELD_TYPE = "multipleAttachments"


@dataclass(frozen=True)
class Workspace:
    id: str
    name: Optional[str]
    created_time: Optional[str]
    owners: str


@dataclass(frozen=True)
class Base:
    id: str
    workspace_id: Optional[str]
    name: Optional[str] = None
    created_time: Optional[str] = None
    scan_time: Optional[str] = None
    scan_id: Optional[str] = None


@dataclass(frozen=True)
class BaseCandidate:
    workspace_id: str
    base_id: str


@dataclass(frozen=True)
class Field:
    id: str
    name: str
    type: str


@dataclass(frozen=True)
class Table:
    id: str
    name: str
    fields: tuple[Field, ...] = ()

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "Table":
        fields = tuple(
            Field(id=f.get("id", ""), name=f["name"], type=f.get("type", ""))
            for f in raw.get("fields", [])
        )
        return cls(id=raw["id"], name=raw.get("name", raw["id"]), fields=fields)

    def attachment_fields(self) -> list[Field]:
        return [f for f in self.fields if f.type == ATTACHMENT_FIELD_TYPE]


@dataclass(frozen=True)
class Record:
    base_id: str
    table_id: str
    record_id: str
    fields: dict[str, Any]
    created_time: Optional[str]


@dataclass(frozen=True)
class Attachment:
    id: str
    filename: str
    url: str


class ScanOutcome(str, enum.Enum):
    SCANNED = "scanned"
    NOT_FOUND = "not_found"
    GRANT_FORBIDDEN = "grant_forbidden"
    METADATA_FORBIDDEN = "metadata_forbidden"
    TABLE_FAILED = "table_failed"
    FAILED = "failed"


@dataclass(frozen=True)
class BaseScanResult:
    base_id: str
    outcome: ScanOutcome
    tables: int = 0
    records: int = 0
    attachments: int = 0

    @property
    def committed(self) -> bool:
        return self.outcome is ScanOutcome.SCANNED


@dataclass(frozen=True)
class CrawlResult:
    accounts: int = 0
    users: int = 0
    workspaces: int = 0
    bases: int = 0


@dataclass(frozen=True)
class ReconcileResult:
    deleted: bool
    bases_deleted: int = 0
    records_deleted: int = 0
    protected_bases: int = 0


@dataclass(frozen=True)
class ExportResult:
    scan_id: str
    crawl: Optional[CrawlResult]
    bases_selected: int
    results: list[BaseScanResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    reconcile: Optional[ReconcileResult] = None
    duration_s: float = 0.0

    @property
    def records(self) -> int:
        return sum(r.records for r in self.results)
