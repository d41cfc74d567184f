"""Attachment extraction for tables with multipleAttachments fields."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import unicodedata
from pathlib import Path
from typing import Iterable, Optional

import requests

from scripts.airtable_export.client import raise_for_api_status
from scripts.airtable_export.concurrency import map_bounded
from scripts.airtable_export.models import Attachment, Field, Record
from scripts.airtable_export.retry import RetryExecutor

logger = logging.getLogger("export.attachments")

CHUNK_SIZE = 64 * 1024


def clean_filename(name: str) -> str:
    """Filesystem-safe version of an attachment filename."""
    name = name.replace("?authuser=0", "")
    name = unicodedata.normalize("NFKC", name).strip()
    name = re.sub(r"[\\/]+", "_", name)
    name = re.sub(r"\s+", " ", name)
    name = "".join(c for c in name if c.isalnum() or c in "._- ")
    name = name.strip(". ")
    return name or "untitled"


def attachment_path(root: Path, base_id: str, attachment: Attachment) -> Path:
    # The attachment id keeps same-named files from different records apart.
    return root / base_id / f"{attachment.id}_{clean_filename(attachment.filename)}"


def collect_attachments(records: Iterable[Record], fields: Iterable[Field]) -> list[Attachment]:
    names = [f.name for f in fields]
    found: list[Attachment] = []
    for record in records:
        for name in names:
            for raw in record.fields.get(name) or []:
                found.append(
                    Attachment(
                        id=raw["id"],
                        filename=raw.get("filename", raw["id"]),
                        url=raw["url"],
                    )
                )
    return found


class AttachmentDownloader:
    """Stream attachment URLs to ``<root>/<base id>/<attachment id>_<filename>``."""

    def __init__(
        self,
        root: str | os.PathLike,
        retry: RetryExecutor,
        concurrency: int = 10,
        session: Optional[requests.Session] = None,
        timeout_s: float = 60.0,
    ) -> None:
        self.root = Path(root)
        self.retry = retry
        self.concurrency = concurrency
        self.timeout_s = timeout_s
        self._session = session or requests.Session()

    def base_dir(self, base_id: str) -> Path:
        path = self.root / base_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    async def download_page(
        self,
        base_id: str,
        table_id: str,
        records: list[Record],
        fields: list[Field],
    ) -> int:
        attachments = collect_attachments(records, fields)
        if not attachments:
            return 0
        self.base_dir(base_id)
        logger.info(
            "Downloading %d attachments",
            len(attachments),
            extra={"base_id": base_id, "table_id": table_id},
        )

        async def _one(attachment: Attachment) -> None:
            target = attachment_path(self.root, base_id, attachment)
            await self.retry.run(
                lambda: asyncio.to_thread(self._download, attachment.url, target),
                attachment.id,
            )

        await map_bounded(attachments, _one, self.concurrency)
        return len(attachments)

    def _download(self, url: str, target: Path) -> None:
        partial = target.with_name(target.name + ".part")
        with self._session.get(url, stream=True, timeout=self.timeout_s) as resp:
            raise_for_api_status(resp)
            with open(partial, "wb") as fh:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
        os.replace(partial, target)
