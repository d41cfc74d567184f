"""Tests for attachment filename handling and downloads."""

from unittest.mock import MagicMock

import pytest
import requests

from scripts.airtable_export.attachments import (
    AttachmentDownloader,
    attachment_path,
    clean_filename,
    collect_attachments,
)
from scripts.airtable_export.errors import NotFoundError
from scripts.airtable_export.models import Attachment, Base, Field, Record, ScanOutcome
from scripts.airtable_export.scanner import BaseScanner, SkipList


def stream_response(status, body=b""):
    resp = requests.Response()
    resp.status_code = status
    resp._content = body
    resp._content_consumed = True
    resp.url = "https://dl.airtable.com/file"
    return resp


def record(record_id, **fields):
    return Record("appA", "tbl1", record_id, fields, None)


FILES = Field("fld1", "Files", "multipleAttachments")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("report.pdf", "report.pdf"),
        ("photo.png?authuser=0", "photo.png"),
        ("a/b\\c.txt", "a_b_c.txt"),
        ("ﬁnal   draft.docx", "final draft.docx"),
        ("<>:|*?", "untitled"),
        ("..", "untitled"),
    ],
)
def test_clean_filename(raw, expected):
    assert clean_filename(raw) == expected


def test_same_filename_in_two_records_gets_two_paths(tmp_path):
    first = attachment_path(tmp_path, "appA", Attachment("att1", "scan.pdf", "u1"))
    second = attachment_path(tmp_path, "appA", Attachment("att2", "scan.pdf", "u2"))

    assert first != second
    assert first.parent == tmp_path / "appA"
    assert first.name == "att1_scan.pdf"


def test_collect_attachments_reads_only_attachment_fields():
    records = [
        record("rec1", Files=[{"id": "att1", "filename": "a.txt", "url": "https://dl/a"}], Name="x"),
        record("rec2"),
        record("rec3", Files=[{"id": "att2", "url": "https://dl/b"}]),
    ]

    found = collect_attachments(records, [FILES])

    assert [a.id for a in found] == ["att1", "att2"]
    assert found[1].filename == "att2"


@pytest.mark.asyncio
async def test_download_page_streams_into_base_directory(tmp_path, retry):
    session = MagicMock()
    session.get.return_value = stream_response(200, b"hello attachment")
    downloader = AttachmentDownloader(tmp_path, retry, session=session)
    records = [record("rec1", Files=[{"id": "att1", "filename": "note.txt", "url": "https://dl/a"}])]

    count = await downloader.download_page("appA", "tbl1", records, [FILES])

    assert count == 1
    target = tmp_path / "appA" / "att1_note.txt"
    assert target.read_bytes() == b"hello attachment"
    assert not list((tmp_path / "appA").glob("*.part"))
    session.get.assert_called_once_with("https://dl/a", stream=True, timeout=60.0)


@pytest.mark.asyncio
async def test_download_page_without_attachments_does_nothing(tmp_path, retry):
    session = MagicMock()
    downloader = AttachmentDownloader(tmp_path, retry, session=session)

    assert await downloader.download_page("appA", "tbl1", [record("rec1")], [FILES]) == 0
    session.get.assert_not_called()
    assert not (tmp_path / "appA").exists()


@pytest.mark.asyncio
async def test_failed_download_propagates(tmp_path, retry):
    session = MagicMock()
    session.get.return_value = stream_response(404, b"")
    downloader = AttachmentDownloader(tmp_path, retry, session=session)
    records = [record("rec1", Files=[{"id": "att1", "filename": "gone.txt", "url": "https://dl/x"}])]

    with pytest.raises(NotFoundError):
        await downloader.download_page("appA", "tbl1", records, [FILES])

    assert not (tmp_path / "appA" / "att1_gone.txt").exists()


def by_url(bodies):
    def get(url, stream=True, timeout=None):
        return stream_response(200, bodies[url])

    return get


SAME_NAME_RECORDS = [
    ("rec1", {"id": "att1", "filename": "scan.pdf", "url": "https://dl/one"}),
    ("rec2", {"id": "att2", "filename": "scan.pdf", "url": "https://dl/two"}),
]
BODIES = {"https://dl/one": b"first scan", "https://dl/two": b"second scan"}


@pytest.mark.asyncio
async def test_same_filename_in_two_records_downloads_both(tmp_path, retry):
    session = MagicMock()
    session.get.side_effect = by_url(BODIES)
    downloader = AttachmentDownloader(tmp_path, retry, session=session)
    records = [record(rid, Files=[att]) for rid, att in SAME_NAME_RECORDS]

    assert await downloader.download_page("appA", "tbl1", records, [FILES]) == 2

    assert (tmp_path / "appA" / "att1_scan.pdf").read_bytes() == b"first scan"
    assert (tmp_path / "appA" / "att2_scan.pdf").read_bytes() == b"second scan"


@pytest.mark.asyncio
async def test_scanner_writes_same_named_attachments_side_by_side(
    tmp_path, airtable, gateway, retry, make_record
):
    airtable.add_base(
        "appA",
        {"tbl1": [[make_record(rid, Files=[att]) for rid, att in SAME_NAME_RECORDS]]},
        fields={"tbl1": [{"id": "fld1", "name": "Files", "type": "multipleAttachments"}]},
    )
    gateway.bases["appA"] = {
        "id": "appA", "workspace_id": "wspA", "name": "A",
        "created_time": None, "scan_time": None, "scan_id": None,
    }
    session = MagicMock()
    session.get.side_effect = by_url(BODIES)
    downloader = AttachmentDownloader(tmp_path, retry, session=session)
    scanner = BaseScanner(airtable, gateway, retry, "usrAdmin", attachments=downloader)

    result = await scanner.scan(Base(**gateway.bases["appA"]), "scan-1", SkipList())

    assert result.outcome is ScanOutcome.SCANNED
    assert result.attachments == 2
    assert sorted(p.name for p in (tmp_path / "appA").iterdir()) == ["att1_scan.pdf", "att2_scan.pdf"]
    assert (tmp_path / "appA" / "att1_scan.pdf").read_bytes() == b"first scan"
    assert (tmp_path / "appA" / "att2_scan.pdf").read_bytes() == b"second scan"
    assert gateway.bases["appA"]["scan_id"] == "scan-1"
