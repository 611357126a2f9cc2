"""
Tests for the SMS search index.

Tests cover:
- Phone number + time range filtering (inclusive bounds)
- Case-insensitive text search
- Paging and newest-first ordering
- Upsert replacing an existing document
- Versioned document mapping (unknown versions and fields rejected)
"""

import json
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from app.lifecycle import SmsStatus
from app.search_index import (
    PageRequest,
    PhoneTimeRangeFilter,
    SmsDocument,
    TextFilter,
    UnsupportedDocumentVersion,
)


BASE = datetime(2024, 1, 15, 12, 0, 0)
A = "+15550000001"
B = "+15550000002"


def make_document(n, phone=A, message="hello", created_at=None, status=SmsStatus.SENT):
    created_at = created_at or BASE + timedelta(minutes=n)
    return SmsDocument(
        id=n,
        correlation_id=f"corr-{n}",
        phone_number=phone,
        message=message,
        status=status,
        message_id=f"MSG-{n}" if status == SmsStatus.SENT else None,
        failure_code=None if status == SmsStatus.SENT else "RATE_LIMIT",
        created_at=created_at,
        updated_at=created_at,
    )


def index(search_index, *documents):
    for document in documents:
        search_index.upsert(document.correlation_id, document)


class TestPhoneTimeRange:
    def test_filters_by_phone_and_inclusive_range(self, search_index):
        index(
            search_index,
            make_document(1, created_at=BASE),
            make_document(2, created_at=BASE + timedelta(hours=1)),
            make_document(3, created_at=BASE + timedelta(hours=3)),
            make_document(4, phone=B, created_at=BASE + timedelta(minutes=30)),
        )

        page = search_index.search_by_phone_number_and_time_range(
            A, BASE, BASE + timedelta(hours=1)
        )

        assert [d.correlation_id for d in page.content] == ["corr-2", "corr-1"]
        assert page.total_elements == 2

    def test_empty_range(self, search_index):
        index(search_index, make_document(1))
        page = search_index.query(
            PhoneTimeRangeFilter(A, BASE - timedelta(days=2), BASE - timedelta(days=1))
        )
        assert page.content == []
        assert page.total_elements == 0
        assert page.total_pages == 0


class TestTextSearch:
    def test_case_insensitive_substring(self, search_index):
        index(
            search_index,
            make_document(1, message="Your OTP is 1234"),
            make_document(2, message="your otp expires soon"),
            make_document(3, message="Welcome aboard"),
        )

        page = search_index.search_by_text("otp")

        assert {d.correlation_id for d in page.content} == {"corr-1", "corr-2"}

    def test_matches_every_status(self, search_index):
        index(
            search_index,
            make_document(1, message="promo", status=SmsStatus.SENT),
            make_document(2, message="promo", status=SmsStatus.FAILED),
            make_document(3, message="promo", status=SmsStatus.BLACKLISTED),
        )
        page = search_index.query(TextFilter("PROMO"))
        assert page.total_elements == 3

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("100%", {"corr-1"}),
            ("a_b", {"corr-3"}),
            ("c\\d", {"corr-5"}),
        ],
    )
    def test_wildcards_match_literally(self, search_index, text, expected):
        index(
            search_index,
            make_document(1, message="100% off today"),
            make_document(2, message="1000 points"),
            make_document(3, message="key a_b set"),
            make_document(4, message="key axb set"),
            make_document(5, message="path c\\d here"),
        )

        page = search_index.search_by_text(text)

        assert {d.correlation_id for d in page.content} == expected


class TestPaging:
    def test_pages_are_newest_first(self, search_index):
        index(search_index, *[make_document(n) for n in range(1, 6)])

        first = search_index.search_by_text("hello", PageRequest(page=0, size=2))
        second = search_index.search_by_text("hello", PageRequest(page=1, size=2))
        last = search_index.search_by_text("hello", PageRequest(page=2, size=2))

        assert [d.id for d in first.content] == [5, 4]
        assert [d.id for d in second.content] == [3, 2]
        assert [d.id for d in last.content] == [1]
        assert first.total_elements == 5
        assert first.total_pages == 3
        assert second.page == 1
        assert second.size == 2

    def test_ties_ordered_by_correlation_id(self, search_index):
        index(
            search_index,
            make_document(2, created_at=BASE),
            make_document(1, created_at=BASE),
        )
        page = search_index.search_by_text("hello")
        assert [d.correlation_id for d in page.content] == ["corr-1", "corr-2"]

    def test_invalid_page_request(self):
        with pytest.raises(ValueError):
            PageRequest(page=-1)
        with pytest.raises(ValueError):
            PageRequest(size=0)


class TestUpsert:
    def test_same_key_replaces_document(self, search_index):
        index(search_index, make_document(1, status=SmsStatus.FAILED))
        index(search_index, make_document(1, status=SmsStatus.SENT))

        page = search_index.search_by_text("hello")

        assert page.total_elements == 1
        assert page.content[0].status == SmsStatus.SENT
        assert page.content[0].message_id == "MSG-1"

    def test_index_request_uses_record_fields(self, search_index, record_store):
        record_store.insert("corr-x", A, "from the store")
        record_store.transition("corr-x", SmsStatus.PROCESSING)
        record = record_store.transition("corr-x", SmsStatus.SENT, message_id="MSG-X")

        search_index.index_request(record)

        document = search_index.search_by_text("from the store").content[0]
        assert document.id == record.id
        assert document.correlation_id == "corr-x"
        assert document.message_id == "MSG-X"
        assert document.schema_version == 1


class TestDocumentMapping:
    def test_document_carries_schema_version(self):
        assert make_document(1).to_document()["schema_version"] == 1

    def test_unknown_version_is_rejected(self):
        document = make_document(1).to_document()
        document["schema_version"] = 2
        with pytest.raises(UnsupportedDocumentVersion):
            SmsDocument.from_document(document)

    def test_unknown_field_is_rejected(self):
        document = make_document(1).to_document()
        document["priority"] = "high"
        with pytest.raises(ValidationError):
            SmsDocument.from_document(document)

    def test_unreadable_stored_document_is_skipped(self, search_index):
        from app.models import SmsSearchDocumentRow
        from app.storage import SessionLocal

        index(search_index, make_document(1), make_document(2))
        with SessionLocal() as db:
            row = db.get(SmsSearchDocumentRow, "corr-1")
            stored = json.loads(row.document)
            stored["schema_version"] = 99
            row.document = json.dumps(stored)
            db.commit()

        page = search_index.search_by_text("hello")

        assert [d.correlation_id for d in page.content] == ["corr-2"]
        assert page.total_elements == 2
