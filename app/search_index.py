"""
Search index for processed SMS requests.

Documents use an explicit, versioned field mapping (SmsDocument). Reading a
document back never guesses: an unknown schema version or unexpected field
is reported instead of being dropped or misread.

The index is a secondary, best-effort store. The record store stays the
source of truth and the index may lag or miss entries.
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import IndexUnavailable
from app.lifecycle import SmsStatus
from app.storage import SessionLocal
from app.utils import to_naive_utc

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class UnsupportedDocumentVersion(ValueError):
    pass


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so `text` matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SmsDocument(BaseModel):
    """Version 1 of the indexed SMS request document."""
    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = SCHEMA_VERSION
    id: int
    correlation_id: str
    phone_number: str
    message: str
    status: SmsStatus
    message_id: Optional[str] = None
    failure_code: Optional[str] = None
    failure_comments: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record) -> "SmsDocument":
        return cls(
            id=record.id,
            correlation_id=record.correlation_id,
            phone_number=record.phone_number,
            message=record.message,
            status=record.status,
            message_id=record.message_id,
            failure_code=record.failure_code,
            failure_comments=record.failure_comments,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def to_document(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, document: dict) -> "SmsDocument":
        version = document.get("schema_version")
        if version != SCHEMA_VERSION:
            raise UnsupportedDocumentVersion(f"Unsupported SMS document schema_version: {version!r}")
        return cls.model_validate(document)


@dataclass(frozen=True)
class PhoneTimeRangeFilter:
    """Documents for one phone number created within [start_time, end_time]."""
    phone_number: str
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class TextFilter:
    """Documents whose message contains `text` (case-insensitive)."""
    text: str


SearchFilter = Union[PhoneTimeRangeFilter, TextFilter]


@dataclass(frozen=True)
class PageRequest:
    page: int = 0
    size: int = 10

    def __post_init__(self):
        if self.page < 0:
            raise ValueError("page must be >= 0")
        if self.size < 1:
            raise ValueError("size must be >= 1")

    @property
    def offset(self) -> int:
        return self.page * self.size


class SearchPage(BaseModel):
    content: List[SmsDocument] = Field(default_factory=list)
    total_elements: int
    total_pages: int
    page: int
    size: int


class SearchIndex:
    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def upsert(self, key: str, document: SmsDocument) -> None:
        """Write `document` under `key`, replacing any previous version."""
        from app.models import SmsSearchDocumentRow

        row = SmsSearchDocumentRow(
            correlation_id=key,
            schema_version=document.schema_version,
            phone_number=document.phone_number,
            message=document.message,
            status=document.status.value,
            created_at=to_naive_utc(document.created_at),
            document=json.dumps(document.to_document()),
        )
        with self._session_factory() as db:
            try:
                db.merge(row)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise IndexUnavailable(f"Failed to index SMS request: {e}") from e
        logger.info("Successfully indexed SMS request", extra={"correlation_id": key})

    def index_request(self, record) -> None:
        self.upsert(record.correlation_id, SmsDocument.from_record(record))

    def query(self, search_filter: SearchFilter, page_request: PageRequest = None) -> SearchPage:
        """Run a filter and return one page, newest first."""
        from app.models import SmsSearchDocumentRow

        page_request = page_request or PageRequest()
        statement = select(SmsSearchDocumentRow)
        if isinstance(search_filter, PhoneTimeRangeFilter):
            statement = statement.where(
                SmsSearchDocumentRow.phone_number == search_filter.phone_number,
                SmsSearchDocumentRow.created_at >= to_naive_utc(search_filter.start_time),
                SmsSearchDocumentRow.created_at <= to_naive_utc(search_filter.end_time),
            )
        elif isinstance(search_filter, TextFilter):
            pattern = f"%{escape_like(search_filter.text)}%"
            statement = statement.where(SmsSearchDocumentRow.message.ilike(pattern, escape="\\"))
        else:
            raise TypeError(f"Unsupported search filter: {type(search_filter).__name__}")

        count_statement = select(func.count()).select_from(statement.subquery())
        page_statement = (
            statement.order_by(
                SmsSearchDocumentRow.created_at.desc(),
                SmsSearchDocumentRow.correlation_id.asc(),
            )
            .offset(page_request.offset)
            .limit(page_request.size)
        )

        with self._session_factory() as db:
            try:
                total = db.execute(count_statement).scalar() or 0
                rows = db.execute(page_statement).scalars().all()
            except SQLAlchemyError as e:
                raise IndexUnavailable(f"Failed to search SMS requests: {e}") from e

        content = []
        for row in rows:
            try:
                content.append(SmsDocument.from_document(json.loads(row.document)))
            except (ValueError, ValidationError) as e:
                logger.error(f"Error parsing search document {row.correlation_id}: {e}")

        return SearchPage(
            content=content,
            total_elements=total,
            total_pages=math.ceil(total / page_request.size) if total else 0,
            page=page_request.page,
            size=page_request.size,
        )

    def search_by_phone_number_and_time_range(
        self, phone_number: str, start_time: datetime, end_time: datetime, page_request: PageRequest = None
    ) -> SearchPage:
        logger.info(f"Searching SMS for phone number: {phone_number} between {start_time} and {end_time}")
        return self.query(PhoneTimeRangeFilter(phone_number, start_time, end_time), page_request)

    def search_by_text(self, text: str, page_request: PageRequest = None) -> SearchPage:
        logger.info(f"Searching SMS containing text: {text}")
        return self.query(TextFilter(text), page_request)
