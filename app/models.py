"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy, plus the
DeliveryRequest snapshot handed out by the record store.
For Pydantic request/response schemas, see schemas.py.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.lifecycle import SmsStatus
from app.storage import Base


class SmsRequestRow(Base):
    """
    SQLAlchemy model for one SMS delivery request.

    Table: sms_requests
    Primary Key: id (store-assigned)
    Unique: correlation_id (idempotency key for the whole pipeline)
    """
    __tablename__ = "sms_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    correlation_id = Column(String(64), nullable=False, unique=True, index=True)
    phone_number = Column(String(20), nullable=False, index=True)
    message = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=SmsStatus.PENDING.value)
    message_id = Column(String(128), nullable=True)  # transport message id, SENT only
    failure_code = Column(String(64), nullable=True)
    failure_comments = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)  # naive UTC
    updated_at = Column(DateTime, nullable=False)

    def to_record(self) -> "DeliveryRequest":
        return DeliveryRequest(
            id=self.id,
            correlation_id=self.correlation_id,
            phone_number=self.phone_number,
            message=self.message,
            status=SmsStatus(self.status),
            message_id=self.message_id,
            failure_code=self.failure_code,
            failure_comments=self.failure_comments,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class SmsSearchDocumentRow(Base):
    """
    Search index entry for a processed SMS request.

    The full document is kept as versioned JSON in `document`; the other
    columns are the fields queries filter and sort on.
    """
    __tablename__ = "sms_search_documents"

    correlation_id = Column(String(64), primary_key=True)
    schema_version = Column(Integer, nullable=False)
    phone_number = Column(String(20), nullable=False, index=True)
    message = Column(Text, nullable=False)
    status = Column(String(16), nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    document = Column(Text, nullable=False)


@dataclass(frozen=True)
class DeliveryRequest:
    """Immutable snapshot of a row in sms_requests."""
    id: int
    correlation_id: str
    phone_number: str
    message: str
    status: SmsStatus
    message_id: Optional[str]
    failure_code: Optional[str]
    failure_comments: Optional[str]
    created_at: datetime
    updated_at: datetime
