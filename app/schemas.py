"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses, wrapped in the {data, error} envelope
"""

from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from app.lifecycle import SmsStatus
from app.utils import is_valid_phone_number

T = TypeVar("T")

PHONE_NUMBER_MESSAGE = "Phone number must be in international format"


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SmsSendRequest(BaseModel):
    """
    Body of POST /v1/sms/send.

    Validates:
    - phone_number: international format (+, no leading zero, up to 15 digits)
    - message: non-blank text
    """
    phone_number: str = Field(..., description="Destination phone number in E.164 format")
    message: str = Field(..., description="Message text")

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("phone_number is mandatory")
        if not is_valid_phone_number(v):
            raise ValueError(PHONE_NUMBER_MESSAGE)
        return v

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("message is mandatory")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [{"phone_number": "+15551234567", "message": "hi"}]
        }
    }


class DenylistRequest(BaseModel):
    """Body of POST/DELETE /v1/blacklist."""
    phone_numbers: List[str] = Field(..., description="Phone numbers in E.164 format")

    @field_validator("phone_numbers")
    @classmethod
    def validate_phone_numbers(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("phone_numbers list cannot be empty")
        for number in v:
            if not is_valid_phone_number(number):
                raise ValueError(f"{PHONE_NUMBER_MESSAGE}: {number}")
        return v


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorDetail(BaseModel):
    code: str
    message: str


class ApiResponse(BaseModel, Generic[T]):
    """Envelope for every API response: exactly one of data / error is set."""
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


class SmsSendResponse(BaseModel):
    request_id: str = Field(..., description="Correlation id of the submission")
    database_id: int = Field(..., description="Store-assigned record id")
    comments: str = Field(default="Successfully Sent")


class SmsRequestResponse(BaseModel):
    """A stored SMS request as returned by the lookup routes."""
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

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
