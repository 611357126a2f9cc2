"""
Delivery transports: the external channel that actually sends an SMS.

A transport makes one synchronous, time-bounded attempt and reports the
outcome as a SendResult. It never raises for a delivery failure; timeouts
and API errors come back as failed results.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from app.config import Settings
from app.exceptions import TransportFailure

logger = logging.getLogger(__name__)

SMS_API_DELIVERY_CHANNEL = "sms"
SMS_API_CHANNEL_TYPE = "sms"


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def ok(cls, message_id: str) -> "SendResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(cls, error_code: str, error_message: str) -> "SendResult":
        return cls(success=False, error_code=error_code, error_message=error_message)


class DeliveryTransport:
    def send(self, phone_number: str, message: str, correlation_id: str) -> SendResult:
        raise NotImplementedError


class MockSmsTransport(DeliveryTransport):
    """Always succeeds with a synthetic MOCK_MSG_<epoch millis> id."""

    def send(self, phone_number: str, message: str, correlation_id: str) -> SendResult:
        logger.info("Mocked SMS API response", extra={"correlation_id": correlation_id})
        return SendResult.ok(f"MOCK_MSG_{int(time.time() * 1000)}")


def build_request_payload(phone_number: str, message: str, correlation_id: str) -> list:
    """Channel payload expected by the third-party SMS API."""
    return [
        {
            "deliverychannel": SMS_API_DELIVERY_CHANNEL,
            "channels": {SMS_API_CHANNEL_TYPE: {"text": message}},
            "destination": [
                {"msisdn": [phone_number], "correlationid": correlation_id},
            ],
        }
    ]


def parse_api_response(body: dict) -> SendResult:
    """
    Map the API's JSON body to a SendResult.

    {"status": "success", "message_id": ...} is a success; anything else is a
    failure carrying the API's error_code / error_message.
    """
    if str(body.get("status", "")).lower() == "success":
        message_id = body.get("message_id")
        if not message_id:
            raise TransportFailure("PARSE_ERROR", "Success response without message_id")
        return SendResult.ok(str(message_id))
    return SendResult.failed(
        body.get("error_code") or "UNKNOWN_ERROR",
        body.get("error_message") or "Unknown error",
    )


class HttpSmsTransport(DeliveryTransport):
    """Sends through the third-party SMS HTTP API."""

    def __init__(self, api_url: str, api_key: str, timeout_seconds: float = 10.0, client: httpx.Client = None):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._client = client

    def send(self, phone_number: str, message: str, correlation_id: str) -> SendResult:
        logger.info("Sending SMS via third-party API", extra={"correlation_id": correlation_id})
        payload = build_request_payload(phone_number, message, correlation_id)
        try:
            return parse_api_response(self._post(payload))
        except TransportFailure as e:
            logger.error(
                f"SMS API error: {e.code} {e.detail}",
                extra={"correlation_id": correlation_id},
            )
            return SendResult.failed(e.code, e.detail)

    def _post(self, payload: list) -> dict:
        headers = {"Authorization": self.api_key, "Content-Type": "application/json"}
        try:
            if self._client is not None:
                response = self._client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout_seconds)
            else:
                with httpx.Client(timeout=self.timeout_seconds) as client:
                    response = client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise TransportFailure("TIMEOUT", f"SMS API timed out after {self.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            raise TransportFailure(
                "API_ERROR", f"API returned status {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportFailure("API_ERROR", f"API Error: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise TransportFailure("PARSE_ERROR", f"Error parsing API response: {e}") from e
        if not isinstance(body, dict):
            raise TransportFailure("PARSE_ERROR", "Error parsing API response: expected a JSON object")
        return body


def build_transport(settings: Settings) -> DeliveryTransport:
    kind = settings.SMS_TRANSPORT.lower()
    if kind == "mock":
        return MockSmsTransport()
    if kind == "http":
        return HttpSmsTransport(
            api_url=settings.SMS_API_URL,
            api_key=settings.SMS_API_KEY,
            timeout_seconds=settings.SMS_API_TIMEOUT_SECONDS,
        )
    raise ValueError(f"Unknown SMS_TRANSPORT: {settings.SMS_TRANSPORT}")
