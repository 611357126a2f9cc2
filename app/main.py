import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, List

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.container import Services, get_services
from app.exceptions import InvalidRequest, NotificationError, Unauthorized
from app.logging_utils import setup_logging, RequestLoggingMiddleware, log_submission_data
from app.metrics import get_metrics, get_metrics_content_type
from app.schemas import (
    ApiResponse,
    DenylistRequest,
    ErrorDetail,
    HealthResponse,
    SmsRequestResponse,
    SmsSendRequest,
    SmsSendResponse,
)
from app.search_index import PageRequest, SearchPage
from app.storage import init_db, check_db_health
from app.utils import to_naive_utc


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

SMS_SENT_SUCCESS = "Successfully Sent"
BLACKLIST_SUCCESS = "Successfully blacklisted"
REMOVE_BLACKLIST_SUCCESS = "Successfully removed from blacklist"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="SMS Notification API",
    description="Accepts SMS requests and delivers them asynchronously",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Error Handling
# =============================================================================

def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    error = ErrorDetail(code=code, message=message)
    return JSONResponse(status_code=status_code, content={"data": None, "error": error.model_dump()})


@app.exception_handler(NotificationError)
async def notification_exception_handler(request: Request, exc: NotificationError):
    return error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Field errors are reported as INVALID_REQUEST, joined into one message."""
    messages = []
    for error in exc.errors():
        message = str(error.get("msg", "Invalid value"))
        messages.append(message.removeprefix("Value error, "))
    logger.error(f"Validation error: {messages}")
    return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", ", ".join(messages))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_SERVER_ERROR", "An unexpected error occurred"
    )


def require_authorization(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Reject /v1 calls without an Authorization header when the gate is on."""
    if settings.REQUIRE_AUTH_HEADER and (authorization is None or not authorization.strip()):
        logger.warning("Missing authorization header")
        raise Unauthorized()


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health")
async def health() -> dict:
    """Liveness probe - always returns UP once the app is running."""
    return {"status": "UP", "message": "Service is running", "timestamp": int(time.time() * 1000)}


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response, services: Services = Depends(get_services)) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the record store is reachable with
    its schema applied and the denylist cache answers. Otherwise 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable or schema not applied")
    if not services.denylist.ping():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Denylist cache not reachable")
    return HealthResponse(status="ready")


# =============================================================================
# SMS Routes
# =============================================================================

router = APIRouter(prefix="/v1", dependencies=[Depends(require_authorization)])


@router.post("/sms/send", response_model=ApiResponse[SmsSendResponse])
def send_sms(
    request: Request,
    body: SmsSendRequest,
    services: Services = Depends(get_services),
) -> ApiResponse[SmsSendResponse]:
    """
    Accept an SMS for asynchronous delivery.

    Rejects denylisted numbers synchronously; everything else happens in the
    delivery worker. The returned request_id is the correlation id used to
    track the request.
    """
    logger.info(f"Received SMS send request for phone number: {body.phone_number}")
    try:
        result = services.submission.submit(body.phone_number, body.message)
    except NotificationError as e:
        outcome = "blocked" if e.code == "PHONE_NUMBER_BLACKLISTED" else "error"
        log_submission_data(request, result=outcome)
        raise

    log_submission_data(request, correlation_id=result.correlation_id, result="accepted")
    return ApiResponse[SmsSendResponse](
        data=SmsSendResponse(
            request_id=result.correlation_id,
            database_id=result.record_id,
            comments=SMS_SENT_SUCCESS,
        )
    )


@router.get("/sms/{request_id}", response_model=ApiResponse[SmsRequestResponse])
def get_sms_request(request_id: str, services: Services = Depends(get_services)):
    record = services.submission.get_by_correlation_id(request_id)
    return ApiResponse[SmsRequestResponse](data=SmsRequestResponse.model_validate(record))


@router.get("/sms/id/{record_id}", response_model=ApiResponse[SmsRequestResponse])
def get_sms_request_by_id(record_id: int, services: Services = Depends(get_services)):
    record = services.submission.get_by_id(record_id)
    return ApiResponse[SmsRequestResponse](data=SmsRequestResponse.model_validate(record))


@router.delete("/sms/id/{record_id}", response_model=ApiResponse[str])
def delete_sms_request(record_id: int, services: Services = Depends(get_services)):
    logger.info(f"Received request to delete SMS request with database ID: {record_id}")
    services.submission.delete_by_id(record_id)
    return ApiResponse[str](data=f"SMS request of databaseID {record_id} deleted successfully")


# =============================================================================
# Blacklist Routes
# =============================================================================

@router.post("/blacklist", response_model=ApiResponse[str])
def add_to_blacklist(body: DenylistRequest, services: Services = Depends(get_services)):
    services.submission.add_to_denylist(body.phone_numbers)
    return ApiResponse[str](data=BLACKLIST_SUCCESS)


@router.delete("/blacklist", response_model=ApiResponse[str])
def remove_from_blacklist(body: DenylistRequest, services: Services = Depends(get_services)):
    services.submission.remove_from_denylist(body.phone_numbers)
    return ApiResponse[str](data=REMOVE_BLACKLIST_SUCCESS)


@router.get("/blacklist", response_model=ApiResponse[List[str]])
def list_blacklist(services: Services = Depends(get_services)):
    return ApiResponse[List[str]](data=sorted(services.submission.list_denylist()))


# =============================================================================
# Search Routes
# =============================================================================

@router.get("/search/sms/phone", response_model=ApiResponse[SearchPage])
def search_sms_by_phone_number(
    phone_number: Annotated[str, Query(pattern=r"^\+[1-9]\d{1,14}$")],
    start_time: Annotated[datetime, Query(description="ISO-8601 start of range (inclusive)")],
    end_time: Annotated[datetime, Query(description="ISO-8601 end of range (inclusive)")],
    page: Annotated[int, Query(ge=0)] = 0,
    size: Annotated[int, Query(ge=1, le=100)] = 10,
    services: Services = Depends(get_services),
):
    if to_naive_utc(end_time) < to_naive_utc(start_time):
        raise InvalidRequest("end_time must not be before start_time")
    result = services.search_index.search_by_phone_number_and_time_range(
        phone_number, start_time, end_time, PageRequest(page=page, size=size)
    )
    return ApiResponse[SearchPage](data=result)


@router.get("/search/sms/text", response_model=ApiResponse[SearchPage])
def search_sms_by_text(
    text: Annotated[str, Query(min_length=1)],
    page: Annotated[int, Query(ge=0)] = 0,
    size: Annotated[int, Query(ge=1, le=100)] = 10,
    services: Services = Depends(get_services),
):
    if not text.strip():
        raise InvalidRequest("Search text is mandatory")
    result = services.search_index.search_by_text(text, PageRequest(page=page, size=size))
    return ApiResponse[SearchPage](data=result)


app.include_router(router)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
