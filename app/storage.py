import logging
from typing import Iterable, Optional

from sqlalchemy import create_engine, inspect, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base

from app.config import settings
from app.exceptions import IllegalTransition, RequestNotFound, StoreUnavailable
from app.lifecycle import SmsStatus, TERMINAL_STATUSES, can_transition, sources_for
from app.utils import utc_now

logger = logging.getLogger(__name__)


def build_engine(database_url: str, timeout_seconds: float):
    """
    Create a SQLAlchemy engine with a bounded lock/connect wait.
    check_same_thread=False lets worker threads share the SQLite engine.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout_seconds}
    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=False,
    )


engine = build_engine(settings.DATABASE_URL, settings.DB_TIMEOUT_SECONDS)

# expire_on_commit=False so rows can be converted to snapshots after commit
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db(bind=None) -> None:
    """
    Initialize the database by creating all tables.
    Called during application and worker startup.
    """
    bind = bind or engine
    logger.debug(f"Initializing database with URL: {bind.url}")
    try:
        # Import models to register them with Base.metadata
        from app.models import SmsRequestRow, SmsSearchDocumentRow  # noqa: F401

        Base.metadata.create_all(bind=bind)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health(bind=None) -> bool:
    """
    Check if the database is reachable and the schema is applied.

    Returns:
        True if DB is healthy and the sms_requests table exists, False otherwise.
    """
    bind = bind or engine
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
        if not inspect(bind).has_table("sms_requests"):
            logger.error("Database schema not applied: 'sms_requests' table not found")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Record Store
# =============================================================================

def _outcome_values(
    status: SmsStatus,
    message_id: Optional[str],
    failure_code: Optional[str],
    failure_comments: Optional[str],
) -> dict:
    """
    Column values for a status change, keeping the outcome fields consistent:
    message_id only on SENT, failure fields only on FAILED/BLACKLISTED.
    """
    if status == SmsStatus.SENT:
        if not message_id:
            raise ValueError("SENT requires a transport message id")
        return {"message_id": message_id, "failure_code": None, "failure_comments": None}
    if status in (SmsStatus.FAILED, SmsStatus.BLACKLISTED):
        if not failure_code:
            raise ValueError(f"{status.value} requires a failure code")
        return {"message_id": None, "failure_code": failure_code, "failure_comments": failure_comments}
    return {"message_id": None, "failure_code": None, "failure_comments": None}


class RecordStore:
    """
    Durable keyed storage of SMS delivery requests.

    Rows are addressed by the store-assigned id or by correlation id.
    Status changes go through `transition`, a single conditional UPDATE, so
    two workers can never both move the same row out of the same state.
    """

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def insert(self, correlation_id: str, phone_number: str, message: str):
        """Insert a new PENDING request and return its snapshot (with id)."""
        from app.models import SmsRequestRow

        now = utc_now()
        row = SmsRequestRow(
            correlation_id=correlation_id,
            phone_number=phone_number,
            message=message,
            status=SmsStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as db:
            try:
                db.add(row)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to insert SMS request {correlation_id}: {e}")
                raise StoreUnavailable(f"Failed to store SMS request: {e}") from e
            logger.info(f"SMS request saved with ID: {row.id}", extra={"correlation_id": correlation_id})
            return row.to_record()

    def find_by_correlation_id(self, correlation_id: str):
        from app.models import SmsRequestRow

        row = self._fetch_one(
            select(SmsRequestRow).where(SmsRequestRow.correlation_id == correlation_id)
        )
        if row is None:
            raise RequestNotFound("request_id not found", details={"request_id": correlation_id})
        return row.to_record()

    def find_by_id(self, request_id: int):
        from app.models import SmsRequestRow

        row = self._fetch_one(select(SmsRequestRow).where(SmsRequestRow.id == request_id))
        if row is None:
            raise RequestNotFound(f"SMS request not found with ID: {request_id}", details={"id": request_id})
        return row.to_record()

    def update(self, record):
        """
        Persist the mutable fields of a snapshot.

        The write is conditional on the stored status being unchanged since
        it was read, and is refused if it would break the lifecycle.
        """
        current = self.find_by_id(record.id)
        target = SmsStatus(record.status)
        if current.status != target and not can_transition(current.status, target):
            raise IllegalTransition(current.status.value, target.value)
        if current.status == target and target in TERMINAL_STATUSES:
            raise IllegalTransition(current.status.value, target.value)

        values = _outcome_values(target, record.message_id, record.failure_code, record.failure_comments)
        updated = self._conditional_update(
            "id", record.id, [current.status], status=target.value, **values
        )
        if not updated:
            raise IllegalTransition(current.status.value, target.value)
        return self.find_by_id(record.id)

    def transition(
        self,
        correlation_id: str,
        to_status: SmsStatus,
        from_statuses: Optional[Iterable[SmsStatus]] = None,
        message_id: Optional[str] = None,
        failure_code: Optional[str] = None,
        failure_comments: Optional[str] = None,
    ):
        """
        Compare-and-swap the status of a request.

        Moves the row to `to_status` only if its current status is one of
        `from_statuses` (default: every legal predecessor of `to_status`).

        Returns:
            The updated snapshot, or None if the row was not in an expected state.
        """
        to_status = SmsStatus(to_status)
        sources = set(from_statuses) if from_statuses is not None else set(sources_for(to_status))
        for source in sources:
            if not can_transition(source, to_status):
                raise IllegalTransition(SmsStatus(source).value, to_status.value)

        values = _outcome_values(to_status, message_id, failure_code, failure_comments)
        if not self._conditional_update(
            "correlation_id", correlation_id, sources, status=to_status.value, **values
        ):
            return None
        return self.find_by_correlation_id(correlation_id)

    def delete_by_id(self, request_id: int) -> None:
        from app.models import SmsRequestRow

        with self._session_factory() as db:
            try:
                row = db.get(SmsRequestRow, request_id)
                if row is None:
                    raise RequestNotFound(
                        f"SMS request not found with ID: {request_id}", details={"id": request_id}
                    )
                db.delete(row)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreUnavailable(f"Failed to delete SMS request: {e}") from e
        logger.info(f"Deleted SMS request with ID: {request_id}")

    def _fetch_one(self, statement):
        with self._session_factory() as db:
            try:
                return db.execute(statement).scalars().first()
            except SQLAlchemyError as e:
                raise StoreUnavailable(f"Failed to read SMS request: {e}") from e

    def _conditional_update(self, key: str, key_value, expected_statuses, **values) -> bool:
        from app.models import SmsRequestRow

        statement = (
            update(SmsRequestRow)
            .where(getattr(SmsRequestRow, key) == key_value)
            .where(SmsRequestRow.status.in_([SmsStatus(s).value for s in expected_statuses]))
            .values(updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        with self._session_factory() as db:
            try:
                result = db.execute(statement)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreUnavailable(f"Failed to update SMS request: {e}") from e
        return result.rowcount == 1
