"""
Delivery worker: the asynchronous half of the delivery pipeline.

For each dequeued correlation id the worker claims the record
(PENDING -> PROCESSING, compare-and-swap), re-checks the denylist, calls the
transport, persists the terminal status and indexes the result.

Redelivered ids whose record is already terminal are no-ops, so the queue's
at-least-once delivery never causes a second send. The denylist policy is
fail-closed: if membership cannot be confirmed the request is FAILED with
DENYLIST_UNAVAILABLE and the transport is not called.
"""

import logging
import threading
from typing import Optional

from app.denylist import DenylistCache
from app.exceptions import (
    DenylistUnavailable,
    InternalInconsistency,
    QueueUnavailable,
    RequestNotFound,
    StoreUnavailable,
)
from app.lifecycle import (
    DENYLIST_UNAVAILABLE,
    PHONE_NUMBER_BLACKLISTED,
    PROCESSING_ERROR,
    SmsStatus,
)
from app.logging_utils import correlation_context
from app.message_queue import MessageQueue
from app.metrics import record_delivery_outcome, record_index_failure
from app.search_index import SearchIndex
from app.storage import RecordStore
from app.transport import DeliveryTransport

logger = logging.getLogger(__name__)


class DeliveryWorker:
    def __init__(
        self,
        record_store: RecordStore,
        denylist: DenylistCache,
        transport: DeliveryTransport,
        search_index: SearchIndex,
        queue: MessageQueue = None,
    ):
        self.record_store = record_store
        self.denylist = denylist
        self.transport = transport
        self.search_index = search_index
        self.queue = queue

    # =========================================================================
    # Single work item
    # =========================================================================

    def process(self, correlation_id: str) -> Optional[SmsStatus]:
        """
        Handle one dequeued work item.

        Returns:
            The status the record ends in, or None if the message was dropped
            (no backing record) or is being handled by another worker.
        """
        with correlation_context(correlation_id):
            return self._process(correlation_id)

    def _process(self, correlation_id: str) -> Optional[SmsStatus]:
        logger.info(f"Processing SMS request with correlation ID: {correlation_id}")

        try:
            record = self.record_store.find_by_correlation_id(correlation_id)
        except RequestNotFound:
            # Records are written before publish, so this is a defect signal
            return self._drop(correlation_id)

        if record.status.is_terminal:
            logger.info(f"SMS request already {record.status.value}, skipping redelivery")
            record_delivery_outcome("skipped")
            return record.status

        claimed = self.record_store.transition(
            correlation_id, SmsStatus.PROCESSING, from_statuses=[SmsStatus.PENDING]
        )
        if claimed is None:
            try:
                current = self.record_store.find_by_correlation_id(correlation_id)
            except RequestNotFound:
                return self._drop(correlation_id)
            logger.warning(
                f"SMS request could not be claimed (status {current.status.value}); "
                "another worker holds it or it needs reconciliation"
            )
            record_delivery_outcome("skipped")
            return current.status if current.status.is_terminal else None

        try:
            final = self._deliver(claimed)
        except RequestNotFound:
            return self._drop(correlation_id)
        except Exception as e:
            logger.exception(f"Error processing SMS request with correlation ID: {correlation_id}")
            try:
                final = self._fail_safely(correlation_id, e)
            except RequestNotFound:
                return self._drop(correlation_id)
            if final is None:
                return SmsStatus.PROCESSING

        self._index(final)
        record_delivery_outcome(final.status.value)
        return final.status

    def _drop(self, correlation_id: str) -> None:
        logger.error(InternalInconsistency(correlation_id).message)
        record_delivery_outcome("dropped")
        return None

    def _deliver(self, record):
        try:
            blacklisted = self.denylist.is_member(record.phone_number)
        except DenylistUnavailable as e:
            logger.error(f"Cannot confirm blacklist status for {record.phone_number}, refusing delivery")
            return self._finish(
                record.correlation_id,
                SmsStatus.FAILED,
                failure_code=DENYLIST_UNAVAILABLE,
                failure_comments=e.message,
            )

        if blacklisted:
            logger.warning(f"Phone number {record.phone_number} is blacklisted, marking as blacklisted")
            return self._finish(
                record.correlation_id,
                SmsStatus.BLACKLISTED,
                failure_code=PHONE_NUMBER_BLACKLISTED,
                failure_comments="Phone number is blacklisted",
            )

        result = self.transport.send(record.phone_number, record.message, record.correlation_id)
        if result.success:
            logger.info(f"SMS sent successfully for correlation ID: {record.correlation_id}")
            return self._finish(record.correlation_id, SmsStatus.SENT, message_id=result.message_id)

        logger.error(
            f"SMS sending failed for correlation ID: {record.correlation_id}, "
            f"error: {result.error_code} {result.error_message}"
        )
        return self._finish(
            record.correlation_id,
            SmsStatus.FAILED,
            failure_code=result.error_code or "SMS_SEND_FAILED",
            failure_comments=result.error_message,
        )

    def _finish(self, correlation_id: str, status: SmsStatus, **fields):
        updated = self.record_store.transition(
            correlation_id, status, from_statuses=[SmsStatus.PROCESSING], **fields
        )
        if updated is None:
            # Someone moved the record out of PROCESSING under us; keep theirs
            current = self.record_store.find_by_correlation_id(correlation_id)
            logger.warning(f"SMS request left PROCESSING concurrently, now {current.status.value}")
            return current
        return updated

    def _fail_safely(self, correlation_id: str, error: Exception):
        """
        Best-effort FAILED persist after an unexpected error.

        Returns None if even that write fails; the record then stays
        PROCESSING until reconciled externally.
        """
        try:
            updated = self.record_store.transition(
                correlation_id,
                SmsStatus.FAILED,
                from_statuses=[SmsStatus.PROCESSING],
                failure_code=PROCESSING_ERROR,
                failure_comments=str(error) or error.__class__.__name__,
            )
            if updated is None:
                updated = self.record_store.find_by_correlation_id(correlation_id)
            return updated
        except RequestNotFound:
            raise
        except Exception:
            logger.exception(f"Error updating SMS request status for correlation ID: {correlation_id}")
            return None

    def _index(self, record) -> None:
        """Index the final state; failures are logged and never undo the status."""
        try:
            self.search_index.index_request(record)
        except Exception:
            record_index_failure()
            logger.exception(f"Failed to index SMS request with correlation ID: {record.correlation_id}")

    # =========================================================================
    # Consumer loop
    # =========================================================================

    def run_once(self, timeout_seconds: float = 1.0) -> int:
        """
        Poll one batch, process every item, then commit.

        Commits only after the whole batch is handled; a crash before that
        redelivers the batch and the terminal-state check absorbs repeats.
        If the record store or queue fails, the batch is rewound instead of
        committed and the error is raised to the caller.
        """
        messages = self.queue.poll(timeout_seconds=timeout_seconds)
        for message in messages:
            try:
                self.process(message.payload)
            except (StoreUnavailable, QueueUnavailable):
                logger.error(f"Work item {message.payload} not handled, rewinding batch")
                self.queue.rewind()
                raise
            except Exception:
                logger.exception(f"Unhandled error for work item {message.payload}")
        if messages:
            self.queue.commit()
        return len(messages)

    def run_forever(self, stop_event: threading.Event, timeout_seconds: float = 1.0) -> None:
        logger.info("Delivery worker started")
        backoff = 1.0
        while not stop_event.is_set():
            try:
                self.run_once(timeout_seconds)
                backoff = 1.0
            except (StoreUnavailable, QueueUnavailable) as e:
                logger.error(f"{e.message}, retrying in {backoff:.0f}s")
                stop_event.wait(backoff)
                backoff = min(backoff * 2, 30.0)
        logger.info("Delivery worker stopped")
