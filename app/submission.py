"""
Submission handler: the synchronous half of the delivery pipeline.

submit() vetoes denylisted numbers, writes a PENDING record, and only then
publishes the correlation id. If publishing fails after the write, the
record stays PENDING and the caller is told the submission failed;
requeueing such records belongs to an external reconciliation sweep.
"""

import logging
from typing import List, NamedTuple, Set

from app.denylist import DenylistCache
from app.exceptions import DestinationBlocked, QueueUnavailable
from app.logging_utils import correlation_context
from app.message_queue import MessageQueue
from app.metrics import record_submission_outcome
from app.storage import RecordStore
from app.utils import generate_correlation_id

logger = logging.getLogger(__name__)


class SubmissionResult(NamedTuple):
    correlation_id: str
    record_id: int


class SubmissionHandler:
    def __init__(self, record_store: RecordStore, denylist: DenylistCache, queue: MessageQueue):
        self.record_store = record_store
        self.denylist = denylist
        self.queue = queue

    def submit(self, phone_number: str, message: str) -> SubmissionResult:
        """
        Accept an SMS for asynchronous delivery.

        Raises:
            DestinationBlocked: phone number is denylisted; nothing is written.
            DenylistUnavailable: membership cannot be confirmed; nothing is written.
            StoreUnavailable: the record could not be written; nothing is queued.
            QueueUnavailable: the record was written but not queued.
        """
        logger.info(f"Processing SMS request for phone number: {phone_number}")

        try:
            blocked = self.denylist.is_member(phone_number)
        except Exception:
            record_submission_outcome("error")
            raise
        if blocked:
            record_submission_outcome("blocked")
            raise DestinationBlocked(phone_number)

        correlation_id = generate_correlation_id()
        with correlation_context(correlation_id):
            return self._store_and_publish(correlation_id, phone_number, message)

    def _store_and_publish(self, correlation_id: str, phone_number: str, message: str) -> SubmissionResult:
        try:
            record = self.record_store.insert(correlation_id, phone_number, message)
        except Exception:
            record_submission_outcome("error")
            raise

        try:
            self.queue.publish(correlation_id, correlation_id)
        except QueueUnavailable:
            record_submission_outcome("error")
            logger.error(f"SMS request {record.id} stored but not queued; it stays PENDING until requeued")
            raise

        record_submission_outcome("accepted")
        return SubmissionResult(correlation_id=correlation_id, record_id=record.id)

    def get_by_correlation_id(self, correlation_id: str):
        logger.info(f"Fetching SMS request with correlation ID: {correlation_id}")
        return self.record_store.find_by_correlation_id(correlation_id)

    def get_by_id(self, record_id: int):
        logger.info(f"Fetching SMS request with database ID: {record_id}")
        return self.record_store.find_by_id(record_id)

    def delete_by_id(self, record_id: int) -> None:
        self.record_store.delete_by_id(record_id)

    def add_to_denylist(self, phone_numbers: List[str]) -> None:
        self.denylist.add(phone_numbers)

    def remove_from_denylist(self, phone_numbers: List[str]) -> None:
        self.denylist.remove(phone_numbers)

    def list_denylist(self) -> Set[str]:
        return self.denylist.members()
