"""
Tests for the submission handler.

Tests cover:
- Accepted submissions: PENDING record written, correlation id queued
- Write-before-publish ordering
- Denylist veto with no side effects
- Denylist outage (fail-closed) with no side effects
- Publish failure after the write (record stays PENDING)
- Store failure before the publish (nothing queued)
- Correlation id in the log context during submission
"""

import uuid

import pytest
from prometheus_client import REGISTRY

from app.exceptions import (
    DenylistUnavailable,
    DestinationBlocked,
    QueueUnavailable,
    RequestNotFound,
    StoreUnavailable,
)
from app.lifecycle import SmsStatus
from app.logging_utils import correlation_id_ctx
from app.message_queue import InMemoryMessageQueue
from app.submission import SubmissionHandler


PHONE = "+15551234567"


class OrderCheckingQueue(InMemoryMessageQueue):
    """Asserts the record is already stored when its id is published."""

    def __init__(self, record_store):
        super().__init__()
        self.record_store = record_store
        self.seen_statuses = []

    def publish(self, key, payload):
        self.seen_statuses.append(self.record_store.find_by_correlation_id(key).status)
        super().publish(key, payload)


class FailingQueue(InMemoryMessageQueue):
    def publish(self, key, payload):
        raise QueueUnavailable("broker down")


class FailingStore:
    def insert(self, correlation_id, phone_number, message):
        raise StoreUnavailable("database went away")


class ContextRecordingQueue(InMemoryMessageQueue):
    """Records the log correlation id in effect when publishing."""

    def __init__(self):
        super().__init__()
        self.log_contexts = []

    def publish(self, key, payload):
        self.log_contexts.append(correlation_id_ctx.get())
        super().publish(key, payload)


def submission_errors():
    return REGISTRY.get_sample_value("sms_submissions_total", {"result": "error"}) or 0.0


class TestSubmit:
    def test_returns_correlation_and_record_ids(self, handler, record_store):
        result = handler.submit(PHONE, "hi")

        uuid.UUID(result.correlation_id)  # 128-bit random id
        record = record_store.find_by_id(result.record_id)
        assert record.correlation_id == result.correlation_id
        assert record.phone_number == PHONE
        assert record.message == "hi"
        assert record.status == SmsStatus.PENDING

    def test_publishes_correlation_id_as_key_and_payload(self, handler, queue):
        result = handler.submit(PHONE, "hi")
        assert len(queue.published) == 1
        message = queue.published[0]
        assert message.key == result.correlation_id
        assert message.payload == result.correlation_id

    def test_correlation_ids_are_unique(self, handler):
        ids = {handler.submit(PHONE, f"msg {i}").correlation_id for i in range(20)}
        assert len(ids) == 20

    def test_record_is_written_before_publish(self, record_store, denylist):
        queue = OrderCheckingQueue(record_store)
        SubmissionHandler(record_store, denylist, queue).submit(PHONE, "hi")
        assert queue.seen_statuses == [SmsStatus.PENDING]


class TestRejections:
    def test_blocked_destination_has_no_side_effects(self, handler, denylist, queue, record_store):
        denylist.add([PHONE])

        with pytest.raises(DestinationBlocked) as exc_info:
            handler.submit(PHONE, "hi")

        assert exc_info.value.code == "PHONE_NUMBER_BLACKLISTED"
        assert queue.published == []
        with pytest.raises(RequestNotFound):
            record_store.find_by_id(1)

    def test_denylist_outage_rejects_without_writing(self, handler, fake_redis, queue, record_store):
        fake_redis.down = True

        with pytest.raises(DenylistUnavailable):
            handler.submit(PHONE, "hi")

        assert queue.published == []
        with pytest.raises(RequestNotFound):
            record_store.find_by_id(1)

    def test_publish_failure_leaves_record_pending(self, record_store, denylist):
        handler = SubmissionHandler(record_store, denylist, FailingQueue())

        with pytest.raises(QueueUnavailable):
            handler.submit(PHONE, "hi")

        record = record_store.find_by_id(1)
        assert record.status == SmsStatus.PENDING

    def test_store_failure_queues_nothing(self, denylist, queue):
        handler = SubmissionHandler(FailingStore(), denylist, queue)
        errors_before = submission_errors()

        with pytest.raises(StoreUnavailable):
            handler.submit(PHONE, "hi")

        assert queue.published == []
        assert submission_errors() == errors_before + 1


class TestBoundary:
    def test_get_and_delete(self, handler):
        result = handler.submit(PHONE, "hi")
        assert handler.get_by_correlation_id(result.correlation_id).id == result.record_id
        assert handler.get_by_id(result.record_id).correlation_id == result.correlation_id
        handler.delete_by_id(result.record_id)
        with pytest.raises(RequestNotFound):
            handler.get_by_id(result.record_id)

    def test_denylist_delegation(self, handler):
        handler.add_to_denylist([PHONE])
        assert handler.list_denylist() == {PHONE}
        handler.remove_from_denylist([PHONE])
        assert handler.list_denylist() == set()


class TestLogContext:
    def test_correlation_id_is_in_log_context_while_submitting(self, record_store, denylist):
        queue = ContextRecordingQueue()
        result = SubmissionHandler(record_store, denylist, queue).submit(PHONE, "hi")

        assert queue.log_contexts == [result.correlation_id]
        assert correlation_id_ctx.get() is None
