"""
Wiring of the pipeline collaborators.

get_services() builds one Services bundle from settings on first use and is
the FastAPI dependency for every route; tests replace it through
app.dependency_overrides.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache

from app.config import Settings, settings as default_settings
from app.denylist import DenylistCache, get_redis_client
from app.message_queue import MessageQueue, build_message_queue
from app.search_index import SearchIndex
from app.storage import RecordStore, SessionLocal
from app.submission import SubmissionHandler
from app.transport import DeliveryTransport, build_transport
from app.worker import DeliveryWorker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    record_store: RecordStore
    denylist: DenylistCache
    queue: MessageQueue
    transport: DeliveryTransport
    search_index: SearchIndex

    @property
    def submission(self) -> SubmissionHandler:
        return SubmissionHandler(self.record_store, self.denylist, self.queue)

    def worker(self, queue: MessageQueue = None) -> DeliveryWorker:
        return DeliveryWorker(
            record_store=self.record_store,
            denylist=self.denylist,
            transport=self.transport,
            search_index=self.search_index,
            queue=queue if queue is not None else self.queue,
        )


def build_services(settings: Settings = None, session_factory=SessionLocal) -> Services:
    settings = settings or default_settings
    logger.info(
        f"Building services: queue={settings.QUEUE_BACKEND}, transport={settings.SMS_TRANSPORT}"
    )
    return Services(
        record_store=RecordStore(session_factory),
        denylist=DenylistCache(
            get_redis_client(settings.REDIS_URL, settings.REDIS_TIMEOUT_SECONDS),
            key=settings.DENYLIST_KEY,
            ttl_seconds=settings.DENYLIST_TTL_SECONDS,
        ),
        queue=build_message_queue(settings),
        transport=build_transport(settings),
        search_index=SearchIndex(session_factory),
    )


@lru_cache()
def get_services() -> Services:
    return build_services()
