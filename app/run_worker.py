"""
Delivery worker entry point.

Starts WORKER_CONCURRENCY consumer threads. Each thread owns its own queue
consumer; they share only the backing stores.
"""

import logging
import signal
import threading

from app.config import settings
from app.container import build_services
from app.logging_utils import setup_logging
from app.message_queue import build_message_queue
from app.storage import init_db

logger = logging.getLogger(__name__)


def main() -> None:
    setup_logging(settings.LOG_LEVEL)
    logger.info(
        "Delivery worker starting",
        extra={
            "queue_backend": settings.QUEUE_BACKEND,
            "topic": settings.SMS_SEND_TOPIC,
            "transport": settings.SMS_TRANSPORT,
            "concurrency": settings.WORKER_CONCURRENCY,
        },
    )
    init_db()
    services = build_services(settings)

    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    threads = []
    queues = []
    for index in range(max(1, settings.WORKER_CONCURRENCY)):
        # The in-memory backend only makes sense shared within one process
        queue = services.queue if settings.QUEUE_BACKEND == "memory" else build_message_queue(settings)
        queues.append(queue)
        worker = services.worker(queue)
        thread = threading.Thread(
            target=worker.run_forever,
            args=(stop_event, settings.WORKER_POLL_TIMEOUT_SECONDS),
            name=f"delivery-worker-{index}",
            daemon=True,
        )
        thread.start()
        threads.append(thread)

    # Keep main thread alive until signalled
    while any(thread.is_alive() for thread in threads):
        for thread in threads:
            thread.join(timeout=1.0)
        if stop_event.is_set():
            break

    for thread in threads:
        thread.join(timeout=settings.WORKER_POLL_TIMEOUT_SECONDS + 5)
    for queue in queues:
        queue.close()
    logger.info("Delivery worker exited")


if __name__ == "__main__":
    main()
