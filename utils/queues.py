import json
import uuid
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime, timezone

import redis
from flask import current_app

logger = logging.getLogger(__name__)

OCR_JOB_NAME = "process-ocr"
DEFAULT_QUEUE_NAME = "ocr"

# Shared pool for enqueue calls raced against a timeout. A call that loses the
# race keeps running here; nobody observes its result.
_enqueue_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="enqueue")


class QueueTimeout(Exception):
    pass


class JobQueue:
    """Redis list backed job queue.

    Jobs are JSON documents ``{"id", "name", "data", "queued_at"}`` pushed on
    the left of ``queue:<name>`` and popped from the right, so consumers see
    them in FIFO order.
    """

    def __init__(self, client, name=DEFAULT_QUEUE_NAME):
        self.client = client
        self.name = name
        self.key = f"queue:{name}"

    @classmethod
    def from_url(cls, url, name=DEFAULT_QUEUE_NAME, **kwargs):
        client = redis.Redis.from_url(url, decode_responses=True, **kwargs)
        return cls(client, name)

    def add(self, job_name, data) -> dict:
        job = {
            "id": str(uuid.uuid4()),
            "name": job_name,
            "data": data,
            "queued_at": datetime.now(timezone.utc).isoformat(),
        }
        self.client.lpush(self.key, json.dumps(job))
        return job

    def pop(self, timeout=5):
        """Block up to ``timeout`` seconds for the next job; None when idle."""
        item = self.client.brpop(self.key, timeout=timeout)
        if item is None:
            return None
        _, payload = item
        try:
            return json.loads(payload)
        except ValueError:
            logger.error(f"Dropping malformed job on {self.key}: {payload!r}")
            return None

    def size(self) -> int:
        return self.client.llen(self.key)


def add_with_timeout(queue, job_name, data, timeout):
    """Run ``queue.add`` but stop waiting after ``timeout`` seconds.

    Raises QueueTimeout when the timer wins; enqueue errors propagate.
    """
    future = _enqueue_executor.submit(queue.add, job_name, data)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as e:
        raise QueueTimeout(f"Queue timeout after {timeout}s") from e


def get_ocr_queue():
    """Return the app's OCR queue, creating it from config on first use."""
    queue = current_app.extensions.get("ocr_queue")
    if queue is None:
        timeout = float(current_app.config.get("OCR_ENQUEUE_TIMEOUT", 3))
        queue = JobQueue.from_url(
            current_app.config["REDIS_URL"],
            current_app.config.get("OCR_QUEUE_NAME", DEFAULT_QUEUE_NAME),
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
        )
        current_app.extensions["ocr_queue"] = queue
        logger.info(f"OCR queue initialized on {queue.key}")
    return queue
