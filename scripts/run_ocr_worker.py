"""Consume OCR jobs from the Redis queue and write recognised text back.
Run from the repo root:

    python scripts/run_ocr_worker.py

Uses the same configuration as the API (env vars / .env).
"""

import os
import sys
import logging

# Ensure we can import app and utils from the parent directory
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app import app  # noqa: E402
from utils.ocr_worker import run_worker  # noqa: E402
from utils.queues import JobQueue  # noqa: E402

logger = logging.getLogger("ocr_worker")


def main():
    # No socket timeout here: BRPOP blocks for the idle timeout
    queue = JobQueue.from_url(app.config["REDIS_URL"], app.config["OCR_QUEUE_NAME"])
    try:
        run_worker(app, queue)
    except KeyboardInterrupt:
        logger.info("OCR worker stopped")


if __name__ == "__main__":
    main()
