"""Standalone notification retry worker."""
from __future__ import annotations

import argparse
import asyncio
import logging

from emergency_connect.core.settings import settings
from emergency_connect.db.session import create_tables
from emergency_connect.services.retry_worker import RetryWorker


def main() -> None:
    parser = argparse.ArgumentParser(description="Retry pending and failed alert notifications")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process a single batch and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_tables()
    worker = RetryWorker()

    if args.once:
        processed = asyncio.run(worker.process_batch())
        print(f"Processed {processed} notification(s)")
        return

    try:
        asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Notification worker stopped")


if __name__ == "__main__":
    main()
