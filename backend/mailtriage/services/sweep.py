"""Classification sweep — periodic batch over unclassified emails."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


class ClassificationSweep:
    """Runs at most one sweep at a time. Emails in a sweep are processed concurrently."""

    def __init__(self, processor, batch_size: int = 50, concurrency: int = 4, interval_minutes: float = 5):
        self._processor = processor
        self._batch_size = batch_size
        self._concurrency = max(1, concurrency)
        self._interval = interval_minutes * 60
        self._running = False
        self._shutdown = asyncio.Event()
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[dict] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self):
        self._shutdown.set()

    async def run_once(self) -> dict:
        """Process one batch. Returns {"skipped": True} if a sweep is already in flight."""
        # Check-and-set with no await in between
        if self._running:
            logger.info("Sweep already in progress — skipping")
            return {"skipped": True}
        self._running = True

        result = {"skipped": False, "processed": 0, "errors": 0, "not_started": 0}
        try:
            email_ids = await self._processor.find_unclassified_ids(limit=self._batch_size)
            if not email_ids:
                logger.info("No unclassified emails found")
                return result

            logger.info(f"Sweep: processing {len(email_ids)} unclassified emails...")
            semaphore = asyncio.Semaphore(self._concurrency)

            async def handle(email_id: int) -> str:
                async with semaphore:
                    if self._shutdown.is_set():
                        return "not_started"
                    try:
                        await self._processor.process_email_by_id(email_id)
                        return "processed"
                    except Exception as e:
                        logger.error(f"Failed to process email {email_id}: {e}")
                        return "errors"

            for outcome in await asyncio.gather(*(handle(i) for i in email_ids)):
                result[outcome] += 1

            logger.info(
                f"Sweep complete: {result['processed']} processed, {result['errors']} errors"
                + (f", {result['not_started']} left for next run (shutdown)" if result["not_started"] else "")
            )
            return result
        finally:
            self._running = False
            self.last_run = datetime.now(timezone.utc)
            self.last_result = result

    async def run_forever(self, run_immediately: bool = True):
        """Sweep on an interval until shutdown is requested."""
        if not run_immediately:
            await self._wait_interval()
        while not self._shutdown.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Periodic sweep error: {e}")
            await self._wait_interval()
        logger.info("Periodic sweep stopped")

    async def _wait_interval(self):
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            pass
