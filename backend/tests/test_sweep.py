"""Tests for the classification sweep."""

import asyncio

from sqlalchemy import func, select

from conftest import make_context, seed_account, seed_email
from mailtriage.models.meta import EmailMeta
from mailtriage.services.sweep import ClassificationSweep


class SlowProcessor:
    """Stands in for EmailProcessor: each email takes a little while, some fail."""

    def __init__(self, email_ids, failing=(), delay=0.05):
        self.email_ids = list(email_ids)
        self.failing = set(failing)
        self.delay = delay
        self.processed = []
        self.started = asyncio.Event()

    async def find_unclassified_ids(self, limit=50):
        return self.email_ids[:limit]

    async def process_email_by_id(self, email_id):
        self.started.set()
        await asyncio.sleep(self.delay)
        if email_id in self.failing:
            raise RuntimeError(f"email {email_id} is broken")
        self.processed.append(email_id)
        return {"email_id": email_id}


def test_concurrent_trigger_is_skipped_while_a_sweep_runs():
    async def scenario():
        processor = SlowProcessor(range(1, 6))
        sweep = ClassificationSweep(processor, batch_size=10, concurrency=2)
        first = asyncio.create_task(sweep.run_once())
        await processor.started.wait()
        running_during = sweep.is_running
        second = await sweep.run_once()
        return await first, second, running_during, sweep

    first, second, running_during, sweep = asyncio.run(scenario())
    assert running_during is True
    assert second == {"skipped": True}
    assert first["processed"] == 5
    assert sweep.is_running is False
    assert sweep.last_result == first
    assert sweep.last_run is not None


def test_failures_are_counted_and_do_not_stop_the_batch():
    processor = SlowProcessor([1, 2, 3, 4], failing={2, 4}, delay=0)
    result = asyncio.run(ClassificationSweep(processor, concurrency=1).run_once())
    assert result == {"skipped": False, "processed": 2, "errors": 2, "not_started": 0}
    assert processor.processed == [1, 3]


def test_batch_size_limits_the_sweep():
    processor = SlowProcessor(range(1, 11), delay=0)
    result = asyncio.run(ClassificationSweep(processor, batch_size=3).run_once())
    assert result["processed"] == 3


def test_shutdown_leaves_unstarted_emails_for_next_run():
    async def scenario():
        processor = SlowProcessor(range(1, 7), delay=0.05)
        sweep = ClassificationSweep(processor, concurrency=1)
        task = asyncio.create_task(sweep.run_once())
        await processor.started.wait()
        sweep.request_shutdown()
        return await task, processor

    result, processor = asyncio.run(scenario())
    assert result["processed"] == 1
    assert result["not_started"] == 5
    assert result["processed"] + result["errors"] + result["not_started"] == 6


def test_run_forever_stops_on_shutdown():
    async def scenario():
        processor = SlowProcessor([], delay=0)
        sweep = ClassificationSweep(processor, interval_minutes=60)
        task = asyncio.create_task(sweep.run_forever(run_immediately=True))
        await asyncio.sleep(0.05)
        sweep.request_shutdown()
        await asyncio.wait_for(task, timeout=1)
        return sweep

    sweep = asyncio.run(scenario())
    assert sweep.last_result == {"skipped": False, "processed": 0, "errors": 0, "not_started": 0}


def test_sweep_classifies_stored_emails():
    async def scenario():
        ctx = await make_context()
        try:
            account = await seed_account(ctx)
            for subject in ("Urgent: server outage", "Team meeting moved", "Hello"):
                await seed_email(ctx, account, subject=subject)
            sweep = ClassificationSweep(ctx.processor, concurrency=1)
            result = await sweep.run_once()
            again = await sweep.run_once()
            async with ctx.session_factory() as db:
                metas = (await db.execute(select(func.count(EmailMeta.id)))).scalar()
            return result, again, metas
        finally:
            await ctx.close()

    result, again, metas = asyncio.run(scenario())
    assert result["processed"] == 3
    assert result["errors"] == 0
    assert again["processed"] == 0
    assert metas == 3
