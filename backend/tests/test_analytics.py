"""Tests for token usage analytics."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_context
from mailtriage.models.usage import ClassificationUsage
from mailtriage.services.analytics import UsageAnalytics
from mailtriage.services.classifier import ClassificationResult

DECISIONS = [
    ("cache", 0, 120),
    ("cache", 0, 80),
    ("domain", 0, 200),
    ("regex", 0, 50),
    ("regex", 0, 60),
    ("regex", 0, 70),
    ("llm", 900, 0),
    ("llm", 1100, 0),
]


async def record_decisions(ctx, decisions=DECISIONS):
    async with ctx.session_factory() as db:
        for method, tokens, saved in decisions:
            await ctx.analytics.record(
                db, None, ClassificationResult(method_used=method, estimated_tokens=tokens, tokens_saved=saved)
            )
        await db.commit()


def test_empty_window_returns_none():
    async def scenario():
        ctx = await make_context()
        try:
            return await ctx.analytics.get_usage_stats(7)
        finally:
            await ctx.close()

    assert asyncio.run(scenario()) is None


def test_method_counts_add_up_to_total():
    async def scenario():
        ctx = await make_context()
        try:
            await record_decisions(ctx)
            return await ctx.analytics.get_usage_stats(7)
        finally:
            await ctx.close()

    stats = asyncio.run(scenario())
    assert set(stats["by_method"]) == {"cache", "domain", "regex", "llm"}
    assert sum(m["count"] for m in stats["by_method"].values()) == stats["total_classifications"] == 8
    assert stats["total_tokens_used"] == 2000
    assert stats["total_tokens_saved"] == 580
    assert stats["by_method"]["llm"] == {"count": 2, "total_tokens": 2000, "total_saved": 0}
    assert stats["by_method"]["regex"]["total_saved"] == 180
    assert stats["period_days"] == 7


def test_methods_without_rows_are_reported_as_zero():
    async def scenario():
        ctx = await make_context()
        try:
            await record_decisions(ctx, [("domain", 0, 10)])
            return await ctx.analytics.get_usage_stats(7)
        finally:
            await ctx.close()

    stats = asyncio.run(scenario())
    assert stats["by_method"]["llm"] == {"count": 0, "total_tokens": 0, "total_saved": 0}
    assert stats["total_classifications"] == 1


def test_window_excludes_older_rows():
    async def scenario():
        ctx = await make_context()
        try:
            await record_decisions(ctx, [("regex", 0, 10)])
            async with ctx.session_factory() as db:
                db.add(ClassificationUsage(
                    method="llm",
                    estimated_tokens=500,
                    tokens_saved=0,
                    created_at=datetime.now(timezone.utc) - timedelta(days=10),
                ))
                await db.commit()
            return await ctx.analytics.get_usage_stats(7), await ctx.analytics.get_usage_stats(30)
        finally:
            await ctx.close()

    week, month = asyncio.run(scenario())
    assert week["total_classifications"] == 1
    assert week["by_method"]["llm"]["count"] == 0
    assert month["total_classifications"] == 2
    assert month["total_tokens_used"] == 500


def test_cost_savings_and_optimization_metrics():
    analytics = UsageAnalytics(session_factory=None, cost_per_llm_call=0.0001, cost_per_million_tokens=0.075)
    stats = {
        "total_classifications": 8,
        "total_tokens_used": 2000,
        "total_tokens_saved": 580,
        "by_method": {
            "cache": {"count": 2, "total_tokens": 0, "total_saved": 200},
            "domain": {"count": 1, "total_tokens": 0, "total_saved": 200},
            "regex": {"count": 3, "total_tokens": 0, "total_saved": 180},
            "llm": {"count": 2, "total_tokens": 2000, "total_saved": 0},
        },
    }

    cost = analytics.calculate_cost_savings(stats)
    assert cost["llm_calls"] == 2
    assert cost["calls_avoided"] == 6
    assert cost["estimated_cost"] == pytest.approx(0.0002)
    assert cost["estimated_savings"] == pytest.approx(0.0006)
    assert cost["token_cost"] == pytest.approx(0.00015)
    assert cost["token_savings"] == pytest.approx(580 * 0.075 / 1_000_000, abs=1e-6)

    metrics = UsageAnalytics.optimization_metrics(stats)
    assert metrics["llm_rate"] == 25.0
    assert metrics["optimization_rate"] == 75.0
    assert metrics["cache_hit_rate"] == 25.0
    assert metrics["domain_rate"] == 12.5
    assert metrics["regex_rate"] == 37.5


def test_optimization_metrics_on_zero_total():
    metrics = UsageAnalytics.optimization_metrics({"total_classifications": 0, "by_method": {}})
    assert metrics["optimization_rate"] == 0.0
    assert metrics["llm_rate"] == 0.0
