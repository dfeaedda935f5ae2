"""Token and cost analytics over recorded cascade decisions."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailtriage.models.usage import ClassificationUsage
from mailtriage.services.classifier import METHODS, ClassificationResult

logger = logging.getLogger(__name__)


class UsageAnalytics:
    """Records one usage row per classification and aggregates them per method."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cost_per_llm_call: float = 0.0001,
        cost_per_million_tokens: float = 0.075,
    ):
        self._session_factory = session_factory
        self._cost_per_llm_call = cost_per_llm_call
        self._cost_per_million_tokens = cost_per_million_tokens

    async def record(self, db: AsyncSession, email_id: Optional[int], result: ClassificationResult) -> ClassificationUsage:
        usage = ClassificationUsage(
            email_id=email_id,
            method=result.method_used,
            estimated_tokens=result.estimated_tokens,
            tokens_saved=result.tokens_saved,
        )
        db.add(usage)
        return usage

    async def get_usage_stats(self, window_days: int = 7) -> Optional[dict]:
        """Per-method usage within the window, or None when the window holds no classifications."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
        async with self._session_factory() as db:
            rows = (await db.execute(
                select(
                    ClassificationUsage.method,
                    func.count(ClassificationUsage.id),
                    func.coalesce(func.sum(ClassificationUsage.estimated_tokens), 0),
                    func.coalesce(func.sum(ClassificationUsage.tokens_saved), 0),
                )
                .where(ClassificationUsage.created_at >= cutoff)
                .group_by(ClassificationUsage.method)
            )).all()

        if not rows:
            return None

        by_method = {method: {"count": 0, "total_tokens": 0, "total_saved": 0} for method in METHODS}
        for method, count, tokens, saved in rows:
            entry = by_method.setdefault(method, {"count": 0, "total_tokens": 0, "total_saved": 0})
            entry["count"] += int(count)
            entry["total_tokens"] += int(tokens)
            entry["total_saved"] += int(saved)

        return {
            "period_days": window_days,
            "total_classifications": sum(m["count"] for m in by_method.values()),
            "total_tokens_used": sum(m["total_tokens"] for m in by_method.values()),
            "total_tokens_saved": sum(m["total_saved"] for m in by_method.values()),
            "by_method": by_method,
        }

    def calculate_cost_savings(self, stats: dict) -> dict:
        """Cost of the LLM calls made versus the calls that cheaper tiers avoided."""
        by_method = stats["by_method"]
        llm_calls = by_method.get("llm", {}).get("count", 0)
        avoided = sum(by_method.get(m, {}).get("count", 0) for m in ("cache", "domain", "regex"))
        per_token = self._cost_per_million_tokens / 1_000_000

        return {
            "llm_calls": llm_calls,
            "calls_avoided": avoided,
            "estimated_cost": round(llm_calls * self._cost_per_llm_call, 6),
            "estimated_savings": round(avoided * self._cost_per_llm_call, 6),
            "token_cost": round(stats["total_tokens_used"] * per_token, 6),
            "token_savings": round(stats["total_tokens_saved"] * per_token, 6),
        }

    @staticmethod
    def optimization_metrics(stats: dict) -> dict:
        total = stats["total_classifications"]

        def pct(method: str) -> float:
            if not total:
                return 0.0
            return round(stats["by_method"].get(method, {}).get("count", 0) * 100 / total, 2)

        return {
            "optimization_rate": round(100 - pct("llm"), 2) if total else 0.0,
            "cache_hit_rate": pct("cache"),
            "domain_rate": pct("domain"),
            "regex_rate": pct("regex"),
            "llm_rate": pct("llm"),
            "total_classifications": total,
        }
