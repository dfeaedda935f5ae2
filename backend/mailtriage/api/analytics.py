"""Token usage and cost analytics API endpoints."""

from fastapi import APIRouter, Depends, Query

from mailtriage.actors import Actor
from mailtriage.api.deps import get_actor, get_ctx
from mailtriage.api.envelope import ok
from mailtriage.context import AppContext

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

NO_DATA = "No classification data in this period"


@router.get("/token-usage")
async def token_usage(
    days: int = Query(7, ge=1, le=365),
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """Per-method classification counts and token totals."""
    stats = await ctx.analytics.get_usage_stats(days)
    if stats is None:
        return ok(None, NO_DATA)
    return ok(stats)


@router.get("/cost-savings")
async def cost_savings(
    days: int = Query(7, ge=1, le=365),
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """Estimated LLM spend versus calls avoided by the cheaper tiers."""
    stats = await ctx.analytics.get_usage_stats(days)
    if stats is None:
        return ok(None, NO_DATA)
    return ok({
        "period_days": days,
        **ctx.analytics.calculate_cost_savings(stats),
    })


@router.get("/optimization-metrics")
async def optimization_metrics(
    days: int = Query(7, ge=1, le=365),
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """Share of classifications answered without an LLM call."""
    stats = await ctx.analytics.get_usage_stats(days)
    if stats is None:
        return ok(None, NO_DATA)
    return ok({
        "period_days": days,
        **ctx.analytics.optimization_metrics(stats),
        "cost": ctx.analytics.calculate_cost_savings(stats),
    })
