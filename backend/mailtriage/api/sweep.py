"""Sweep control and status API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from mailtriage.actors import Actor
from mailtriage.api.deps import get_actor, get_ctx
from mailtriage.api.envelope import ok
from mailtriage.context import AppContext
from mailtriage.errors import AuthorizationError

router = APIRouter(prefix="/api/sweep", tags=["sweep"])


class SweepStatus(BaseModel):
    running: bool
    shutdown_requested: bool
    last_run: Optional[str] = None
    last_result: Optional[dict] = None
    stats: dict = {}


@router.get("/status")
async def get_sweep_status(
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """Get current sweep state and processing stats."""
    sweep = ctx.sweep
    status = SweepStatus(
        running=sweep.is_running,
        shutdown_requested=sweep.shutdown_requested,
        last_run=sweep.last_run.isoformat() if sweep.last_run else None,
        last_result=sweep.last_result,
        stats=await ctx.processor.get_processing_stats(),
    )
    return ok(status)


@router.post("/run")
async def run_sweep(
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """Run one sweep now. Skipped if a sweep is already in flight."""
    if not actor.is_admin:
        raise AuthorizationError("Only admins can trigger a sweep")
    result = await ctx.sweep.run_once()
    message = "Sweep already in progress — skipped" if result.get("skipped") else "Sweep complete"
    return ok(result, message)
