"""Label suggestion review API endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from mailtriage.actors import Actor
from mailtriage.api.deps import get_actor, get_ctx
from mailtriage.api.envelope import ok
from mailtriage.context import AppContext

router = APIRouter(prefix="/api/labels/suggestions", tags=["suggestions"])


class SuggestionOut(BaseModel):
    id: int
    email_id: int
    user_id: int
    suggested_label_name: str
    suggested_by: str
    confidence_score: Optional[float]
    reasoning: Optional[str]
    status: str
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class ProcessRequest(BaseModel):
    action: str


@router.get("/pending")
async def list_pending(
    all_users: bool = Query(False, description="Admins only: include every user's suggestions"),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """List pending suggestions for the caller (or everyone, for admins)."""
    suggestions = await ctx.approval.list_pending(actor, all_users=all_users, limit=limit)
    return ok([SuggestionOut.model_validate(s) for s in suggestions])


@router.get("/count")
async def count_pending(
    all_users: bool = Query(False),
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    return ok({"count": await ctx.approval.count_pending(actor, all_users=all_users)})


@router.post("/{suggestion_id}/process")
async def process_suggestion(
    suggestion_id: int,
    payload: ProcessRequest,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """Approve or reject a suggestion. Approval also labels similar emails."""
    outcome = await ctx.approval.process(suggestion_id, payload.action, actor)
    return ok(outcome, outcome.message)
