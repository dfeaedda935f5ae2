"""Reminder API endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from mailtriage.actors import Actor
from mailtriage.api.deps import get_actor, get_ctx
from mailtriage.api.envelope import ok
from mailtriage.context import AppContext

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


class ReminderOut(BaseModel):
    id: int
    email_id: int
    reminder_text: str
    reason: Optional[str]
    priority: int
    resolved: bool
    created_at: Optional[datetime]
    resolved_at: Optional[datetime]

    class Config:
        from_attributes = True


@router.get("/")
async def list_reminders(
    resolved: Optional[bool] = Query(False),
    user_id: Optional[int] = Query(None, description="Admins only: filter by user"),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    reminders = await ctx.reminders.list_reminders(actor, resolved=resolved, user_id=user_id, limit=limit)
    return ok([ReminderOut.model_validate(r) for r in reminders])


@router.get("/high-priority")
async def high_priority(
    min_priority: int = Query(3, ge=1, le=5),
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    reminders = await ctx.reminders.high_priority(actor, min_priority=min_priority)
    return ok([ReminderOut.model_validate(r) for r in reminders])


@router.get("/{reminder_id}")
async def get_reminder(
    reminder_id: int,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    return ok(ReminderOut.model_validate(await ctx.reminders.get_reminder(reminder_id, actor)))


@router.patch("/{reminder_id}/resolve")
async def resolve_reminder(
    reminder_id: int,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    reminder = await ctx.reminders.set_resolved(reminder_id, actor, resolved=True)
    return ok(ReminderOut.model_validate(reminder), "Reminder resolved")


@router.patch("/{reminder_id}/unresolve")
async def unresolve_reminder(
    reminder_id: int,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    reminder = await ctx.reminders.set_resolved(reminder_id, actor, resolved=False)
    return ok(ReminderOut.model_validate(reminder), "Reminder reopened")
