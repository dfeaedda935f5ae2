"""Label catalogue API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from mailtriage.actors import Actor
from mailtriage.api.deps import get_actor, get_ctx
from mailtriage.api.envelope import ok
from mailtriage.context import AppContext
from mailtriage.database import get_db

router = APIRouter(prefix="/api/labels", tags=["labels"])


class LabelOut(BaseModel):
    id: int
    name: str
    color: Optional[str]
    description: Optional[str]
    is_system: bool
    created_by_user_id: Optional[int]

    class Config:
        from_attributes = True


class LabelIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    description: Optional[str] = None


class LabelUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    description: Optional[str] = None


@router.get("/")
async def list_labels(
    include_system: bool = Query(True),
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
    db: AsyncSession = Depends(get_db),
):
    """List all labels, system labels first."""
    labels = await ctx.labels.list_labels(db, include_system=include_system)
    return ok([LabelOut.model_validate(label) for label in labels])


@router.post("/")
async def create_label(
    payload: LabelIn,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
    db: AsyncSession = Depends(get_db),
):
    label = await ctx.labels.create_label(db, payload.name, actor.id, payload.color, payload.description)
    await db.commit()
    return ok(LabelOut.model_validate(label), "Label created")


@router.patch("/{label_id}")
async def update_label(
    label_id: int,
    payload: LabelUpdate,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
    db: AsyncSession = Depends(get_db),
):
    label = await ctx.labels.update_label(
        db, label_id, actor, name=payload.name, color=payload.color, description=payload.description
    )
    await db.commit()
    return ok(LabelOut.model_validate(label), "Label updated")


@router.delete("/{label_id}")
async def delete_label(
    label_id: int,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
    db: AsyncSession = Depends(get_db),
):
    await ctx.labels.delete_label(db, label_id, actor)
    await db.commit()
    return ok({"id": label_id}, "Label deleted")
