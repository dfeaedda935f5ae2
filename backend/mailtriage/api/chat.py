"""Chat and document search API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from mailtriage.actors import Actor
from mailtriage.api.deps import get_actor, get_ctx
from mailtriage.api.envelope import ok
from mailtriage.context import AppContext

router = APIRouter(prefix="/api", tags=["chat"])


class ChatTurn(BaseModel):
    role: str = "user"
    content: str


class ChatRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)
    conversation_history: list[ChatTurn] = []
    search_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    max_results: Optional[int] = Field(None, ge=1, le=20)


class AttachmentSearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    limit: int = Field(5, ge=1, le=20)
    threshold: float = Field(0.5, ge=0.0, le=1.0)


@router.post("/chat")
async def chat(
    payload: ChatRequest,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """Answer a question from the most relevant emails and PDFs."""
    settings = ctx.settings
    answer = await ctx.chat.answer(
        payload.question,
        actor,
        history=[turn.model_dump() for turn in payload.conversation_history],
        threshold=payload.search_threshold if payload.search_threshold is not None else settings.chat_threshold,
        max_results=payload.max_results or settings.chat_max_results,
    )
    return ok(answer)


@router.post("/attachments/search")
async def search_attachments(
    payload: AttachmentSearchRequest,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """Find PDF attachments similar to a query."""
    hits = await ctx.attachments.search_similar(payload.query, actor, limit=payload.limit, threshold=payload.threshold)
    return ok([
        {
            "id": hit.entity.id,
            "email_id": hit.entity.email_id,
            "filename": hit.entity.filename,
            "similarity": round(hit.similarity, 4),
            "preview": (hit.entity.content or "")[:300],
        }
        for hit in hits
    ])
