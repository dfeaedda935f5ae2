"""Email API endpoints — ingest records, classify, inspect results, attach PDFs."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mailtriage.actors import Actor
from mailtriage.api.deps import get_actor, get_ctx, load_owned_email
from mailtriage.api.envelope import ok
from mailtriage.context import AppContext
from mailtriage.database import get_db
from mailtriage.errors import AuthorizationError, NotFoundError, ValidationError
from mailtriage.models.email import Email, EmailAccount

router = APIRouter(prefix="/api/emails", tags=["emails"])


class AccountIn(BaseModel):
    email_address: str = Field(min_length=3, max_length=256)
    user_id: Optional[int] = None
    enable_ai_labeling: bool = True


class AccountOut(BaseModel):
    id: int
    user_id: int
    email_address: str
    enable_ai_labeling: bool

    class Config:
        from_attributes = True


class EmailIn(BaseModel):
    account_id: int
    message_id: Optional[str] = None
    sender: str = Field(min_length=1, max_length=256)
    sender_name: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    received_at: Optional[datetime] = None


class EmailSummary(BaseModel):
    id: int
    account_id: int
    message_id: Optional[str]
    sender: Optional[str]
    sender_name: Optional[str]
    subject: Optional[str]
    received_at: Optional[datetime]

    class Config:
        from_attributes = True


class ClassificationOut(BaseModel):
    is_hierarchy: bool
    is_client: bool
    is_meeting: bool
    is_escalation: bool
    is_urgent: bool
    suggested_label: Optional[str]
    label_confidence: Optional[float]
    method_used: str
    reasoning: Optional[str]
    embedding_model: Optional[str]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class AttachmentIn(BaseModel):
    filename: str = Field(min_length=1, max_length=512)
    text: str
    content_type: str = "application/pdf"
    file_size: Optional[int] = None


@router.post("/accounts")
async def create_account(
    payload: AccountIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Register a mailbox for a user. Admins may register on behalf of others."""
    user_id = payload.user_id if payload.user_id is not None else actor.id
    if not actor.can_act_for(user_id):
        raise AuthorizationError("Only admins can register accounts for other users")

    account = EmailAccount(
        user_id=user_id,
        email_address=payload.email_address.strip().lower(),
        enable_ai_labeling=payload.enable_ai_labeling,
    )
    db.add(account)
    await db.commit()
    return ok(AccountOut.model_validate(account), "Account created")


@router.post("/")
async def ingest_email(
    payload: EmailIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Store an email handed over by the ingestion pipeline."""
    account = await db.get(EmailAccount, payload.account_id)
    if account is None:
        raise NotFoundError("Account", payload.account_id)
    if not actor.can_act_for(account.user_id):
        raise AuthorizationError(f"Account {payload.account_id} belongs to another user")

    if payload.message_id:
        existing = (await db.execute(
            select(Email.id).where(Email.message_id == payload.message_id)
        )).scalar_one_or_none()
        if existing is not None:
            raise ValidationError(f"Email with message_id {payload.message_id} already exists (id {existing})")

    email_obj = Email(**payload.model_dump())
    db.add(email_obj)
    await db.commit()
    return ok(EmailSummary.model_validate(email_obj), "Email stored")


@router.get("/stats")
async def processing_stats(
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
):
    """Get processing statistics."""
    return ok(await ctx.processor.get_processing_stats())


@router.get("/{email_id}")
async def get_email(
    email_id: int,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
    db: AsyncSession = Depends(get_db),
):
    """Get an email with its classification and labels."""
    email_obj = await load_owned_email(db, email_id, actor)
    meta = await ctx.processor.get_classification(email_id)
    labels = await ctx.labels.labels_for_email(db, email_id)

    return ok({
        **EmailSummary.model_validate(email_obj).model_dump(),
        "body": email_obj.body,
        "classification": ClassificationOut.model_validate(meta) if meta else None,
        "labels": [
            {
                "id": label.id,
                "name": label.name,
                "color": label.color,
                "is_system": label.is_system,
                "assigned_by": assignment.assigned_by,
                "confidence_score": assignment.confidence_score,
            }
            for label, assignment in labels
        ],
    })


@router.post("/{email_id}/classify")
async def classify_email(
    email_id: int,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
    db: AsyncSession = Depends(get_db),
):
    """Run the classification cascade on one email (re-classification updates in place)."""
    await load_owned_email(db, email_id, actor)
    result = await ctx.processor.process_email_by_id(email_id)
    return ok(result, f"Email classified via {result['method_used']}")


@router.post("/{email_id}/attachments")
async def add_attachment(
    email_id: int,
    payload: AttachmentIn,
    actor: Actor = Depends(get_actor),
    ctx: AppContext = Depends(get_ctx),
    db: AsyncSession = Depends(get_db),
):
    """Store the extracted text of a PDF attachment."""
    await load_owned_email(db, email_id, actor)
    attachment = await ctx.attachments.store_pdf(
        email_id,
        payload.filename,
        payload.text,
        content_type=payload.content_type,
        file_size=payload.file_size,
    )
    return ok({
        "id": attachment.id,
        "email_id": attachment.email_id,
        "filename": attachment.filename,
        "content_length": len(attachment.content or ""),
        "embedding_model": attachment.embedding_model,
    }, "Attachment stored")
