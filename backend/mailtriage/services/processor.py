"""Email processor — classifies stored emails and persists everything that follows from it."""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailtriage.errors import NotFoundError, UpstreamError
from mailtriage.models.email import Email, EmailAccount
from mailtriage.models.meta import EmailMeta
from mailtriage.models.suggestion import PendingLabelSuggestion
from mailtriage.services.analytics import UsageAnalytics
from mailtriage.services.approval import LabelApprovalWorkflow
from mailtriage.services.classifier import ClassificationCascade, ClassificationResult
from mailtriage.services.embeddings import EmbeddingProvider
from mailtriage.services.labels import LabelService
from mailtriage.services.normalizer import normalize
from mailtriage.services.reminders import ReminderService

logger = logging.getLogger(__name__)


class EmailProcessor:
    """Processes emails: classify, embed, store meta, label, suggest, remind."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cascade: ClassificationCascade,
        embedder: EmbeddingProvider,
        labels: LabelService,
        approval: LabelApprovalWorkflow,
        reminders: ReminderService,
        analytics: UsageAnalytics,
    ):
        self._session_factory = session_factory
        self._cascade = cascade
        self._embedder = embedder
        self._labels = labels
        self._approval = approval
        self._reminders = reminders
        self._analytics = analytics

    async def find_unclassified_ids(self, limit: int = 50) -> list[int]:
        """Emails without a meta row, newest first."""
        async with self._session_factory() as db:
            classified = select(EmailMeta.email_id)
            result = await db.execute(
                select(Email.id)
                .where(~Email.id.in_(classified))
                .order_by(Email.received_at.desc(), Email.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def process_email_by_id(self, email_id: int) -> dict:
        """Classify one email. Re-classifying an email updates its existing meta row."""
        async with self._session_factory() as db:
            email_obj = await db.get(Email, email_id)
            if email_obj is None:
                raise NotFoundError("Email", email_id)
            return await self._process_single(db, email_obj)

    async def _process_single(self, db: AsyncSession, email_obj: Email) -> dict:
        owner_id = (await db.execute(
            select(EmailAccount.user_id).where(EmailAccount.id == email_obj.account_id)
        )).scalar_one_or_none()

        # Step 1: Classify
        result = await self._cascade.classify(email_obj, owner_user_id=owner_id)

        # Step 2: Embed (reusing the vector the LLM tier may already have computed)
        embedding = result.embedding
        if embedding is None:
            subject, body = normalize(email_obj.subject, email_obj.body)
            try:
                embedding = await self._embedder.embed(f"{subject}\n\n{body}".strip())
            except UpstreamError as e:
                logger.warning(f"Storing email {email_obj.id} without embedding: {e}")

        # Step 3: Store meta
        meta = await self._upsert_meta(db, email_obj.id, result, embedding)

        # Step 4: Analytics, labels, suggestion, reminder
        await self._analytics.record(db, email_obj.id, result)
        system_labels = await self._labels.apply_system_labels(db, email_obj.id, result.flags)
        suggestion = await self._approval.suggest(db, email_obj, result)
        reminder = await self._reminders.create_for_classification(db, email_obj, result)

        await db.commit()

        logger.info(
            f"Processed email {email_obj.id}: "
            f"method={result.method_used}, "
            f"label={result.suggested_label}, "
            f"flags={[f for f, v in result.flags.items() if v]}"
        )
        return {
            "email_id": email_obj.id,
            "meta_id": meta.id,
            "method_used": result.method_used,
            "flags": result.flags,
            "suggested_label": result.suggested_label,
            "confidence": result.confidence,
            "system_labels": system_labels,
            "suggestion_id": suggestion.id if suggestion else None,
            "reminder_created": reminder is not None,
            "embedded": embedding is not None,
        }

    async def _upsert_meta(
        self, db: AsyncSession, email_id: int, result: ClassificationResult, embedding
    ) -> EmailMeta:
        meta = (await db.execute(
            select(EmailMeta).where(EmailMeta.email_id == email_id)
        )).scalar_one_or_none()
        if meta is None:
            meta = EmailMeta(email_id=email_id)
            db.add(meta)

        for flag, value in result.flags.items():
            setattr(meta, flag, value)
        meta.suggested_label = result.suggested_label
        meta.label_confidence = max(0.0, min(1.0, result.confidence))
        meta.method_used = result.method_used
        meta.fingerprint = result.fingerprint
        meta.reasoning = result.reasoning
        meta.classification = result.to_payload()
        if embedding is not None:
            meta.embedding = embedding.vector
            meta.embedding_model = embedding.model
        await db.flush()
        return meta

    async def get_classification(self, email_id: int) -> Optional[EmailMeta]:
        async with self._session_factory() as db:
            return (await db.execute(
                select(EmailMeta).where(EmailMeta.email_id == email_id)
            )).scalar_one_or_none()

    async def get_processing_stats(self) -> dict:
        """Get current processing statistics."""
        async with self._session_factory() as db:
            total_emails = (await db.execute(select(func.count(Email.id)))).scalar() or 0
            classified = (await db.execute(select(func.count(EmailMeta.id)))).scalar() or 0
            embedded = (await db.execute(
                select(func.count(EmailMeta.id)).where(EmailMeta.embedding.is_not(None))
            )).scalar() or 0
            pending = (await db.execute(
                select(func.count(PendingLabelSuggestion.id)).where(PendingLabelSuggestion.status == "pending")
            )).scalar() or 0

            method_query = select(
                EmailMeta.method_used,
                func.count(EmailMeta.id),
            ).group_by(EmailMeta.method_used)
            by_method = {row[0]: row[1] for row in (await db.execute(method_query)).all()}

            return {
                "total_emails": total_emails,
                "classified": classified,
                "unclassified": total_emails - classified,
                "embedded": embedded,
                "pending_suggestions": pending,
                "by_method": by_method,
            }
