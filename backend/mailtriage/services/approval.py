"""Label approval workflow — suggestions, human review and propagation to similar mail."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailtriage.actors import Actor
from mailtriage.database import utcnow
from mailtriage.errors import AlreadyProcessedError, AuthorizationError, NotFoundError, ValidationError
from mailtriage.models.email import Email, EmailAccount
from mailtriage.models.meta import EmailMeta
from mailtriage.models.suggestion import PendingLabelSuggestion, SuggestionAuditLog
from mailtriage.services.classifier import UNCATEGORIZED, ClassificationResult
from mailtriage.services.embeddings import EmbeddingProvider, EmbeddingResult
from mailtriage.services.labels import SYSTEM_LABEL_NAMES, LabelService
from mailtriage.services.normalizer import normalize
from mailtriage.services.similarity import EmailScope, VectorSearch

logger = logging.getLogger(__name__)

ACTIONS = ("approve", "reject")
_NON_LABELS = {UNCATEGORIZED.lower(), "none", "null", "n/a", "other"}


@dataclass
class ProcessOutcome:
    success: bool
    suggestion_id: int
    status: str
    label_id: Optional[int] = None
    message: str = ""
    similar_emails_labeled: int = 0


class LabelApprovalWorkflow:
    """Creates pending suggestions and applies approve/reject decisions exactly once."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        labels: LabelService,
        embedder: EmbeddingProvider,
        search: VectorSearch,
        auto_assign_confidence: float = 0.8,
        similar_threshold: float = 0.85,
        similar_limit: int = 10,
    ):
        self._session_factory = session_factory
        self._labels = labels
        self._embedder = embedder
        self._search = search
        self._auto_assign_confidence = auto_assign_confidence
        self._similar_threshold = similar_threshold
        self._similar_limit = similar_limit

    async def suggest(
        self, db: AsyncSession, email: Email, result: ClassificationResult
    ) -> Optional[PendingLabelSuggestion]:
        """Record a pending suggestion for the classifier's label, unless something already covers it."""
        name = (result.suggested_label or "").strip()
        if not name or name.lower() in _NON_LABELS or name.lower() in SYSTEM_LABEL_NAMES:
            return None

        account = await db.get(EmailAccount, email.account_id)
        if account is None:
            logger.warning(f"Email {email.id} has no account — skipping label suggestion")
            return None
        if not account.enable_ai_labeling:
            return None

        if await self._labels.email_has_label(db, email.id, name):
            return None

        confidence = max(0.0, min(1.0, result.confidence))
        existing_label = await self._labels.find_by_name(db, name)
        if existing_label is not None and confidence >= self._auto_assign_confidence:
            await self._labels.assign_to_email(db, email.id, existing_label.id, assigned_by="ai", confidence=confidence)
            logger.info(f"Auto-assigned existing label '{name}' to email {email.id} ({confidence:.2f})")
            return None

        duplicate = (await db.execute(
            select(PendingLabelSuggestion).where(
                PendingLabelSuggestion.email_id == email.id,
                func.lower(PendingLabelSuggestion.suggested_label_name) == name.lower(),
                PendingLabelSuggestion.status == "pending",
            )
        )).scalar_one_or_none()
        if duplicate is not None:
            return duplicate

        suggestion = PendingLabelSuggestion(
            email_id=email.id,
            user_id=account.user_id,
            suggested_label_name=name,
            suggested_by="ai" if result.method_used in ("llm", "cache") else "system",
            confidence_score=confidence,
            reasoning=result.reasoning or None,
            status="pending",
        )
        db.add(suggestion)
        await db.flush()
        logger.info(f"Suggested label '{name}' for email {email.id} (user {account.user_id})")
        return suggestion

    async def process(self, suggestion_id: int, action: str, actor: Actor) -> ProcessOutcome:
        """Approve or reject a pending suggestion. The status flips at most once."""
        if action not in ACTIONS:
            raise ValidationError(f"Invalid action '{action}'. Must be one of: {', '.join(ACTIONS)}")

        new_status = "approved" if action == "approve" else "rejected"
        label_id = None

        async with self._session_factory() as db:
            async with db.begin():
                suggestion = await db.get(PendingLabelSuggestion, suggestion_id)
                if suggestion is None:
                    raise NotFoundError("Suggestion", suggestion_id)
                if not actor.can_act_for(suggestion.user_id):
                    raise AuthorizationError(f"Suggestion {suggestion_id} belongs to another user")

                owner_id = suggestion.user_id
                email_id = suggestion.email_id
                label_name = suggestion.suggested_label_name
                on_behalf = actor.id != owner_id

                # Check-and-set: only a still-pending row can transition
                changed = await db.execute(
                    update(PendingLabelSuggestion)
                    .where(
                        PendingLabelSuggestion.id == suggestion_id,
                        PendingLabelSuggestion.status == "pending",
                    )
                    .values(status=new_status, approved_by=actor.id, approved_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if changed.rowcount != 1:
                    raise AlreadyProcessedError(f"Suggestion {suggestion_id} has already been processed")

                if action == "approve":
                    label = await self._labels.find_or_create(db, label_name, owner_id)
                    label_id = label.id
                    await self._labels.assign_to_email(
                        db, email_id, label.id, assigned_by="admin" if on_behalf else "user", confidence=1.0
                    )

                db.add(SuggestionAuditLog(
                    suggestion_id=suggestion_id,
                    actor_id=actor.id,
                    actor_role=actor.role,
                    action=new_status,
                    on_behalf_of_user_id=owner_id if on_behalf else None,
                ))

        if on_behalf:
            logger.info(f"Admin {actor.id} {new_status} suggestion {suggestion_id} on behalf of user {owner_id}")
        else:
            logger.info(f"User {actor.id} {new_status} suggestion {suggestion_id}")

        if action == "reject":
            return ProcessOutcome(
                success=True,
                suggestion_id=suggestion_id,
                status=new_status,
                message="Suggestion rejected",
            )

        labeled = await self.auto_apply_to_similar_emails(label_id, owner_id, email_id)
        return ProcessOutcome(
            success=True,
            suggestion_id=suggestion_id,
            status=new_status,
            label_id=label_id,
            message=f"Label '{label_name}' approved and applied to {labeled} similar emails",
            similar_emails_labeled=labeled,
        )

    async def auto_apply_to_similar_emails(self, label_id: int, owner_user_id: int, seed_email_id: int) -> int:
        """Attach the label to the owner's similar emails that lack it. Failures are logged, never raised."""
        labeled = 0
        try:
            async with self._session_factory() as db:
                embedding = await self._seed_embedding(db, seed_email_id)
                if embedding is None:
                    logger.info(f"No embedding for email {seed_email_id} — skipping label propagation")
                    return 0

                hits = await self._search.search(
                    embedding.vector,
                    embedding.model,
                    EmailScope(
                        owner_user_id=owner_user_id,
                        exclude_email_ids=(seed_email_id,),
                        without_label_id=label_id,
                    ),
                    limit=self._similar_limit,
                    threshold=self._similar_threshold,
                    db=db,
                )

                for hit in hits:
                    try:
                        await self._labels.assign_to_email(
                            db, hit.entity.id, label_id, assigned_by="ai", confidence=hit.similarity
                        )
                        await db.commit()
                        labeled += 1
                    except Exception as e:
                        await db.rollback()
                        logger.warning(f"Could not apply label {label_id} to email {hit.entity.id}: {e}")
        except Exception as e:
            logger.error(f"Label propagation from email {seed_email_id} failed: {e}")

        if labeled:
            logger.info(f"Applied label {label_id} to {labeled} emails similar to {seed_email_id}")
        return labeled

    async def _seed_embedding(self, db: AsyncSession, email_id: int) -> Optional[EmbeddingResult]:
        meta = (await db.execute(
            select(EmailMeta).where(EmailMeta.email_id == email_id)
        )).scalar_one_or_none()
        if meta is not None and meta.embedding and meta.embedding_model:
            return EmbeddingResult(vector=list(meta.embedding), model=meta.embedding_model)

        email = await db.get(Email, email_id)
        if email is None:
            raise NotFoundError("Email", email_id)
        subject, body = normalize(email.subject, email.body)
        embedding = await self._embedder.embed(f"{subject}\n\n{body}".strip())
        if embedding is not None and meta is not None:
            meta.embedding = embedding.vector
            meta.embedding_model = embedding.model
            await db.commit()
        return embedding

    async def list_pending(self, actor: Actor, all_users: bool = False, limit: int = 50) -> list[PendingLabelSuggestion]:
        async with self._session_factory() as db:
            query = (
                select(PendingLabelSuggestion)
                .where(PendingLabelSuggestion.status == "pending")
                .order_by(PendingLabelSuggestion.created_at.desc(), PendingLabelSuggestion.id.desc())
                .limit(limit)
            )
            if not (actor.is_admin and all_users):
                query = query.where(PendingLabelSuggestion.user_id == actor.id)
            return list((await db.execute(query)).scalars().all())

    async def count_pending(self, actor: Actor, all_users: bool = False) -> int:
        async with self._session_factory() as db:
            query = select(func.count(PendingLabelSuggestion.id)).where(PendingLabelSuggestion.status == "pending")
            if not (actor.is_admin and all_users):
                query = query.where(PendingLabelSuggestion.user_id == actor.id)
            return (await db.execute(query)).scalar() or 0
