"""Label service — label catalogue, system labels and email assignments."""

import logging
import random
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailtriage.actors import Actor
from mailtriage.errors import AuthorizationError, NotFoundError, ValidationError
from mailtriage.models.label import EmailLabel, Label

logger = logging.getLogger(__name__)

LABEL_COLORS = ["#EF4444", "#F59E0B", "#10B981", "#3B82F6", "#8B5CF6", "#EC4899", "#14B8A6", "#F97316"]

# name -> (color, description, flag that assigns it)
SYSTEM_LABELS = {
    "Escalation": ("#EF4444", "Issues escalated or needing management attention", "is_escalation"),
    "Urgent": ("#F59E0B", "Needs action quickly", "is_urgent"),
    "MOM": ("#10B981", "Meetings and minutes of meeting", "is_meeting"),
}

SYSTEM_LABEL_NAMES = frozenset(name.lower() for name in SYSTEM_LABELS)


class LabelService:
    """Label CRUD and assignment. Methods take the caller's session so they compose into one transaction."""

    async def ensure_system_labels(self, db: AsyncSession) -> int:
        """Create any missing system label. Returns how many were created."""
        created = 0
        for name, (color, description, _flag) in SYSTEM_LABELS.items():
            if await self.find_by_name(db, name) is None:
                db.add(Label(name=name, color=color, description=description, is_system=True))
                created += 1
        if created:
            await db.flush()
            logger.info(f"Seeded {created} system labels")
        return created

    async def find_by_name(self, db: AsyncSession, name: str) -> Optional[Label]:
        result = await db.execute(
            select(Label).where(func.lower(Label.name) == name.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_label(self, db: AsyncSession, label_id: int) -> Label:
        label = await db.get(Label, label_id)
        if label is None:
            raise NotFoundError("Label", label_id)
        return label

    async def list_labels(self, db: AsyncSession, include_system: bool = True) -> list[Label]:
        query = select(Label).order_by(Label.is_system.desc(), Label.name)
        if not include_system:
            query = query.where(Label.is_system.is_(False))
        return list((await db.execute(query)).scalars().all())

    async def create_label(
        self,
        db: AsyncSession,
        name: str,
        created_by_user_id: Optional[int],
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Label:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Label name is required")
        if len(name) > 128:
            raise ValidationError("Label name must be at most 128 characters")
        if await self.find_by_name(db, name) is not None:
            raise ValidationError(f"Label '{name}' already exists")

        label = Label(
            name=name,
            color=color or random.choice(LABEL_COLORS),
            description=description,
            is_system=False,
            created_by_user_id=created_by_user_id,
        )
        db.add(label)
        await db.flush()
        logger.info(f"Created label {label.id} '{name}' for user {created_by_user_id}")
        return label

    async def find_or_create(self, db: AsyncSession, name: str, created_by_user_id: Optional[int]) -> Label:
        label = await self.find_by_name(db, name)
        if label is not None:
            return label
        return await self.create_label(db, name, created_by_user_id)

    def _check_mutable(self, label: Label, actor: Actor):
        if label.is_system:
            raise AuthorizationError(f"System label '{label.name}' cannot be modified")
        if not actor.can_act_for(label.created_by_user_id):
            raise AuthorizationError(f"Label {label.id} belongs to another user")

    async def update_label(
        self,
        db: AsyncSession,
        label_id: int,
        actor: Actor,
        name: Optional[str] = None,
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Label:
        label = await self.get_label(db, label_id)
        self._check_mutable(label, actor)

        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Label name cannot be empty")
            existing = await self.find_by_name(db, name)
            if existing is not None and existing.id != label.id:
                raise ValidationError(f"Label '{name}' already exists")
            label.name = name
        if color is not None:
            label.color = color
        if description is not None:
            label.description = description
        await db.flush()
        return label

    async def delete_label(self, db: AsyncSession, label_id: int, actor: Actor):
        label = await self.get_label(db, label_id)
        self._check_mutable(label, actor)
        await db.delete(label)
        await db.flush()
        logger.info(f"Deleted label {label_id} by user {actor.id}")

    async def assign_to_email(
        self,
        db: AsyncSession,
        email_id: int,
        label_id: int,
        assigned_by: str = "ai",
        confidence: Optional[float] = None,
    ) -> bool:
        """Attach a label to an email, updating an existing assignment. Returns True if newly attached."""
        if confidence is not None:
            confidence = max(0.0, min(1.0, float(confidence)))

        result = await db.execute(
            select(EmailLabel).where(EmailLabel.email_id == email_id, EmailLabel.label_id == label_id)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            existing.assigned_by = assigned_by
            existing.confidence_score = confidence
            await db.flush()
            return False

        db.add(EmailLabel(
            email_id=email_id,
            label_id=label_id,
            assigned_by=assigned_by,
            confidence_score=confidence,
        ))
        await db.flush()
        return True

    async def labels_for_email(self, db: AsyncSession, email_id: int) -> list[tuple[Label, EmailLabel]]:
        result = await db.execute(
            select(Label, EmailLabel)
            .join(EmailLabel, EmailLabel.label_id == Label.id)
            .where(EmailLabel.email_id == email_id)
            .order_by(Label.name)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def email_has_label(self, db: AsyncSession, email_id: int, name: str) -> bool:
        result = await db.execute(
            select(func.count(EmailLabel.id))
            .join(Label, Label.id == EmailLabel.label_id)
            .where(EmailLabel.email_id == email_id, func.lower(Label.name) == name.strip().lower())
        )
        return (result.scalar() or 0) > 0

    async def apply_system_labels(self, db: AsyncSession, email_id: int, flags: dict[str, bool]) -> list[str]:
        """Assign Escalation / Urgent / MOM from the classification flags."""
        applied = []
        for name, (_color, _description, flag) in SYSTEM_LABELS.items():
            if not flags.get(flag):
                continue
            label = await self.find_by_name(db, name)
            if label is None:
                await self.ensure_system_labels(db)
                label = await self.find_by_name(db, name)
            await self.assign_to_email(db, email_id, label.id, assigned_by="system", confidence=1.0)
            applied.append(name)
        return applied
