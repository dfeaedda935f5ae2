"""Reminders — follow-ups for urgent and escalated mail."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailtriage.actors import Actor
from mailtriage.database import utcnow
from mailtriage.errors import AuthorizationError, NotFoundError
from mailtriage.models.email import Email, EmailAccount
from mailtriage.models.reminder import Reminder
from mailtriage.services.classifier import ClassificationResult

logger = logging.getLogger(__name__)


class ReminderService:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_for_classification(
        self, db: AsyncSession, email: Email, result: ClassificationResult
    ) -> Optional[Reminder]:
        if not (result.is_urgent or result.is_escalation):
            return None

        open_reminder = (await db.execute(
            select(Reminder.id).where(Reminder.email_id == email.id, Reminder.resolved.is_(False)).limit(1)
        )).scalar_one_or_none()
        if open_reminder is not None:
            return None

        reasons = [name for name, flag in (
            ("escalation", result.is_escalation),
            ("urgent", result.is_urgent),
            ("from leadership", result.is_hierarchy),
        ) if flag]
        reminder = Reminder(
            email_id=email.id,
            reminder_text=f"Follow up: {email.subject or '(no subject)'}"[:500],
            reason="Flagged " + ", ".join(reasons),
            priority=1 + int(result.is_urgent) + int(result.is_escalation) + int(result.is_hierarchy),
        )
        db.add(reminder)
        return reminder

    def _scoped(self, query, actor: Actor, user_id: Optional[int] = None):
        owner = user_id if actor.is_admin else actor.id
        if owner is None:
            return query
        return (
            query.join(Email, Email.id == Reminder.email_id)
            .join(EmailAccount, EmailAccount.id == Email.account_id)
            .where(EmailAccount.user_id == owner)
        )

    async def list_reminders(
        self,
        actor: Actor,
        resolved: Optional[bool] = False,
        user_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[Reminder]:
        query = select(Reminder)
        if resolved is not None:
            query = query.where(Reminder.resolved.is_(resolved))
        query = self._scoped(query, actor, user_id)
        query = query.order_by(Reminder.priority.desc(), Reminder.created_at.desc()).limit(limit)
        async with self._session_factory() as db:
            return list((await db.execute(query)).scalars().all())

    async def high_priority(self, actor: Actor, min_priority: int = 3, limit: int = 50) -> list[Reminder]:
        query = select(Reminder).where(Reminder.resolved.is_(False), Reminder.priority >= min_priority)
        query = self._scoped(query, actor).order_by(Reminder.priority.desc(), Reminder.created_at.desc()).limit(limit)
        async with self._session_factory() as db:
            return list((await db.execute(query)).scalars().all())

    async def _load_owned(self, db: AsyncSession, reminder_id: int, actor: Actor) -> Reminder:
        row = (await db.execute(
            select(Reminder, EmailAccount.user_id)
            .join(Email, Email.id == Reminder.email_id)
            .join(EmailAccount, EmailAccount.id == Email.account_id)
            .where(Reminder.id == reminder_id)
        )).first()
        if row is None:
            raise NotFoundError("Reminder", reminder_id)
        reminder, owner_id = row
        if not actor.can_act_for(owner_id):
            raise AuthorizationError(f"Reminder {reminder_id} belongs to another user")
        return reminder

    async def get_reminder(self, reminder_id: int, actor: Actor) -> Reminder:
        async with self._session_factory() as db:
            return await self._load_owned(db, reminder_id, actor)

    async def set_resolved(self, reminder_id: int, actor: Actor, resolved: bool = True) -> Reminder:
        async with self._session_factory() as db:
            reminder = await self._load_owned(db, reminder_id, actor)
            reminder.resolved = resolved
            reminder.resolved_at = utcnow() if resolved else None
            await db.commit()
            logger.info(f"Reminder {reminder_id} {'resolved' if resolved else 'reopened'} by user {actor.id}")
            return reminder
