"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mailtriage.actors import Actor
from mailtriage.context import AppContext
from mailtriage.errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from mailtriage.models.email import Email, EmailAccount

ROLES = ("user", "admin")


def get_ctx(request: Request) -> AppContext:
    return request.app.state.ctx


async def get_actor(
    x_actor_id: Optional[int] = Header(None),
    x_actor_role: str = Header("user"),
) -> Actor:
    """The caller, as established by the authentication layer in front of this service."""
    if x_actor_id is None:
        raise AuthenticationError("Missing X-Actor-Id header")
    role = x_actor_role.strip().lower()
    if role not in ROLES:
        raise ValidationError(f"Invalid actor role '{x_actor_role}'")
    return Actor(id=x_actor_id, role=role)


async def load_owned_email(db: AsyncSession, email_id: int, actor: Actor) -> Email:
    email = await db.get(Email, email_id)
    if email is None:
        raise NotFoundError("Email", email_id)
    account = await db.get(EmailAccount, email.account_id)
    if account is None or not actor.can_act_for(account.user_id):
        raise AuthorizationError(f"Email {email_id} belongs to another user")
    return email
