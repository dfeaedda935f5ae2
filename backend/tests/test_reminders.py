"""Tests for follow-up reminders."""

import asyncio

import pytest

from conftest import make_context, seed_account, seed_email
from mailtriage.actors import Actor
from mailtriage.errors import AuthorizationError, NotFoundError

OWNER = Actor(id=7)
OTHER = Actor(id=8)
ADMIN = Actor(id=99, role="admin")


async def classify(ctx, account, subject, sender="friend@example.org"):
    email_id = await seed_email(ctx, account, subject=subject, sender=sender)
    await ctx.processor.process_email_by_id(email_id)
    return email_id


def test_reminders_are_created_for_urgent_or_escalated_mail_only():
    async def scenario():
        ctx = await make_context()
        try:
            account = await seed_account(ctx, user_id=7)
            await classify(ctx, account, "Urgent: sign the form")
            await classify(ctx, account, "Urgent: escalation on the outage", sender="vp@acme-corp-domain.com")
            await classify(ctx, account, "Lunch on Friday?")
            return await ctx.reminders.list_reminders(OWNER)
        finally:
            await ctx.close()

    reminders = asyncio.run(scenario())
    assert [r.priority for r in reminders] == [4, 2]
    assert reminders[0].reminder_text == "Follow up: Urgent: escalation on the outage"
    assert all(not r.resolved for r in reminders)


def test_reprocessing_does_not_duplicate_open_reminders():
    async def scenario():
        ctx = await make_context()
        try:
            account = await seed_account(ctx, user_id=7)
            email_id = await classify(ctx, account, "Urgent: sign the form")
            await ctx.processor.process_email_by_id(email_id)
            return await ctx.reminders.list_reminders(OWNER)
        finally:
            await ctx.close()

    assert len(asyncio.run(scenario())) == 1


def test_resolve_and_unresolve():
    async def scenario():
        ctx = await make_context()
        try:
            account = await seed_account(ctx, user_id=7)
            await classify(ctx, account, "Urgent: sign the form")
            reminder_id = (await ctx.reminders.list_reminders(OWNER))[0].id

            resolved = await ctx.reminders.set_resolved(reminder_id, OWNER, resolved=True)
            open_after = await ctx.reminders.list_reminders(OWNER)
            done = await ctx.reminders.list_reminders(OWNER, resolved=True)
            reopened = await ctx.reminders.set_resolved(reminder_id, ADMIN, resolved=False)
            return resolved, open_after, done, reopened
        finally:
            await ctx.close()

    resolved, open_after, done, reopened = asyncio.run(scenario())
    assert resolved.resolved is True
    assert resolved.resolved_at is not None
    assert open_after == []
    assert len(done) == 1
    assert reopened.resolved is False
    assert reopened.resolved_at is None


def test_reminders_are_scoped_to_their_owner():
    async def scenario():
        ctx = await make_context()
        try:
            mine = await seed_account(ctx, user_id=7)
            theirs = await seed_account(ctx, user_id=8)
            await classify(ctx, mine, "Urgent: sign the form")
            await classify(ctx, theirs, "Urgent: renew the lease")
            reminder_id = (await ctx.reminders.list_reminders(OWNER))[0].id

            with pytest.raises(AuthorizationError):
                await ctx.reminders.get_reminder(reminder_id, OTHER)
            with pytest.raises(AuthorizationError):
                await ctx.reminders.set_resolved(reminder_id, OTHER)
            with pytest.raises(NotFoundError):
                await ctx.reminders.get_reminder(4040, OWNER)

            return (
                len(await ctx.reminders.list_reminders(OWNER)),
                len(await ctx.reminders.list_reminders(OTHER)),
                len(await ctx.reminders.list_reminders(ADMIN)),
                len(await ctx.reminders.list_reminders(ADMIN, user_id=8)),
                len(await ctx.reminders.list_reminders(OWNER, user_id=8)),
            )
        finally:
            await ctx.close()

    assert asyncio.run(scenario()) == (1, 1, 2, 1, 1)


def test_high_priority_filter():
    async def scenario():
        ctx = await make_context()
        try:
            account = await seed_account(ctx, user_id=7)
            await classify(ctx, account, "Urgent: sign the form")
            await classify(ctx, account, "Urgent: escalation on the outage", sender="vp@acme-corp-domain.com")
            return await ctx.reminders.high_priority(OWNER, min_priority=3)
        finally:
            await ctx.close()

    assert [r.priority for r in asyncio.run(scenario())] == [4]
