"""Tests for retrieval-augmented chat and PDF attachment search."""

import asyncio

import pytest

from conftest import FakeLLM, fake_embedder, make_context, seed_account, seed_email, seed_meta
from mailtriage.actors import Actor
from mailtriage.errors import UpstreamError, ValidationError
from mailtriage.services.chat import NO_MATCH_ANSWER

OWNER = Actor(id=7)
OTHER = Actor(id=8)

BUDGET = [0, 0, 0, 0, 0, 1, 0, 0, 0.05]
FLIGHT = [0, 0, 0, 0, 1, 0, 0, 0, 0.05]


def test_chat_answers_from_matching_emails_and_pdfs():
    async def scenario():
        llm = FakeLLM("The budget was approved on Monday.")
        ctx = await make_context(embedder=fake_embedder(), llm=llm)
        try:
            account = await seed_account(ctx, user_id=7)
            budget = await seed_email(ctx, account, subject="Budget approved", body="Budget is approved.")
            trip = await seed_email(ctx, account, subject="Trip", body="Flight details")
            await seed_meta(ctx, budget, vector=BUDGET)
            await seed_meta(ctx, trip, vector=FLIGHT)
            await ctx.attachments.store_pdf(budget, "budget-2025.pdf", "Budget breakdown by team. Budget total 1M.")

            answer = await ctx.chat.answer(
                "What happened with the budget?",
                OWNER,
                history=[{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello!"}],
                threshold=0.5,
                max_results=5,
            )
            return answer, llm
        finally:
            await ctx.close()

    answer, llm = asyncio.run(scenario())
    assert answer.answer == "The budget was approved on Monday."
    assert answer.query == "What happened with the budget?"
    assert sorted(source["type"] for source in answer.sources) == ["email", "pdf"]
    assert all(source["similarity"] >= 0.5 for source in answer.sources)

    prompt = llm.prompts[0]
    assert "Subject: Budget approved" in prompt
    assert "budget-2025.pdf" in prompt
    assert "Flight details" not in prompt
    assert "ASSISTANT: Hello!" in prompt


def test_chat_without_matches_does_not_call_the_llm():
    async def scenario():
        llm = FakeLLM("should not be used")
        ctx = await make_context(embedder=fake_embedder(), llm=llm)
        try:
            account = await seed_account(ctx, user_id=7)
            trip = await seed_email(ctx, account, subject="Trip", body="Flight details")
            await seed_meta(ctx, trip, vector=FLIGHT)
            return await ctx.chat.answer("Any news on hiring?", OWNER, threshold=0.5), llm
        finally:
            await ctx.close()

    answer, llm = asyncio.run(scenario())
    assert answer.answer == NO_MATCH_ANSWER
    assert answer.sources == []
    assert llm.prompts == []


def test_chat_only_sees_the_actors_own_mail():
    async def scenario():
        ctx = await make_context(embedder=fake_embedder(), llm=FakeLLM("ok"))
        try:
            account = await seed_account(ctx, user_id=7)
            budget = await seed_email(ctx, account, subject="Budget approved")
            await seed_meta(ctx, budget, vector=BUDGET)
            return await ctx.chat.answer("budget?", OTHER, threshold=0.5)
        finally:
            await ctx.close()

    assert asyncio.run(scenario()).answer == NO_MATCH_ANSWER


def test_chat_requires_an_llm_when_context_is_found():
    async def scenario():
        ctx = await make_context(embedder=fake_embedder(), llm=None)
        try:
            account = await seed_account(ctx, user_id=7)
            budget = await seed_email(ctx, account, subject="Budget approved")
            await seed_meta(ctx, budget, vector=BUDGET)
            with pytest.raises(UpstreamError):
                await ctx.chat.answer("budget?", OWNER, threshold=0.5)
            with pytest.raises(ValidationError):
                await ctx.chat.answer("   ", OWNER)
        finally:
            await ctx.close()

    asyncio.run(scenario())


def test_pdf_storage_and_search():
    async def scenario():
        ctx = await make_context(embedder=fake_embedder())
        try:
            mine = await seed_account(ctx, user_id=7)
            theirs = await seed_account(ctx, user_id=8)
            email_id = await seed_email(ctx, mine)
            other_email = await seed_email(ctx, theirs)
            stored = await ctx.attachments.store_pdf(
                email_id, "itinerary.pdf", "<p>Flight LH123</p>\n\nFlight departs 9:00", file_size=2048
            )
            await ctx.attachments.store_pdf(other_email, "their-flight.pdf", "Flight to Rome")
            with pytest.raises(ValidationError):
                await ctx.attachments.store_pdf(email_id, "notes.docx", "text", content_type="application/msword")

            mine_hits = await ctx.attachments.search_similar("flight booking", OWNER, threshold=0.5)
            budget_hits = await ctx.attachments.search_similar("budget", OWNER, threshold=0.5)
            return stored, mine_hits, budget_hits
        finally:
            await ctx.close()

    stored, mine_hits, budget_hits = asyncio.run(scenario())
    assert stored.embedding_model == "fake/bow-v1"
    assert "<p>" not in stored.content
    assert [hit.entity.filename for hit in mine_hits] == ["itinerary.pdf"]
    assert budget_hits == []
