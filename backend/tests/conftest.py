"""
Pytest configuration for mailtriage tests

Provides fakes for the LLM and embedding backends, an in-memory database
context builder, and small seeding helpers shared across test files.
"""

import json
import re
from datetime import datetime, timezone
from typing import Optional

from mailtriage.config import Settings
from mailtriage.context import AppContext
from mailtriage.models.email import Email, EmailAccount
from mailtriage.models.meta import EmailMeta
from mailtriage.services.embeddings import EmbeddingProvider

VOCABULARY = ("invoice", "meeting", "outage", "contract", "flight", "budget", "hiring", "newsletter")


class FakeEmbeddingBackend:
    """Bag-of-keywords vectors: texts sharing keywords are similar."""

    name = "fake"

    def __init__(self, model: str = "bow-v1"):
        self.model = model
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        words = re.findall(r"[a-z]+", text.lower())
        vector = [float(sum(1 for w in words if w.startswith(term))) for term in VOCABULARY]
        vector.append(0.05)
        return vector


class FailingEmbeddingBackend:
    name = "fake"
    model = "broken"

    async def embed(self, text: str) -> list[float]:
        raise ValueError("embedding service unavailable")


class FakeLLM:
    """Returns queued responses in order, repeating the last one."""

    model = "fake/llm"

    def __init__(self, *responses: str):
        self.responses = list(responses) or ["{}"]
        self.prompts: list[str] = []

    async def complete(self, prompt: str, json_mode: bool = False) -> str:
        self.prompts.append(prompt)
        index = min(len(self.prompts) - 1, len(self.responses) - 1)
        return self.responses[index]


def llm_json(
    label: str = "Project Update",
    confidence: float = 0.7,
    reasoning: str = "test",
    **flags,
) -> str:
    payload = {
        "is_hierarchy": False,
        "is_client": False,
        "is_meeting": False,
        "is_escalation": False,
        "is_urgent": False,
        "suggested_label": label,
        "confidence": confidence,
        "reasoning": reasoning,
    }
    payload.update(flags)
    return json.dumps(payload)


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite://",
        "llm_providers": "",
        "embedding_provider": "disabled",
        "sweep_enabled": False,
        "leadership_domains": "acme-corp-domain.com",
        "client_domains": "bigclient.com",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


async def make_context(
    embedder: Optional[EmbeddingProvider] = None,
    llm=None,
    **settings_overrides,
) -> AppContext:
    """Build a context on a fresh in-memory database. Call inside the running event loop."""
    ctx = AppContext.create(
        make_settings(**settings_overrides),
        embedder=embedder or EmbeddingProvider(None),
        llm=llm,
    )
    await ctx.startup()
    return ctx


def fake_embedder(model: str = "bow-v1") -> EmbeddingProvider:
    return EmbeddingProvider(FakeEmbeddingBackend(model), retries=1, backoff=0)


def failing_embedder() -> EmbeddingProvider:
    return EmbeddingProvider(FailingEmbeddingBackend(), retries=2, backoff=0)


async def seed_account(ctx: AppContext, user_id: int = 7, enable_ai_labeling: bool = True) -> int:
    async with ctx.session_factory() as db:
        account = EmailAccount(
            user_id=user_id,
            email_address=f"user{user_id}@example.com",
            enable_ai_labeling=enable_ai_labeling,
        )
        db.add(account)
        await db.commit()
        return account.id


async def seed_email(
    ctx: AppContext,
    account_id: int,
    subject: str = "Hello",
    body: str = "Just checking in.",
    sender: str = "friend@example.org",
    message_id: Optional[str] = None,
) -> int:
    async with ctx.session_factory() as db:
        email = Email(
            account_id=account_id,
            message_id=message_id,
            sender=sender,
            subject=subject,
            body=body,
            received_at=datetime.now(timezone.utc),
        )
        db.add(email)
        await db.commit()
        return email.id


async def seed_meta(
    ctx: AppContext,
    email_id: int,
    vector: Optional[list] = None,
    model: Optional[str] = "fake/bow-v1",
    label: Optional[str] = None,
    method: str = "regex",
    **flags,
) -> int:
    async with ctx.session_factory() as db:
        meta = EmailMeta(
            email_id=email_id,
            suggested_label=label,
            method_used=method,
            embedding=vector,
            embedding_model=model if vector is not None else None,
            **flags,
        )
        db.add(meta)
        await db.commit()
        return meta.id

