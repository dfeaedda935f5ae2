"""Application context — every connection handle and service, built once and passed down."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mailtriage.config import Settings
from mailtriage.database import create_engine, create_session_factory, init_db
from mailtriage.services.analytics import UsageAnalytics
from mailtriage.services.approval import LabelApprovalWorkflow
from mailtriage.services.attachments import AttachmentService
from mailtriage.services.chat import ChatService
from mailtriage.services.classifier import ClassificationCascade, build_cascade
from mailtriage.services.embeddings import EmbeddingProvider, build_embedding_provider
from mailtriage.services.labels import LabelService
from mailtriage.services.llm import LLMClient, build_llm_client
from mailtriage.services.processor import EmailProcessor
from mailtriage.services.reminders import ReminderService
from mailtriage.services.rules import build_domain_rules
from mailtriage.services.similarity import VectorSearch
from mailtriage.services.sweep import ClassificationSweep

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    http: httpx.AsyncClient
    embedder: EmbeddingProvider
    llm: Optional[LLMClient]
    search: VectorSearch
    cascade: ClassificationCascade
    labels: LabelService
    approval: LabelApprovalWorkflow
    analytics: UsageAnalytics
    reminders: ReminderService
    attachments: AttachmentService
    chat: ChatService
    processor: EmailProcessor
    sweep: ClassificationSweep

    @classmethod
    def create(cls, settings: Settings, embedder=None, llm=_UNSET, cascade=None) -> "AppContext":
        """Wire the services. embedder, llm and cascade may be supplied to replace the configured ones."""
        engine = create_engine(settings.database_url, echo=settings.database_echo)
        session_factory = create_session_factory(engine)
        http = httpx.AsyncClient(timeout=settings.llm_timeout_seconds)

        if embedder is None:
            embedder = build_embedding_provider(settings, http)
        if llm is _UNSET:
            llm = build_llm_client(settings, http)

        search = VectorSearch(session_factory)
        if cascade is None:
            cascade = build_cascade(settings, session_factory, llm, embedder, search, build_domain_rules(settings))

        labels = LabelService()
        approval = LabelApprovalWorkflow(
            session_factory,
            labels,
            embedder,
            search,
            auto_assign_confidence=settings.auto_assign_confidence,
            similar_threshold=settings.similar_label_threshold,
            similar_limit=settings.similar_label_limit,
        )
        analytics = UsageAnalytics(
            session_factory,
            cost_per_llm_call=settings.llm_cost_per_call,
            cost_per_million_tokens=settings.cost_per_million_tokens,
        )
        reminders = ReminderService(session_factory)
        processor = EmailProcessor(session_factory, cascade, embedder, labels, approval, reminders, analytics)

        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            http=http,
            embedder=embedder,
            llm=llm,
            search=search,
            cascade=cascade,
            labels=labels,
            approval=approval,
            analytics=analytics,
            reminders=reminders,
            attachments=AttachmentService(session_factory, embedder, search),
            chat=ChatService(embedder, search, llm),
            processor=processor,
            sweep=ClassificationSweep(
                processor,
                batch_size=settings.sweep_batch_size,
                concurrency=settings.sweep_concurrency,
                interval_minutes=settings.sweep_interval_minutes,
            ),
        )

    async def startup(self):
        await init_db(self.engine)
        async with self.session_factory() as db:
            await self.labels.ensure_system_labels(db)
            await db.commit()

    async def close(self):
        await self.http.aclose()
        await self.engine.dispose()
