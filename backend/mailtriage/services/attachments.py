"""PDF attachments — store extracted text with an embedding and find similar documents."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailtriage.actors import Actor
from mailtriage.errors import NotFoundError, UpstreamError, ValidationError
from mailtriage.models.attachment import EmailAttachment
from mailtriage.models.email import Email
from mailtriage.services.embeddings import EmbeddingProvider
from mailtriage.services.normalizer import NormalizeOptions, clean_body
from mailtriage.services.similarity import AttachmentScope, SearchHit, VectorSearch

logger = logging.getLogger(__name__)

# Extracted PDF text has no quoted replies or signatures to strip
PDF_OPTIONS = NormalizeOptions(
    remove_quoted_replies=False,
    remove_signatures=False,
    max_length=10000,
)


class AttachmentService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: EmbeddingProvider,
        search: VectorSearch,
    ):
        self._session_factory = session_factory
        self._embedder = embedder
        self._search = search

    async def store_pdf(
        self,
        email_id: int,
        filename: str,
        text: str,
        content_type: str = "application/pdf",
        file_size: Optional[int] = None,
    ) -> EmailAttachment:
        if content_type != "application/pdf" and not filename.lower().endswith(".pdf"):
            raise ValidationError("Only PDF attachments are supported")

        content = clean_body(text or "", PDF_OPTIONS)
        async with self._session_factory() as db:
            if await db.get(Email, email_id) is None:
                raise NotFoundError("Email", email_id)

            embedding = None
            if content:
                try:
                    embedding = await self._embedder.embed(content)
                except UpstreamError as e:
                    logger.warning(f"Storing {filename} without embedding: {e}")

            attachment = EmailAttachment(
                email_id=email_id,
                filename=filename,
                content_type=content_type,
                file_size=file_size,
                content=content,
                embedding=embedding.vector if embedding else None,
                embedding_model=embedding.model if embedding else None,
            )
            db.add(attachment)
            await db.commit()

        logger.info(f"Stored PDF {filename} for email {email_id} ({len(content)} chars)")
        return attachment

    async def search_similar(
        self,
        query: str,
        actor: Actor,
        limit: int = 5,
        threshold: float = 0.5,
    ) -> list[SearchHit]:
        """PDFs similar to a free-text query. Empty when embeddings are disabled."""
        embedding = await self._embedder.embed(query)
        if embedding is None:
            return []
        scope = AttachmentScope(owner_user_id=None if actor.is_admin else actor.id)
        return await self._search.search(embedding.vector, embedding.model, scope, limit=limit, threshold=threshold)
