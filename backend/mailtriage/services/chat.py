"""Chat — retrieval-augmented answers over stored email and PDF content."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from mailtriage.actors import Actor
from mailtriage.errors import UpstreamError, ValidationError
from mailtriage.models.attachment import EmailAttachment
from mailtriage.services.embeddings import EmbeddingProvider
from mailtriage.services.llm import LLMClient
from mailtriage.services.normalizer import clean_body
from mailtriage.services.similarity import AttachmentScope, EmailScope, SearchHit, VectorSearch

logger = logging.getLogger(__name__)

NO_MATCH_ANSWER = (
    "I couldn't find any relevant information in your emails or documents to answer that question."
)

CHAT_PROMPT = """You are an assistant answering questions about the user's emails and documents.
Use ONLY the context below. If the context does not contain the answer, say so.
{history}
CONTEXT:
{context}

QUESTION: {question}

Answer concisely and mention which email or document the answer comes from."""

SNIPPET_CHARS = 1000


@dataclass
class ChatAnswer:
    answer: str
    query: str
    sources: list[dict] = field(default_factory=list)


class ChatService:

    def __init__(self, embedder: EmbeddingProvider, search: VectorSearch, llm: Optional[LLMClient]):
        self._embedder = embedder
        self._search = search
        self._llm = llm

    async def answer(
        self,
        question: str,
        actor: Actor,
        history: Optional[list[dict]] = None,
        threshold: float = 0.3,
        max_results: int = 5,
    ) -> ChatAnswer:
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question is required")

        hits = await self.retrieve(question, actor, threshold, max_results)
        if not hits:
            return ChatAnswer(answer=NO_MATCH_ANSWER, query=question)

        if self._llm is None:
            raise UpstreamError("No LLM provider configured for chat")

        prompt = CHAT_PROMPT.format(
            history=self._format_history(history or []),
            context=self._format_context(hits),
            question=question,
        )
        text = await self._llm.complete(prompt)
        return ChatAnswer(answer=text, query=question, sources=[self._source(hit) for hit in hits])

    async def retrieve(self, question: str, actor: Actor, threshold: float, max_results: int) -> list[SearchHit]:
        """Email and PDF hits for the question, merged and deduplicated, most similar first."""
        embedding = await self._embedder.embed(question)
        if embedding is None:
            logger.info("Embeddings disabled — chat has no retrieval context")
            return []

        owner = None if actor.is_admin else actor.id
        email_hits = await self._search.search(
            embedding.vector, embedding.model, EmailScope(owner_user_id=owner), limit=max_results, threshold=threshold,
        )
        pdf_hits = await self._search.search(
            embedding.vector, embedding.model, AttachmentScope(owner_user_id=owner), limit=max_results, threshold=threshold,
        )

        seen = set()
        merged = []
        for hit in sorted(email_hits + pdf_hits, key=lambda h: h.distance):
            key = (type(hit.entity).__name__, hit.entity.id)
            if key in seen:
                continue
            seen.add(key)
            merged.append(hit)
        return merged[:max_results]

    @staticmethod
    def _format_history(history: list[dict]) -> str:
        turns = [
            f"{turn.get('role', 'user').upper()}: {turn.get('content', '')}"
            for turn in history[-6:]
            if turn.get("content")
        ]
        if not turns:
            return ""
        return "\nCONVERSATION SO FAR:\n" + "\n".join(turns) + "\n"

    @staticmethod
    def _format_context(hits: list[SearchHit]) -> str:
        blocks = []
        email_n = pdf_n = 0
        for hit in hits:
            pct = f"{hit.similarity * 100:.1f}%"
            if isinstance(hit.entity, EmailAttachment):
                pdf_n += 1
                blocks.append(
                    f"--- PDF {pdf_n}: {hit.entity.filename} (Similarity: {pct}) ---\n"
                    f"{(hit.entity.content or '')[:SNIPPET_CHARS]}"
                )
            else:
                email_n += 1
                blocks.append(
                    f"--- Email {email_n} (Similarity: {pct}) ---\n"
                    f"From: {hit.entity.sender or 'unknown'}\n"
                    f"Subject: {hit.entity.subject or '(no subject)'}\n"
                    f"{clean_body(hit.entity.body or '')[:SNIPPET_CHARS]}"
                )
        return "\n\n".join(blocks)

    @staticmethod
    def _source(hit: SearchHit) -> dict:
        if isinstance(hit.entity, EmailAttachment):
            return {
                "type": "pdf",
                "id": hit.entity.id,
                "email_id": hit.entity.email_id,
                "filename": hit.entity.filename,
                "similarity": round(hit.similarity, 4),
            }
        return {
            "type": "email",
            "id": hit.entity.id,
            "subject": hit.entity.subject,
            "sender": hit.entity.sender,
            "similarity": round(hit.similarity, 4),
        }
