"""Vector similarity search — one nearest-neighbour primitive, parameterized by scope.

Candidates are filtered in SQL to a single embedding model tag and to the scope,
then ranked by cosine distance with numpy. Vectors produced by different models
never meet in the same distance computation.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np
from sqlalchemy import Select, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import contains_eager

from mailtriage.models.attachment import EmailAttachment
from mailtriage.models.email import Email, EmailAccount
from mailtriage.models.label import EmailLabel
from mailtriage.models.meta import EmailMeta

logger = logging.getLogger(__name__)

# Float slack so a similarity sitting exactly on the threshold is kept
_EPSILON = 1e-9


@dataclass
class SearchHit:
    entity: Any
    distance: float
    similarity: float


@dataclass(frozen=True)
class EmailScope:
    """Emails with a stored embedding, optionally narrowed by owner, label and classification."""

    owner_user_id: Optional[int] = None
    exclude_email_ids: tuple[int, ...] = ()
    without_label_id: Optional[int] = None
    classified_only: bool = False
    exclude_labels: tuple[str, ...] = ()

    def candidates(self, model_tag: str) -> Select:
        query = (
            select(Email, EmailMeta.embedding)
            .join(EmailMeta, EmailMeta.email_id == Email.id)
            .options(contains_eager(Email.meta))
            .where(
                EmailMeta.embedding_model == model_tag,
                EmailMeta.embedding.is_not(None),
            )
        )
        if self.owner_user_id is not None:
            query = query.join(EmailAccount, EmailAccount.id == Email.account_id).where(
                EmailAccount.user_id == self.owner_user_id
            )
        if self.exclude_email_ids:
            query = query.where(Email.id.not_in(self.exclude_email_ids))
        if self.without_label_id is not None:
            query = query.where(
                ~exists().where(
                    EmailLabel.email_id == Email.id,
                    EmailLabel.label_id == self.without_label_id,
                )
            )
        if self.classified_only:
            query = query.where(EmailMeta.suggested_label.is_not(None))
        if self.exclude_labels:
            query = query.where(
                or_(
                    EmailMeta.suggested_label.is_(None),
                    EmailMeta.suggested_label.not_in(self.exclude_labels),
                )
            )
        return query


@dataclass(frozen=True)
class AttachmentScope:
    """PDF attachments with a stored embedding, optionally limited to one owner's mail."""

    owner_user_id: Optional[int] = None

    def candidates(self, model_tag: str) -> Select:
        query = select(EmailAttachment, EmailAttachment.embedding).where(
            EmailAttachment.embedding_model == model_tag,
            EmailAttachment.embedding.is_not(None),
        )
        if self.owner_user_id is not None:
            query = (
                query.join(Email, Email.id == EmailAttachment.email_id)
                .join(EmailAccount, EmailAccount.id == Email.account_id)
                .where(EmailAccount.user_id == self.owner_user_id)
            )
        return query


def rank(
    query_vector: Sequence[float],
    rows: Sequence[tuple[Any, Sequence[float]]],
    limit: int,
    threshold: float,
) -> list[SearchHit]:
    """Rank (entity, vector) rows by cosine distance to the query vector."""
    query = np.asarray(query_vector, dtype=float)
    query_norm = np.linalg.norm(query)
    if query.ndim != 1 or query_norm == 0:
        return []

    entities = []
    vectors = []
    skipped = 0
    for entity, vector in rows:
        if not vector or len(vector) != query.shape[0]:
            skipped += 1
            continue
        entities.append(entity)
        vectors.append(vector)
    if skipped:
        logger.warning(f"Skipped {skipped} candidates with missing or mismatched embedding dimensions")
    if not vectors:
        return []

    matrix = np.asarray(vectors, dtype=float)
    norms = np.linalg.norm(matrix, axis=1)
    valid = norms > 0
    cosine = np.zeros(len(vectors))
    cosine[valid] = (matrix[valid] @ query) / (norms[valid] * query_norm)
    distances = 1.0 - cosine

    max_distance = 1.0 - threshold + _EPSILON
    hits = [
        SearchHit(entity=entities[i], distance=float(distances[i]), similarity=1.0 - float(distances[i]))
        for i in range(len(entities))
        if valid[i] and distances[i] <= max_distance
    ]
    hits.sort(key=lambda hit: (hit.distance, getattr(hit.entity, "id", 0)))
    return hits[:limit]


class VectorSearch:
    """Nearest-neighbour search over stored email and attachment embeddings."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def search(
        self,
        query_vector: Sequence[float],
        model_tag: str,
        scope,
        limit: int = 5,
        threshold: float = 0.7,
        db: Optional[AsyncSession] = None,
    ) -> list[SearchHit]:
        """Return hits with similarity >= threshold, most similar first."""
        if not query_vector or not model_tag or limit <= 0:
            return []

        if db is None:
            async with self._session_factory() as session:
                rows = (await session.execute(scope.candidates(model_tag))).all()
        else:
            rows = (await db.execute(scope.candidates(model_tag))).all()

        hits = rank(query_vector, [(row[0], row[1]) for row in rows], limit, threshold)
        logger.debug(f"Vector search ({type(scope).__name__}, {model_tag}): {len(rows)} candidates, {len(hits)} hits")
        return hits
