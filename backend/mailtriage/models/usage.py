"""Classification usage model — one row per cascade outcome."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from mailtriage.database import Base, utcnow


class ClassificationUsage(Base):
    __tablename__ = "classification_usage"

    id: Mapped[int] = mapped_column(primary_key=True)
    email_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("emails.id", ondelete="SET NULL"), index=True
    )
    method: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    estimated_tokens: Mapped[int] = mapped_column(Integer, default=0)
    tokens_saved: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self):
        return f"<Usage {self.id}: {self.method} tokens={self.estimated_tokens} saved={self.tokens_saved}>"
