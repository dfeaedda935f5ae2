"""Email meta model — one classification row per email."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Float, Boolean, Integer, DateTime, JSON, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailtriage.database import Base, utcnow


class EmailMeta(Base):
    __tablename__ = "email_meta"
    __table_args__ = (
        CheckConstraint(
            "label_confidence IS NULL OR (label_confidence >= 0 AND label_confidence <= 1)",
            name="ck_email_meta_confidence",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    email_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("emails.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # Flags
    is_hierarchy: Mapped[bool] = mapped_column(Boolean, default=False)
    is_client: Mapped[bool] = mapped_column(Boolean, default=False)
    is_meeting: Mapped[bool] = mapped_column(Boolean, default=False)
    is_escalation: Mapped[bool] = mapped_column(Boolean, default=False)
    is_urgent: Mapped[bool] = mapped_column(Boolean, default=False)

    suggested_label: Mapped[Optional[str]] = mapped_column(String(128))
    label_confidence: Mapped[Optional[float]] = mapped_column(Float)
    method_used: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    fingerprint: Mapped[Optional[str]] = mapped_column(String(64), index=True)

    # Raw model output, reasoning and tiers consulted
    classification: Mapped[Optional[dict]] = mapped_column(JSON)
    reasoning: Mapped[Optional[str]] = mapped_column(Text)

    embedding: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True))
    embedding_model: Mapped[Optional[str]] = mapped_column(String(128), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    email: Mapped["Email"] = relationship(back_populates="meta")

    def __repr__(self):
        return f"<EmailMeta {self.email_id}: {self.method_used} ({self.suggested_label})>"
