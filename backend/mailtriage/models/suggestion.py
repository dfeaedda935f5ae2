"""Label suggestion models — pending suggestions and their review trail."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Float, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mailtriage.database import Base, utcnow


class PendingLabelSuggestion(Base):
    __tablename__ = "pending_label_suggestions"
    __table_args__ = (
        CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_suggestion_confidence",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    email_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("emails.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    suggested_label_name: Mapped[str] = mapped_column(String(128), nullable=False)
    suggested_by: Mapped[str] = mapped_column(String(16), default="ai")  # ai, system, similarity, hybrid
    confidence_score: Mapped[Optional[float]] = mapped_column(Float)
    reasoning: Mapped[Optional[str]] = mapped_column(Text)

    # Status
    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)
    approved_by: Mapped[Optional[int]] = mapped_column(Integer)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<Suggestion {self.id}: {self.suggested_label_name} ({self.status})>"


class SuggestionAuditLog(Base):
    __tablename__ = "suggestion_audit_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    suggestion_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("pending_label_suggestions.id", ondelete="CASCADE"), index=True
    )
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_role: Mapped[str] = mapped_column(String(16), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    on_behalf_of_user_id: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<SuggestionAudit {self.suggestion_id}: {self.action} by {self.actor_id}>"
