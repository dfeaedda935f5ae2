"""Label models — label catalogue and email assignments."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Float, Boolean, Integer, DateTime, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailtriage.database import Base, utcnow


class Label(Base):
    __tablename__ = "labels"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    color: Mapped[Optional[str]] = mapped_column(String(16))
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by_user_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    assignments: Mapped[list["EmailLabel"]] = relationship(
        back_populates="label", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Label {self.id}: {self.name}{' (system)' if self.is_system else ''}>"


class EmailLabel(Base):
    __tablename__ = "email_labels"
    __table_args__ = (
        UniqueConstraint("email_id", "label_id", name="uq_email_label"),
        CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_email_label_confidence",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    email_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("emails.id", ondelete="CASCADE"), index=True
    )
    label_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("labels.id", ondelete="CASCADE"), index=True
    )
    assigned_by: Mapped[str] = mapped_column(String(16), default="ai")  # ai, user, admin, system
    confidence_score: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    label: Mapped["Label"] = relationship(back_populates="assignments")

    def __repr__(self):
        return f"<EmailLabel email={self.email_id} label={self.label_id} by={self.assigned_by}>"
