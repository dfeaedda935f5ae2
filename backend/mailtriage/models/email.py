"""Email and account models — ingested mail and who owns it."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Boolean, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mailtriage.database import Base, utcnow


class EmailAccount(Base):
    __tablename__ = "email_accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    email_address: Mapped[str] = mapped_column(String(256), nullable=False)
    enable_ai_labeling: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    emails: Mapped[list["Email"]] = relationship(back_populates="account")

    def __repr__(self):
        return f"<EmailAccount {self.id}: {self.email_address} (user {self.user_id})>"


class Email(Base):
    __tablename__ = "emails"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("email_accounts.id", ondelete="CASCADE"), index=True
    )
    message_id: Mapped[Optional[str]] = mapped_column(String(512), unique=True, index=True)

    sender: Mapped[Optional[str]] = mapped_column(String(256), index=True)
    sender_name: Mapped[Optional[str]] = mapped_column(String(256))
    subject: Mapped[Optional[str]] = mapped_column(Text)
    body: Mapped[Optional[str]] = mapped_column(Text)

    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Relationships
    account: Mapped["EmailAccount"] = relationship(back_populates="emails")
    meta: Mapped[Optional["EmailMeta"]] = relationship(
        back_populates="email", cascade="all, delete-orphan", uselist=False
    )

    def __repr__(self):
        return f"<Email {self.id}: {self.subject[:50] if self.subject else '(no subject)'}>"
