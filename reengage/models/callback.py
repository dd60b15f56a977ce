"""
Scheduled callback - a follow-up the agent promised ("talk to me tomorrow").
Created by the agent subsystem. While pending and agent-originated it
suppresses rule-based follow-ups for the conversation.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base

CALLBACK_PENDING = "pending"
CALLBACK_SENT = "sent"
CALLBACK_CANCELLED = "cancelled"

CREATED_BY_AGENT = "agent"
CREATED_BY_USER = "user"


class ScheduledCallback(Base):
    __tablename__ = "scheduled_callbacks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False
    )
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contacts.id")
    )
    agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agents.id")
    )

    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[str] = mapped_column(String(20), default=CREATED_BY_AGENT)  # agent, user
    status: Mapped[str] = mapped_column(
        String(20), default=CALLBACK_PENDING
    )  # pending, sent, cancelled

    reason: Mapped[Optional[str]] = mapped_column(Text)
    context: Mapped[Optional[str]] = mapped_column(Text)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sent_message: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_scheduled_callbacks_conversation", "conversation_id", "status"),
        Index("ix_scheduled_callbacks_due", "status", "scheduled_for"),
    )

    def __repr__(self) -> str:
        return f"<ScheduledCallback {self.status} at={self.scheduled_for}>"
