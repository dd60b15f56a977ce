"""
Conversation model - one channel thread with a single contact.

Ownership:
  agent_active=True                      → the autonomous agent replies
  agent_active=False, assigned_user_id   → a human owns replies
  agent_active=False, no assignee        → unowned (treated as human-owned by rules)

Status lifecycle (see services/handoff.py):
  active → awaiting_reply (we sent, waiting on lead) → active (lead replied)
  active/awaiting_reply → closed (explicit close) → active (explicit reopen or lead writes)
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base

STATUS_ACTIVE = "active"
STATUS_AWAITING_REPLY = "awaiting_reply"
STATUS_CLOSED = "closed"
OPEN_STATUSES = (STATUS_ACTIVE, STATUS_AWAITING_REPLY)

DIRECTION_INBOUND = "inbound"
DIRECTION_OUTBOUND = "outbound"

PREVIEW_MAX_CHARS = 100


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("contacts.id"), nullable=False
    )
    connection_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("channel_connections.id")
    )

    # Ownership
    agent_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agents.id")
    )
    assigned_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), default=STATUS_ACTIVE, nullable=False
    )  # active, awaiting_reply, closed
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Summary of the latest chat message
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_message_direction: Mapped[Optional[str]] = mapped_column(String(10))  # inbound, outbound
    last_message_preview: Mapped[Optional[str]] = mapped_column(String(PREVIEW_MAX_CHARS))
    unread_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_conversations_tenant_id", "tenant_id"),
        Index("ix_conversations_contact_id", "contact_id"),
        Index("ix_conversations_scan", "tenant_id", "status", "last_message_at"),
    )

    @property
    def is_human_owned(self) -> bool:
        return not self.agent_active

    def __repr__(self) -> str:
        owner = "agent" if self.agent_active else f"human={self.assigned_user_id}"
        return f"<Conversation {self.status} {owner}>"
