"""
Handoff transfer - audit row for every ownership change of a conversation.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base


class HandoffTransfer(Base):
    __tablename__ = "handoff_transfers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False
    )
    from_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    to_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    to_agent: Mapped[bool] = mapped_column(Boolean, default=False)
    to_agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agents.id")
    )
    reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_handoff_transfers_conversation_id", "conversation_id"),
    )
