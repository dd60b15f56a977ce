"""
Follow-up attempt - durable proof that a rule-based follow-up was sent.
One lineage per (rule, conversation); attempt_number strictly increasing.
The unique index makes the insert a conditional write on the next ordinal.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Text, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base


class FollowupAttempt(Base):
    __tablename__ = "followup_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    rule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("followup_rules.id"), nullable=False
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    replied: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index(
            "ix_followup_attempts_lineage",
            "rule_id", "conversation_id", "attempt_number",
            unique=True,
        ),
        Index("ix_followup_attempts_conversation_id", "conversation_id"),
    )

    def __repr__(self) -> str:
        return f"<FollowupAttempt #{self.attempt_number} replied={self.replied}>"
