"""
Follow-up rule - tenant-configured re-engagement policy.
Edited by the configuration UI; read-only for the scheduler.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base

STRATEGY_FIXED_TEXT = "fixed_text"
STRATEGY_MODEL_GENERATED = "model_generated"


class FollowupRule(Base):
    __tablename__ = "followup_rules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    agent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agents.id")
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Message strategy
    strategy: Mapped[str] = mapped_column(
        String(30), default=STRATEGY_FIXED_TEXT
    )  # fixed_text, model_generated
    fixed_message: Mapped[Optional[str]] = mapped_column(Text)
    prompt: Mapped[Optional[str]] = mapped_column(Text)
    context_window: Mapped[int] = mapped_column(Integer, default=10)

    # Timing (minutes)
    trigger_minutes: Mapped[int] = mapped_column(Integer, default=60)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    min_interval_minutes: Mapped[int] = mapped_column(Integer, default=1440)

    # Applicability
    apply_to_agent_active: Mapped[bool] = mapped_column(Boolean, default=True)
    apply_to_human_owned: Mapped[bool] = mapped_column(Boolean, default=False)
    stage_ids: Mapped[Optional[list]] = mapped_column(JSONB)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_followup_rules_tenant_id", "tenant_id"),
        Index("ix_followup_rules_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<FollowupRule {self.name} strategy={self.strategy}>"
