"""
Channel connection - a WhatsApp (Evolution or Meta Cloud) or Instagram account.
Tokens are Fernet-encrypted at rest.
"""
import uuid
from typing import Optional
from sqlalchemy import String, Text, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base


class ChannelConnection(Base):
    __tablename__ = "channel_connections"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    provider: Mapped[str] = mapped_column(
        String(20), default="evolution"
    )  # evolution, meta, instagram

    # Evolution API
    instance_name: Mapped[Optional[str]] = mapped_column(String(100))
    token: Mapped[Optional[str]] = mapped_column(Text)

    # Meta Cloud API / Instagram Graph API
    meta_phone_number_id: Mapped[Optional[str]] = mapped_column(String(100))
    meta_access_token: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_channel_connections_tenant_id", "tenant_id"),
    )

    def __repr__(self) -> str:
        return f"<ChannelConnection {self.provider} {self.instance_name or self.meta_phone_number_id}>"
