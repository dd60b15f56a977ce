"""
Tenant model - one CRM account. Owns rules, conversations and credentials.
The tenant's own OpenAI key is the primary generation credential.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Boolean, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from reengage.database import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Fernet-encrypted (see utils/encryption.py)
    openai_api_key: Mapped[Optional[str]] = mapped_column(Text)

    # Closed conversation receiving an inbound message: reopen with the
    # primary agent (True) or with a human (False)
    reopen_with_agent: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<Tenant {self.name}>"
