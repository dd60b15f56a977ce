"""
Generation credentials in two tiers: the tenant's own key first,
the platform-wide key second. Injected into the composer so tests and
scripts can swap either tier.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.tenant import Tenant
from reengage.utils.encryption import decrypt_value

logger = logging.getLogger(__name__)


class CredentialResolver:
    """Resolves generation API keys. Tenant keys are decrypted once per run."""

    def __init__(
        self,
        platform_key: Optional[str] = None,
        tenant_keys: Optional[dict] = None,
    ):
        self._platform_key = platform_key or None
        self._tenant_keys: dict[uuid.UUID, Optional[str]] = dict(tenant_keys or {})

    @classmethod
    def from_settings(cls) -> "CredentialResolver":
        from reengage.config import get_settings
        return cls(platform_key=get_settings().ai_platform_api_key)

    async def load_tenant(self, db: AsyncSession, tenant_id: uuid.UUID) -> Optional[str]:
        """Read and decrypt the tenant key. Cached for the resolver's lifetime."""
        if tenant_id in self._tenant_keys:
            return self._tenant_keys[tenant_id]

        result = await db.execute(
            select(Tenant.openai_api_key).where(Tenant.id == tenant_id)
        )
        encrypted = result.scalar_one_or_none()
        key = decrypt_value(encrypted) if encrypted else None
        if not key:
            logger.debug("Tenant %s has no generation key", str(tenant_id)[:8])
        self._tenant_keys[tenant_id] = key or None
        return self._tenant_keys[tenant_id]

    def tenant_credential(self, tenant_id: uuid.UUID) -> Optional[str]:
        return self._tenant_keys.get(tenant_id)

    def platform_fallback_credential(self) -> Optional[str]:
        return self._platform_key
