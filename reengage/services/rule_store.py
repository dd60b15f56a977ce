"""
Rule store - loads active follow-up rules and validates them.
A rule that fails validation is skipped for the run; the others continue.
"""
import logging

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.models.rule import FollowupRule
from reengage.models.tenant import Tenant
from reengage.schemas.rule_config import RuleConfig

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """A rule's stored configuration cannot be used."""
    pass


async def load_active_rules(db: AsyncSession) -> list[FollowupRule]:
    """Active rules of active tenants, in a stable order. DB errors propagate."""
    result = await db.execute(
        select(FollowupRule)
        .join(Tenant, Tenant.id == FollowupRule.tenant_id)
        .where(
            FollowupRule.is_active == True,  # noqa: E712
            Tenant.is_active == True,  # noqa: E712
        )
        .order_by(FollowupRule.created_at, FollowupRule.id)
    )
    return list(result.scalars().all())


def validate_rule(rule: FollowupRule) -> RuleConfig:
    """Raises ConfigurationError with the offending fields."""
    try:
        return RuleConfig.model_validate(rule)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(p) for p in err["loc"]) or "rule" for err in e.errors()
        )
        raise ConfigurationError(f"Rule {rule.id} has invalid configuration: {fields}") from e
