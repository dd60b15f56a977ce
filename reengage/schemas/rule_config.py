"""
Validated view of a follow-up rule row.
A rule that fails validation is a configuration error: the scheduler skips it.
"""
import uuid
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuleConfig(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    agent_id: Optional[uuid.UUID] = None
    name: str = ""

    strategy: Literal["fixed_text", "model_generated"]
    fixed_message: Optional[str] = None
    prompt: Optional[str] = None
    context_window: int = Field(default=10, ge=1, le=100)

    trigger_minutes: int = Field(..., gt=0)
    max_attempts: int = Field(..., ge=1)
    min_interval_minutes: int = Field(..., ge=0)

    apply_to_agent_active: bool = True
    apply_to_human_owned: bool = False
    stage_ids: list[uuid.UUID] = Field(default_factory=list)

    @field_validator("stage_ids", mode="before")
    @classmethod
    def _null_stage_ids(cls, value):
        return value or []

    @property
    def matches_any_ownership(self) -> bool:
        return self.apply_to_agent_active or self.apply_to_human_owned
