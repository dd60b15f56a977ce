"""
Request/response schemas for the handoff API.
"""
import uuid
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class TransferRequest(BaseModel):
    """Move reply ownership to the agent or to a human."""
    to_agent: bool = False
    to_agent_id: Optional[uuid.UUID] = None
    to_user_id: Optional[uuid.UUID] = None
    from_user_id: Optional[uuid.UUID] = None
    from_user_name: Optional[str] = None
    to_name: Optional[str] = Field(default=None, description="Display name of the new owner")

    @model_validator(mode="after")
    def _one_target(self):
        if not (self.to_agent or self.to_agent_id or self.to_user_id):
            raise ValueError("Transfer needs to_agent, to_agent_id or to_user_id")
        if (self.to_agent or self.to_agent_id) and self.to_user_id:
            raise ValueError("Transfer to an agent and a user at the same time")
        return self


class AgentToggleRequest(BaseModel):
    active: bool


class ConversationState(BaseModel):
    id: uuid.UUID
    status: str
    agent_active: bool
    agent_id: Optional[uuid.UUID] = None
    assigned_user_id: Optional[uuid.UUID] = None
