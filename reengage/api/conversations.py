"""
Handoff API - ownership and lifecycle changes driven by CRM users.

- POST /api/v1/conversations/{id}/transfer
- POST /api/v1/conversations/{id}/agent    (pause / resume the agent)
- POST /api/v1/conversations/{id}/close
- POST /api/v1/conversations/{id}/reopen
"""
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from reengage.api.security import require_cron_secret
from reengage.database import get_db
from reengage.models.conversation import Conversation
from reengage.schemas.handoff import TransferRequest, AgentToggleRequest, ConversationState
from reengage.services import handoff
from reengage.services.handoff import InvalidTransitionError, ConversationNotFoundError
from reengage.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/conversations",
    tags=["conversations"],
    dependencies=[Depends(require_cron_secret)],
)


def _state(conversation: Conversation) -> ConversationState:
    return ConversationState(
        id=conversation.id,
        status=conversation.status,
        agent_active=conversation.agent_active,
        agent_id=conversation.agent_id,
        assigned_user_id=conversation.assigned_user_id,
    )


async def _run(operation, *args) -> ConversationState:
    try:
        conversation = await operation(*args)
    except ConversationNotFoundError:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LockTimeoutError:
        raise HTTPException(status_code=423, detail="Conversation is busy, retry shortly")
    return _state(conversation)


@router.post("/{conversation_id}/transfer", response_model=ConversationState)
async def transfer_conversation(
    conversation_id: uuid.UUID,
    payload: TransferRequest,
    db: AsyncSession = Depends(get_db),
):
    return await _run(handoff.transfer, db, conversation_id, payload)


@router.post("/{conversation_id}/agent", response_model=ConversationState)
async def toggle_agent(
    conversation_id: uuid.UUID,
    payload: AgentToggleRequest,
    db: AsyncSession = Depends(get_db),
):
    return await _run(handoff.set_agent_active, db, conversation_id, payload.active)


@router.post("/{conversation_id}/close", response_model=ConversationState)
async def close_conversation(
    conversation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await _run(handoff.close_conversation, db, conversation_id)


@router.post("/{conversation_id}/reopen", response_model=ConversationState)
async def reopen_conversation(
    conversation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await _run(handoff.reopen_conversation, db, conversation_id)
