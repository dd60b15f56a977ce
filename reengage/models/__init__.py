"""
Database models - import all models here so Alembic can discover them.
"""
from reengage.models.tenant import Tenant
from reengage.models.agent import Agent
from reengage.models.contact import Contact
from reengage.models.connection import ChannelConnection
from reengage.models.rule import FollowupRule
from reengage.models.conversation import Conversation
from reengage.models.message import Message
from reengage.models.attempt import FollowupAttempt
from reengage.models.callback import ScheduledCallback
from reengage.models.pipeline import Stage, Deal
from reengage.models.handoff import HandoffTransfer
from reengage.models.event_log import EventLog

__all__ = [
    "Tenant",
    "Agent",
    "Contact",
    "ChannelConnection",
    "FollowupRule",
    "Conversation",
    "Message",
    "FollowupAttempt",
    "ScheduledCallback",
    "Stage",
    "Deal",
    "HandoffTransfer",
    "EventLog",
]
