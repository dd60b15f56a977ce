"""Initial schema - tenants, conversations, follow-up rules and ledger, callbacks, handoff audit.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tenants
    op.create_table(
        "tenants",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, default=True),
        sa.Column("openai_api_key", sa.Text),
        sa.Column("reopen_with_agent", sa.Boolean, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Agents
    op.create_table(
        "agents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("kind", sa.String(20), default="primary"),
        sa.Column("is_active", sa.Boolean, default=True),
    )
    op.create_index("ix_agents_tenant_id", "agents", ["tenant_id"])

    # Contacts
    op.create_table(
        "contacts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("phone", sa.String(40), nullable=False),
    )
    op.create_index("ix_contacts_tenant_id", "contacts", ["tenant_id"])

    # Channel connections
    op.create_table(
        "channel_connections",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("provider", sa.String(20), default="evolution"),
        sa.Column("instance_name", sa.String(100)),
        sa.Column("token", sa.Text),
        sa.Column("meta_phone_number_id", sa.String(100)),
        sa.Column("meta_access_token", sa.Text),
    )
    op.create_index("ix_channel_connections_tenant_id", "channel_connections", ["tenant_id"])

    # Pipeline
    op.create_table(
        "stages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("followup_enabled", sa.Boolean, default=True),
    )
    op.create_table(
        "deals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("contact_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("contacts.id"), nullable=False),
        sa.Column("stage_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("stages.id")),
        sa.Column("status", sa.String(20), default="open"),
    )
    op.create_index("ix_deals_contact_status", "deals", ["contact_id", "status"])

    # Follow-up rules
    op.create_table(
        "followup_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agents.id")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("strategy", sa.String(30), default="fixed_text"),
        sa.Column("fixed_message", sa.Text),
        sa.Column("prompt", sa.Text),
        sa.Column("context_window", sa.Integer, default=10),
        sa.Column("trigger_minutes", sa.Integer, default=60),
        sa.Column("max_attempts", sa.Integer, default=3),
        sa.Column("min_interval_minutes", sa.Integer, default=1440),
        sa.Column("apply_to_agent_active", sa.Boolean, default=True),
        sa.Column("apply_to_human_owned", sa.Boolean, default=False),
        sa.Column("stage_ids", postgresql.JSONB),
        sa.Column("is_active", sa.Boolean, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_followup_rules_tenant_id", "followup_rules", ["tenant_id"])
    op.create_index("ix_followup_rules_active", "followup_rules", ["is_active"])

    # Conversations
    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("contact_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("contacts.id"), nullable=False),
        sa.Column("connection_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("channel_connections.id")),
        sa.Column("agent_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agents.id")),
        sa.Column("assigned_user_id", postgresql.UUID(as_uuid=True)),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("closed_at", sa.DateTime(timezone=True)),
        sa.Column("last_message_at", sa.DateTime(timezone=True)),
        sa.Column("last_message_direction", sa.String(10)),
        sa.Column("last_message_preview", sa.String(100)),
        sa.Column("unread_count", sa.Integer, default=0),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_conversations_tenant_id", "conversations", ["tenant_id"])
    op.create_index("ix_conversations_contact_id", "conversations", ["contact_id"])
    op.create_index("ix_conversations_scan", "conversations", ["tenant_id", "status", "last_message_at"])

    # Messages
    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("message_type", sa.String(20), default="text"),
        sa.Column("sent_by_agent", sa.Boolean, default=False),
        sa.Column("external_id", sa.String(255)),
        sa.Column("metadata", postgresql.JSONB, default={}),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_messages_conversation_created", "messages", ["conversation_id", "created_at"])

    # Follow-up attempt ledger
    op.create_table(
        "followup_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("followup_rules.id"), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("attempt_number", sa.Integer, nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("replied", sa.Boolean, default=False),
    )
    # Conditional write: a second writer of the same ordinal fails here
    op.create_index(
        "ix_followup_attempts_lineage",
        "followup_attempts",
        ["rule_id", "conversation_id", "attempt_number"],
        unique=True,
    )
    op.create_index("ix_followup_attempts_conversation_id", "followup_attempts", ["conversation_id"])

    # Scheduled callbacks
    op.create_table(
        "scheduled_callbacks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("contact_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("contacts.id")),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agents.id")),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(20), default="agent"),
        sa.Column("status", sa.String(20), default="pending"),
        sa.Column("reason", sa.Text),
        sa.Column("context", sa.Text),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("sent_message", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_scheduled_callbacks_conversation", "scheduled_callbacks", ["conversation_id", "status"])
    op.create_index("ix_scheduled_callbacks_due", "scheduled_callbacks", ["status", "scheduled_for"])

    # Handoff audit
    op.create_table(
        "handoff_transfers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("from_user_id", postgresql.UUID(as_uuid=True)),
        sa.Column("to_user_id", postgresql.UUID(as_uuid=True)),
        sa.Column("to_agent", sa.Boolean, default=False),
        sa.Column("to_agent_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agents.id")),
        sa.Column("reason", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_handoff_transfers_conversation_id", "handoff_transfers", ["conversation_id"])

    # Event log
    op.create_table(
        "event_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id")),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("conversations.id")),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), default="success"),
        sa.Column("message", sa.Text),
        sa.Column("data", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_events_conversation_id", "event_logs", ["conversation_id"])
    op.create_index("ix_events_action", "event_logs", ["action"])


def downgrade() -> None:
    for table in (
        "event_logs",
        "handoff_transfers",
        "scheduled_callbacks",
        "followup_attempts",
        "messages",
        "conversations",
        "followup_rules",
        "deals",
        "stages",
        "channel_connections",
        "contacts",
        "agents",
        "tenants",
    ):
        op.drop_table(table)
