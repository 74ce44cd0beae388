"""CRM Core Tables

Revision ID: 0001_crm_core_tables
Revises:
Create Date: 2026-10-19

Creates tables owned by the WhatsApp CRM core:
- crm_organizations: Tenants and their WhatsApp Business number
- crm_agents: Human agents
- crm_contacts: Customers, unique per (organization, phone)
- crm_conversations: Conversations, at most one active per contact
- crm_messages: Inbound and outbound messages
- crm_protocol_log / crm_agent_activity_log: Append-only audit
- crm_protocol_sequences: Per-day protocol counters
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = '0001_crm_core_tables'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade():
    # =========================================================================
    # ORGANIZATIONS
    # =========================================================================

    op.create_table(
        'crm_organizations',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('whatsapp_phone_number_id', sa.String(100), nullable=True),
        sa.Column('whatsapp_business_account_id', sa.String(100), nullable=True),
        sa.Column('whatsapp_access_token', sa.Text(), nullable=True),
        sa.Column('whatsapp_webhook_verify_token', sa.String(100), nullable=True),
        sa.Column('auto_reply_message', sa.Text(), nullable=True),
        sa.Column('sla_first_response_minutes', sa.Integer(), server_default='5', nullable=False),
        sa.Column('timezone', sa.String(64), server_default='America/Sao_Paulo', nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('whatsapp_phone_number_id', name='uq_crm_organizations_phone_number_id'),
    )

    # =========================================================================
    # AGENTS
    # =========================================================================

    op.create_table(
        'crm_agents',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('org_id', UUID(as_uuid=True), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('role', sa.String(20), server_default='agent', nullable=False),
        sa.Column('queue', sa.String(20), server_default='both', nullable=False),
        sa.Column('status', sa.String(20), server_default='offline', nullable=False),
        sa.Column('max_concurrent_chats', sa.Integer(), server_default='10', nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['org_id'], ['crm_organizations.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_crm_agents_org_status', 'crm_agents', ['org_id', 'status'])

    # =========================================================================
    # CONTACTS
    # =========================================================================

    op.create_table(
        'crm_contacts',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('org_id', UUID(as_uuid=True), nullable=False),
        sa.Column('phone', sa.String(32), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('profile_picture_url', sa.Text(), nullable=True),
        sa.Column('custom_fields', JSONB(), server_default='{}', nullable=False),
        sa.Column('tags', JSONB(), server_default='[]', nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['org_id'], ['crm_organizations.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('org_id', 'phone', name='uq_crm_contacts_org_phone'),
    )

    # =========================================================================
    # CONVERSATIONS
    # =========================================================================

    op.create_table(
        'crm_conversations',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('org_id', UUID(as_uuid=True), nullable=False),
        sa.Column('contact_id', UUID(as_uuid=True), nullable=False),
        sa.Column('assigned_agent_id', UUID(as_uuid=True), nullable=True),
        sa.Column('queue', sa.String(20), nullable=True),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('is_bot_active', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('current_flow_id', UUID(as_uuid=True), nullable=True),
        sa.Column('flow_variables', JSONB(), server_default='{}', nullable=False),
        sa.Column('tags', JSONB(), server_default='[]', nullable=False),
        sa.Column('classification', sa.String(50), nullable=True),
        sa.Column('protocol_number', sa.String(20), nullable=False),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_message_preview', sa.Text(), nullable=True),
        sa.Column('unread_count', sa.Integer(), server_default='0', nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['org_id'], ['crm_organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['contact_id'], ['crm_contacts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['assigned_agent_id'], ['crm_agents.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('protocol_number', name='uq_crm_conversations_protocol_number'),
    )
    op.create_index(
        'uq_crm_conversations_active_contact',
        'crm_conversations',
        ['contact_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'open', 'waiting')"),
    )
    op.create_index('idx_crm_conversations_org_status', 'crm_conversations', ['org_id', 'status'])
    op.create_index('idx_crm_conversations_agent_status', 'crm_conversations', ['assigned_agent_id', 'status'])
    op.create_index('idx_crm_conversations_org_last_message', 'crm_conversations', ['org_id', 'last_message_at'])

    # =========================================================================
    # MESSAGES
    # =========================================================================

    op.create_table(
        'crm_messages',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('conversation_id', UUID(as_uuid=True), nullable=False),
        sa.Column('sender_type', sa.String(20), nullable=False),
        sa.Column('sender_id', UUID(as_uuid=True), nullable=True),
        sa.Column('message_type', sa.String(20), server_default='text', nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('media_url', sa.Text(), nullable=True),
        sa.Column('media_mime_type', sa.String(100), nullable=True),
        sa.Column('media_filename', sa.String(255), nullable=True),
        sa.Column('template_name', sa.String(100), nullable=True),
        sa.Column('template_params', JSONB(), nullable=True),
        sa.Column('whatsapp_message_id', sa.String(128), nullable=True),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('reply_to_message_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['conversation_id'], ['crm_conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['reply_to_message_id'], ['crm_messages.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('whatsapp_message_id', name='uq_crm_messages_whatsapp_message_id'),
    )
    op.create_index('idx_crm_messages_conversation_created', 'crm_messages', ['conversation_id', 'created_at'])

    # =========================================================================
    # AUDIT
    # =========================================================================

    op.create_table(
        'crm_protocol_log',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('org_id', UUID(as_uuid=True), nullable=False),
        sa.Column('conversation_id', UUID(as_uuid=True), nullable=True),
        sa.Column('protocol_number', sa.String(20), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('agent_id', UUID(as_uuid=True), nullable=True),
        sa.Column('details', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['org_id'], ['crm_organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['conversation_id'], ['crm_conversations.id'], ondelete='SET NULL'),
    )
    op.create_index('idx_crm_protocol_log_conversation', 'crm_protocol_log', ['conversation_id'])
    op.create_index('idx_crm_protocol_log_protocol', 'crm_protocol_log', ['protocol_number'])

    op.create_table(
        'crm_agent_activity_log',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('org_id', UUID(as_uuid=True), nullable=False),
        sa.Column('agent_id', UUID(as_uuid=True), nullable=False),
        sa.Column('activity_type', sa.String(50), nullable=False),
        sa.Column('conversation_id', UUID(as_uuid=True), nullable=True),
        sa.Column('details', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['org_id'], ['crm_organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['agent_id'], ['crm_agents.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_crm_agent_activity_agent_created', 'crm_agent_activity_log', ['agent_id', 'created_at'])

    # =========================================================================
    # PROTOCOL SEQUENCES
    # =========================================================================

    op.create_table(
        'crm_protocol_sequences',
        sa.Column('day', sa.String(8), nullable=False),
        sa.Column('last_value', sa.Integer(), server_default='0', nullable=False),
        sa.PrimaryKeyConstraint('day'),
    )


def downgrade():
    op.drop_table('crm_protocol_sequences')
    op.drop_index('idx_crm_agent_activity_agent_created', table_name='crm_agent_activity_log')
    op.drop_table('crm_agent_activity_log')
    op.drop_index('idx_crm_protocol_log_protocol', table_name='crm_protocol_log')
    op.drop_index('idx_crm_protocol_log_conversation', table_name='crm_protocol_log')
    op.drop_table('crm_protocol_log')
    op.drop_index('idx_crm_messages_conversation_created', table_name='crm_messages')
    op.drop_table('crm_messages')
    op.drop_index('idx_crm_conversations_org_last_message', table_name='crm_conversations')
    op.drop_index('idx_crm_conversations_agent_status', table_name='crm_conversations')
    op.drop_index('idx_crm_conversations_org_status', table_name='crm_conversations')
    op.drop_index('uq_crm_conversations_active_contact', table_name='crm_conversations')
    op.drop_table('crm_conversations')
    op.drop_table('crm_contacts')
    op.drop_index('idx_crm_agents_org_status', table_name='crm_agents')
    op.drop_table('crm_agents')
    op.drop_table('crm_organizations')
