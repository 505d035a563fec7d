"""Messaging schema: users, threads, participants, messages, support cases, retention audits.

Revision ID: 0001_messaging_schema
Revises:
Create Date: 2026-10-19

Creates:
- users (minimal directory)
- message_threads, message_participants
- messages, message_attachments, message_read_receipts
- message_labels, message_thread_labels
- support_cases
- message_retention_audits
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_messaging_schema'
down_revision = None
branch_labels = None
depends_on = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _pk():
    return sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _ts(name, nullable=False):
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)


def _jsonb(name):
    return sa.Column(name, postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False)


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # users
    # ==========================================================================
    op.create_table(
        'users',
        _pk(),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('TRUE'), nullable=False),
        sa.Column('is_support_agent', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        _ts('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    # ==========================================================================
    # message_threads
    # ==========================================================================
    op.create_table(
        'message_threads',
        _pk(),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('channel_type', sa.String(32), nullable=False),
        sa.Column('state', sa.String(32), server_default=sa.text("'active'"), nullable=False),
        sa.Column('created_by', _uuid(), nullable=False),
        _jsonb('metadata'),
        _ts('last_message_at', nullable=True),
        sa.Column('last_message_preview', sa.String(500), nullable=True),
        sa.Column('retention_policy', sa.String(64), nullable=False),
        sa.Column('retention_days', sa.Integer(), nullable=False),
        _ts('retention_checked_at', nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "channel_type IN ('direct', 'group', 'support', 'project', 'contract')",
            name='ck_message_threads_channel_type',
        ),
        sa.CheckConstraint("state IN ('active', 'archived', 'locked')", name='ck_message_threads_state'),
    )
    op.create_index('idx_message_threads_last_message', 'message_threads', ['last_message_at'])
    op.create_index('idx_message_threads_retention', 'message_threads', ['retention_checked_at', 'updated_at'])
    op.create_index('idx_message_threads_channel_state', 'message_threads', ['channel_type', 'state'])

    # ==========================================================================
    # message_participants
    # ==========================================================================
    op.create_table(
        'message_participants',
        _pk(),
        sa.Column('thread_id', _uuid(), nullable=False),
        sa.Column('user_id', _uuid(), nullable=False),
        sa.Column('role', sa.String(32), server_default=sa.text("'participant'"), nullable=False),
        _ts('last_read_at', nullable=True),
        _ts('muted_until', nullable=True),
        sa.Column('notifications_enabled', sa.Boolean(), server_default=sa.text('TRUE'), nullable=False),
        _ts('created_at'),
        _ts('updated_at'),
        sa.ForeignKeyConstraint(['thread_id'], ['message_threads.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('thread_id', 'user_id', name='uq_message_participant_thread_user'),
    )
    op.create_index('idx_message_participants_user', 'message_participants', ['user_id'])

    # ==========================================================================
    # messages + attachments + read receipts
    # ==========================================================================
    op.create_table(
        'messages',
        _pk(),
        sa.Column('thread_id', _uuid(), nullable=False),
        sa.Column('sender_id', _uuid(), nullable=True),
        sa.Column('message_type', sa.String(32), server_default=sa.text("'text'"), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        _jsonb('metadata'),
        sa.Column('is_edited', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        _ts('delivered_at', nullable=True),
        _ts('read_at', nullable=True),
        _ts('deleted_at', nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
        sa.ForeignKeyConstraint(['thread_id'], ['message_threads.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_messages_thread_created', 'messages', ['thread_id', 'created_at'])
    op.create_index('idx_messages_created', 'messages', ['created_at'])

    op.create_table(
        'message_attachments',
        _pk(),
        sa.Column('message_id', _uuid(), nullable=False),
        sa.Column('position', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('mime_type', sa.String(150), nullable=False),
        sa.Column('file_size', sa.BigInteger(), server_default=sa.text('0'), nullable=False),
        sa.Column('storage_key', sa.String(512), nullable=False),
        sa.Column('checksum', sa.String(128), nullable=True),
        _ts('created_at'),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_message_attachments_message', 'message_attachments', ['message_id'])

    op.create_table(
        'message_read_receipts',
        _pk(),
        sa.Column('message_id', _uuid(), nullable=False),
        sa.Column('user_id', _uuid(), nullable=False),
        _ts('read_at'),
        sa.ForeignKeyConstraint(['message_id'], ['messages.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('message_id', 'user_id', name='uq_message_read_receipt'),
    )
    op.create_index('idx_message_read_receipts_user', 'message_read_receipts', ['user_id'])

    # ==========================================================================
    # labels
    # ==========================================================================
    op.create_table(
        'message_labels',
        _pk(),
        sa.Column('name', sa.String(80), nullable=False),
        sa.Column('slug', sa.String(96), nullable=False),
        sa.Column('color', sa.String(16), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by', _uuid(), nullable=True),
        _ts('created_at'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug', name='uq_message_labels_slug'),
    )

    op.create_table(
        'message_thread_labels',
        _pk(),
        sa.Column('thread_id', _uuid(), nullable=False),
        sa.Column('label_id', _uuid(), nullable=False),
        sa.Column('applied_by', _uuid(), nullable=True),
        _ts('created_at'),
        sa.ForeignKeyConstraint(['thread_id'], ['message_threads.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['label_id'], ['message_labels.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['applied_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('thread_id', 'label_id', name='uq_message_thread_label'),
    )

    # ==========================================================================
    # support_cases
    # ==========================================================================
    op.create_table(
        'support_cases',
        _pk(),
        sa.Column('thread_id', _uuid(), nullable=False),
        sa.Column('status', sa.String(32), server_default=sa.text("'triage'"), nullable=False),
        sa.Column('priority', sa.String(32), server_default=sa.text("'medium'"), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('escalated_by', _uuid(), nullable=True),
        _ts('escalated_at'),
        sa.Column('assigned_to', _uuid(), nullable=True),
        sa.Column('assigned_by', _uuid(), nullable=True),
        _ts('assigned_at', nullable=True),
        _ts('first_response_at', nullable=True),
        _ts('resolved_at', nullable=True),
        sa.Column('resolved_by', _uuid(), nullable=True),
        sa.Column('resolution_summary', sa.String(2000), nullable=True),
        _jsonb('metadata'),
        _ts('created_at'),
        _ts('updated_at'),
        sa.ForeignKeyConstraint(['thread_id'], ['message_threads.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['escalated_by'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['assigned_to'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['assigned_by'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['resolved_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('thread_id', name='uq_support_cases_thread'),
        sa.CheckConstraint(
            "status IN ('triage', 'in_progress', 'waiting_on_customer', 'resolved', 'closed')",
            name='ck_support_cases_status',
        ),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name='ck_support_cases_priority'),
    )
    op.create_index('idx_support_cases_status_priority', 'support_cases', ['status', 'priority'])
    op.create_index('idx_support_cases_assigned_to', 'support_cases', ['assigned_to'])

    # ==========================================================================
    # message_retention_audits (no FK to threads: the ledger outlives them)
    # ==========================================================================
    op.create_table(
        'message_retention_audits',
        _pk(),
        sa.Column('run_id', sa.String(64), nullable=False),
        sa.Column('thread_id', _uuid(), nullable=False),
        sa.Column('retention_policy', sa.String(64), nullable=False),
        sa.Column('retention_days', sa.Integer(), nullable=False),
        sa.Column('deleted_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('participant_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        _ts('cutoff_at'),
        sa.Column('is_override', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        _ts('retained_until'),
        _ts('archived_at', nullable=True),
        _ts('created_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_retention_audits_run', 'message_retention_audits', ['run_id'])
    op.create_index('idx_retention_audits_thread_created', 'message_retention_audits', ['thread_id', 'created_at'])
    op.create_index('idx_retention_audits_retained_until', 'message_retention_audits', ['retained_until'])
    op.create_index('idx_retention_audits_archived', 'message_retention_audits', ['archived_at'])


def downgrade() -> None:
    op.drop_table('message_retention_audits')
    op.drop_table('support_cases')
    op.drop_table('message_thread_labels')
    op.drop_table('message_labels')
    op.drop_table('message_read_receipts')
    op.drop_table('message_attachments')
    op.drop_table('messages')
    op.drop_table('message_participants')
    op.drop_table('message_threads')
    op.drop_table('users')
