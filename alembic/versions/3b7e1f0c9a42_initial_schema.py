"""initial_schema

Revision ID: 3b7e1f0c9a42
Revises:
Create Date: 2026-10-18 09:00:00.000000

Tables: users, reminders, call_logs.
call_logs carries the (external_call_id, provider) unique constraint used as
the webhook idempotency key.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b7e1f0c9a42'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table('reminders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('phone_number', sa.String(length=20), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.Enum('scheduled', 'processing', 'called', 'failed', name='reminderstatus'), nullable=False),
        sa.Column('external_call_id', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_reminders_user_id'), 'reminders', ['user_id'], unique=False)
    op.create_index(op.f('ix_reminders_external_call_id'), 'reminders', ['external_call_id'], unique=False)
    op.create_index('ix_reminders_status_scheduled_at', 'reminders', ['status', 'scheduled_at'], unique=False)

    op.create_table('call_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('reminder_id', sa.Uuid(), nullable=False),
        sa.Column('external_call_id', sa.String(length=100), nullable=False),
        sa.Column('provider', sa.Enum('telephony', 'voice-ai', name='callprovider'), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['reminder_id'], ['reminders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_call_id', 'provider', name='uq_call_logs_external_call_id_provider')
    )
    op.create_index(op.f('ix_call_logs_reminder_id'), 'call_logs', ['reminder_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_call_logs_reminder_id'), table_name='call_logs')
    op.drop_table('call_logs')

    op.drop_index('ix_reminders_status_scheduled_at', table_name='reminders')
    op.drop_index(op.f('ix_reminders_external_call_id'), table_name='reminders')
    op.drop_index(op.f('ix_reminders_user_id'), table_name='reminders')
    op.drop_table('reminders')

    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')

    op.execute('DROP TYPE IF EXISTS callprovider')
    op.execute('DROP TYPE IF EXISTS reminderstatus')
