"""create_greeting_tables

Revision ID: 3f1c2b7a9d10
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2b7a9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'greeting_events',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('actor', sa.String(), nullable=False),
        sa.Column('recipient', sa.String(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.BigInteger(), nullable=False),
        sa.Column('contract_last_seen', sa.BigInteger(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_greeting_events_actor', 'greeting_events', ['actor'])
    op.create_index('ix_greeting_events_recipient', 'greeting_events', ['recipient'])
    op.create_index('ix_greeting_events_block_number', 'greeting_events', ['block_number'])
    op.create_index('ix_greeting_events_occurred_at', 'greeting_events', ['occurred_at'])
    op.create_index('ix_greeting_events_block_log', 'greeting_events', ['block_number', 'log_index'])

    op.create_table(
        'sync_cursors',
        sa.Column('key', sa.String(), primary_key=True),
        sa.Column('last_indexed_block', sa.BigInteger(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('lease_owner', sa.String(), nullable=True),
        sa.Column('lease_expires_at', sa.BigInteger(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'profiles',
        sa.Column('address', sa.String(), primary_key=True),
        sa.Column('username', sa.String(), nullable=True),
        sa.Column('twitter_username', sa.String(), nullable=True),
        sa.Column('discord_username', sa.String(), nullable=True),
        sa.Column('bio', sa.String(), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('profiles')
    op.drop_table('sync_cursors')
    op.drop_index('ix_greeting_events_block_log', table_name='greeting_events')
    op.drop_index('ix_greeting_events_occurred_at', table_name='greeting_events')
    op.drop_index('ix_greeting_events_block_number', table_name='greeting_events')
    op.drop_index('ix_greeting_events_recipient', table_name='greeting_events')
    op.drop_index('ix_greeting_events_actor', table_name='greeting_events')
    op.drop_table('greeting_events')
