"""create_outbox

Revision ID: 7c1e2f9a4b3d
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '7c1e2f9a4b3d'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the outbox table, its sequence and the fallback counter."""
    bind = op.get_bind()
    is_postgres = bind.dialect.name == 'postgresql'

    if bind.dialect.supports_sequences:
        op.execute(sa.schema.CreateSequence(sa.Sequence('outbox_sequence_seq', start=1, increment=1)))

    op.create_table(
        'outbox',
        sa.Column('id', sa.String(length=36), nullable=False, comment='Client-generated UUID'),
        sa.Column('message_type', sa.String(length=10), nullable=False, comment='EVENT or TASK'),

        # Ownership
        sa.Column('aggregate_type', sa.String(length=255), nullable=False),
        sa.Column('aggregate_id', sa.String(length=255), nullable=False),

        # Message
        sa.Column('event_type', sa.String(length=255), nullable=False),
        sa.Column('event_payload', sa.Text(), nullable=False),
        sa.Column('topic', sa.String(length=255), nullable=False),
        sa.Column('routing_key', sa.String(length=255), nullable=False),

        # Delivery state
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sequence_number', sa.BigInteger(), nullable=False),

        sa.PrimaryKeyConstraint('id', name=op.f('pk_outbox')),
        sa.UniqueConstraint('sequence_number', name=op.f('uq_outbox_sequence_number')),
        sa.CheckConstraint("message_type IN ('EVENT', 'TASK')", name=op.f('ck_outbox_message_type')),
    )

    op.create_table(
        'outbox_sequence',
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('value', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('name', name=op.f('pk_outbox_sequence')),
    )

    op.create_index('idx_outbox_cleanup', 'outbox', ['published_at'], unique=False)
    op.create_index('idx_outbox_aggregate', 'outbox', ['aggregate_type', 'aggregate_id'], unique=False)
    op.create_index('idx_outbox_message_type', 'outbox', ['message_type'], unique=False)
    op.create_index('idx_outbox_event_type', 'outbox', ['event_type'], unique=False)

    # Note: PostgreSQL partial indexes require raw SQL
    if is_postgres:
        op.execute("""
            CREATE INDEX idx_outbox_unpublished
            ON outbox (sequence_number, next_retry_at)
            WHERE published_at IS NULL
        """)
        op.execute("""
            CREATE INDEX idx_outbox_failed
            ON outbox (retry_count, created_at)
            WHERE published_at IS NULL
        """)
    else:
        op.create_index('idx_outbox_unpublished', 'outbox', ['sequence_number', 'next_retry_at'], unique=False)
        op.create_index('idx_outbox_failed', 'outbox', ['retry_count', 'created_at'], unique=False)


def downgrade() -> None:
    """Drop the outbox table, counter and sequence."""
    bind = op.get_bind()

    op.execute("DROP INDEX IF EXISTS idx_outbox_failed")
    op.execute("DROP INDEX IF EXISTS idx_outbox_unpublished")
    op.drop_index('idx_outbox_event_type', table_name='outbox')
    op.drop_index('idx_outbox_message_type', table_name='outbox')
    op.drop_index('idx_outbox_aggregate', table_name='outbox')
    op.drop_index('idx_outbox_cleanup', table_name='outbox')

    op.drop_table('outbox_sequence')
    op.drop_table('outbox')

    if bind.dialect.supports_sequences:
        op.execute(sa.schema.DropSequence(sa.Sequence('outbox_sequence_seq')))
