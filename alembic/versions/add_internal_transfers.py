"""add internal_transfers table

Revision ID: add_internal_transfers
Revises: initial_goal_stack_schema
Create Date: 2025-11-14

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'add_internal_transfers'
down_revision = 'initial_goal_stack_schema'
branch_labels = None
depends_on = None

internal_transfer_state = postgresql.ENUM(
    'PREPARED', 'SUBMITTED', 'CONFIRMED', 'FAILED', name='internal_transfer_state', create_type=False
)

def upgrade():
    internal_transfer_state.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'internal_transfers',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('batch_id', sa.String(64), nullable=False),
        sa.Column('admin_user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source_user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=True),
        sa.Column('source_address', sa.String(64), nullable=False),
        sa.Column('destination_address', sa.String(64), nullable=False),
        sa.Column('lamports', sa.BigInteger, nullable=False),
        sa.Column('memo', sa.String(255), nullable=True),
        sa.Column('signature', sa.String(128), nullable=True),
        sa.Column('state', internal_transfer_state, nullable=False, server_default='PREPARED'),
        sa.Column('meta', sa.JSON, nullable=False, server_default=sa.text("'{}'")),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('batch_id', name='uq_internal_transfers_batch_id'),
    )
    op.create_index('ix_internal_transfers_admin_user_id', 'internal_transfers', ['admin_user_id'])
    op.create_index('ix_internal_transfers_source_user_id', 'internal_transfers', ['source_user_id'])
    op.create_index('ix_internal_transfers_state', 'internal_transfers', ['state'])
    op.create_index('ix_internal_transfers_created_at', 'internal_transfers', ['created_at'])

def downgrade():
    op.drop_index('ix_internal_transfers_created_at', table_name='internal_transfers')
    op.drop_index('ix_internal_transfers_state', table_name='internal_transfers')
    op.drop_index('ix_internal_transfers_source_user_id', table_name='internal_transfers')
    op.drop_index('ix_internal_transfers_admin_user_id', table_name='internal_transfers')
    op.drop_table('internal_transfers')
    internal_transfer_state.drop(op.get_bind(), checkfirst=True)
