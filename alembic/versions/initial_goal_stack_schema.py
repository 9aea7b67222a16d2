"""initial goal stack schema: users, goals, transactions

Revision ID: initial_goal_stack_schema
Revises:
Create Date: 2025-11-10

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'initial_goal_stack_schema'
down_revision = None
branch_labels = None
depends_on = None

goal_status = postgresql.ENUM('ACTIVE', 'PAUSED', 'COMPLETED', name='goal_status', create_type=False)
goal_frequency = postgresql.ENUM('DAILY', 'WEEKLY', 'MONTHLY', name='goal_frequency', create_type=False)
transaction_kind = postgresql.ENUM('DEPOSIT_SIMULATION', 'INTERMEDIATE_SWAP', 'SWAP', name='transaction_kind', create_type=False)
transaction_state = postgresql.ENUM('PREPARED', 'SUBMITTED', 'CONFIRMED', 'FAILED', name='transaction_state', create_type=False)

def upgrade():
    bind = op.get_bind()
    for enum_type in (goal_status, goal_frequency, transaction_kind, transaction_state):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String, nullable=False),
        sa.Column('full_name', sa.String, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('is_superuser', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('wallet_address', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'goals',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('asset_symbol', sa.String(16), nullable=False),
        sa.Column('target_amount', sa.Float, nullable=False),
        sa.Column('invested_amount', sa.Float, nullable=False, server_default='0'),
        sa.Column('amount_per_interval', sa.Float, nullable=False),
        sa.Column('frequency', goal_frequency, nullable=False),
        sa.Column('status', goal_status, nullable=False, server_default='ACTIVE'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_goals_user_id', 'goals', ['user_id'])

    op.create_table(
        'transactions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('goal_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('goals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('batch_id', sa.String(64), nullable=False),
        sa.Column('kind', transaction_kind, nullable=False),
        sa.Column('state', transaction_state, nullable=False, server_default='PREPARED'),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('network', sa.String(16), nullable=False),
        sa.Column('tx_hash', sa.String(128), nullable=True),
        sa.Column('amount_usd', sa.Float, nullable=True),
        sa.Column('amount_asset', sa.Float, nullable=True),
        sa.Column('asset_mint', sa.String(64), nullable=True),
        sa.Column('meta', sa.JSON, nullable=False, server_default=sa.text("'{}'")),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('batch_id', 'kind', name='uq_transactions_batch_kind'),
    )
    op.create_index('ix_transactions_goal_id', 'transactions', ['goal_id'])
    op.create_index('ix_transactions_batch_id', 'transactions', ['batch_id'])

def downgrade():
    op.drop_index('ix_transactions_batch_id', table_name='transactions')
    op.drop_index('ix_transactions_goal_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('ix_goals_user_id', table_name='goals')
    op.drop_table('goals')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (transaction_state, transaction_kind, goal_frequency, goal_status):
        enum_type.drop(bind, checkfirst=True)
