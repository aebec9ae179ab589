"""Initial revenue schema

Revision ID: 001
Revises:
Create Date: 2024-06-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(28, 8)


def upgrade() -> None:
    # Platform registry
    op.create_table('trading_platforms',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='Owner user id'),
        sa.Column('name', sa.String(length=120), nullable=False, comment='Display name'),
        sa.Column('slug', sa.String(length=120), nullable=False, comment='URL slug'),
        sa.Column('owner_wallet_address', sa.String(length=42), nullable=True, comment='Wallet whose fills are attributed to this platform'),
        sa.Column('payout_wallet_address', sa.String(length=42), nullable=True, comment='Recipient of revenue-share payouts (defaults to owner wallet)'),
        sa.Column('is_active', sa.Boolean(), nullable=False, comment='Inactive platforms are skipped by ingestion'),
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Row creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last modification time (UTC)'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )
    op.create_index('ix_trading_platforms_user_id', 'trading_platforms', ['user_id'])
    op.create_index('ix_trading_platforms_created_at', 'trading_platforms', ['created_at'])
    op.create_index('idx_trading_platforms_active', 'trading_platforms', ['is_active'])

    # Fee ledger
    op.create_table('fee_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('platform_id', sa.Integer(), nullable=False, comment='Platform the fee is attributed to'),
        sa.Column('trade_id', sa.String(length=100), nullable=False, comment='Venue trade id (dedup key together with platform_id)'),
        sa.Column('trade_type', sa.String(length=10), nullable=False, comment='spot or perp'),
        sa.Column('coin', sa.String(length=40), nullable=True, comment='Venue market symbol'),
        sa.Column('side', sa.String(length=10), nullable=True, comment='buy or sell'),
        sa.Column('is_maker', sa.Boolean(), nullable=False, comment='Maker side of the fill'),
        sa.Column('trade_volume', MONEY, nullable=False, comment='size * price'),
        sa.Column('fee_rate', sa.Numeric(12, 8), nullable=False, comment='Contract fee rate'),
        sa.Column('total_fee', MONEY, nullable=False, comment='trade_volume * fee_rate'),
        sa.Column('platform_share', MONEY, nullable=False, comment='Platform owner share'),
        sa.Column('liquidlab_share', MONEY, nullable=False, comment='total_fee - platform_share'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='pending, claimed, distributed or failed'),
        sa.Column('trade_timestamp', sa.BigInteger(), nullable=False, comment='Fill time in milliseconds since epoch'),
        sa.Column('source', sa.String(length=20), nullable=False, comment='How the fill arrived (poll or webhook)'),
        sa.Column('claimed_at', sa.DateTime(), nullable=True, comment='When fees were claimed'),
        sa.Column('claim_tx_hash', sa.String(length=100), nullable=True, comment='Claim transaction hash'),
        sa.Column('distributed_at', sa.DateTime(), nullable=True, comment='When fees were distributed'),
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Row creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last modification time (UTC)'),
        sa.ForeignKeyConstraint(['platform_id'], ['trading_platforms.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('platform_id', 'trade_id', name='uq_fee_transactions_platform_trade')
    )
    op.create_index('ix_fee_transactions_created_at', 'fee_transactions', ['created_at'])
    op.create_index('idx_fee_transactions_platform_created', 'fee_transactions', ['platform_id', 'created_at'])
    op.create_index('idx_fee_transactions_status', 'fee_transactions', ['status', 'created_at'])

    # Revenue summaries
    op.create_table('platform_revenue_summary',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('platform_id', sa.Integer(), nullable=False, comment='Platform the summary belongs to'),
        sa.Column('period', sa.String(length=20), nullable=False, comment='daily, weekly, monthly or all-time'),
        sa.Column('start_date', sa.Date(), nullable=False, comment='Window start (date part, key)'),
        sa.Column('window_start', sa.DateTime(), nullable=False, comment='Exact window start (UTC)'),
        sa.Column('window_end', sa.DateTime(), nullable=False, comment='Exclusive window end the totals were computed up to'),
        sa.Column('period_end', sa.DateTime(), nullable=False, comment='Nominal end of the window (next calendar boundary for daily/monthly)'),
        sa.Column('total_volume', MONEY, nullable=False),
        sa.Column('total_fees', MONEY, nullable=False),
        sa.Column('platform_earnings', MONEY, nullable=False),
        sa.Column('liquidlab_earnings', MONEY, nullable=False),
        sa.Column('trade_count', sa.Integer(), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['platform_id'], ['trading_platforms.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('platform_id', 'period', 'start_date', name='uq_revenue_summary_window')
    )
    op.create_index('idx_revenue_summary_period_earnings', 'platform_revenue_summary', ['period', 'platform_earnings'])

    # Payouts
    op.create_table('payout_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('platform_id', sa.Integer(), nullable=False, comment='Platform being paid'),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='Recipient user id'),
        sa.Column('amount', MONEY, nullable=False, comment='Amount owed for the window'),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='pending, processing, completed or failed'),
        sa.Column('period', sa.String(length=20), nullable=False, comment='Summary period the window belongs to'),
        sa.Column('period_start', sa.DateTime(), nullable=False, comment='Window start (UTC)'),
        sa.Column('period_end', sa.DateTime(), nullable=False, comment='Window end (UTC, exclusive)'),
        sa.Column('recipient_address', sa.String(length=42), nullable=False, comment='Destination wallet'),
        sa.Column('tx_hash', sa.String(length=100), nullable=True, comment='Executor transaction hash'),
        sa.Column('error', sa.Text(), nullable=True, comment='Executor error for failed payouts'),
        sa.Column('processed_at', sa.DateTime(), nullable=True, comment='Terminal status time'),
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Row creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last modification time (UTC)'),
        sa.ForeignKeyConstraint(['platform_id'], ['trading_platforms.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_payout_records_created_at', 'payout_records', ['created_at'])
    op.create_index('idx_payout_records_window', 'payout_records', ['platform_id', 'period_start', 'period_end'])
    op.create_index('idx_payout_records_status', 'payout_records', ['status'])
    op.create_index(
        'uq_payout_records_in_flight', 'payout_records',
        ['platform_id', 'period_start', 'period_end'],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
        sqlite_where=sa.text("status IN ('pending', 'processing')"),
    )

    # Ingestion checkpoints
    op.create_table('ingestion_checkpoints',
        sa.Column('platform_id', sa.Integer(), nullable=False),
        sa.Column('last_processed_timestamp', sa.BigInteger(), nullable=False, comment='Max fill time (ms) whose row is persisted'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['platform_id'], ['trading_platforms.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('platform_id')
    )


def downgrade() -> None:
    op.drop_table('ingestion_checkpoints')

    op.drop_index('uq_payout_records_in_flight', table_name='payout_records')
    op.drop_index('idx_payout_records_status', table_name='payout_records')
    op.drop_index('idx_payout_records_window', table_name='payout_records')
    op.drop_index('ix_payout_records_created_at', table_name='payout_records')
    op.drop_table('payout_records')

    op.drop_index('idx_revenue_summary_period_earnings', table_name='platform_revenue_summary')
    op.drop_table('platform_revenue_summary')

    op.drop_index('idx_fee_transactions_status', table_name='fee_transactions')
    op.drop_index('idx_fee_transactions_platform_created', table_name='fee_transactions')
    op.drop_index('ix_fee_transactions_created_at', table_name='fee_transactions')
    op.drop_table('fee_transactions')

    op.drop_index('idx_trading_platforms_active', table_name='trading_platforms')
    op.drop_index('ix_trading_platforms_created_at', table_name='trading_platforms')
    op.drop_index('ix_trading_platforms_user_id', table_name='trading_platforms')
    op.drop_table('trading_platforms')
