"""initial payout schema

Revision ID: a1c0e5d7f201
Revises:
Create Date: 2026-09-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c0e5d7f201'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'creator_profiles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('channel_name', sa.String(200), nullable=False),
        sa.Column('youtube_channel_id', sa.String(100), nullable=True),
        sa.Column('subscriber_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('tier', sa.String(20), server_default='emerging', nullable=False),
        sa.Column('res_multiplier_override', sa.Numeric(6, 3), nullable=True),
        sa.Column('payout_destination', sa.String(320), nullable=True),
        sa.Column('total_earnings', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('youtube_channel_id'),
    )
    op.create_index('ix_creator_profiles_user_id', 'creator_profiles', ['user_id'], unique=True)

    op.create_table(
        'recipe_engagement',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('recipe_id', sa.String(100), nullable=False),
        sa.Column(
            'creator_id', sa.Integer(),
            sa.ForeignKey('creator_profiles.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('saves', sa.Integer(), server_default='0', nullable=False),
        sa.Column('cooks', sa.Integer(), server_default='0', nullable=False),
        sa.Column('shares', sa.Integer(), server_default='0', nullable=False),
        sa.Column('ratings', sa.Integer(), server_default='0', nullable=False),
        sa.Column('exclusive_views', sa.Integer(), server_default='0', nullable=False),
        sa.Column('score', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('recipe_id', 'day', name='uq_engagement_recipe_day'),
    )
    op.create_index('ix_engagement_creator_day', 'recipe_engagement', ['creator_id', 'day'])
    op.create_index('ix_engagement_day', 'recipe_engagement', ['day'])

    op.create_table(
        'allocation_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('run_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('platform_total_res', sa.Numeric(24, 4), server_default='0', nullable=False),
        sa.Column('creator_pool_total', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('payout_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_started_at', sa.DateTime(), nullable=True),
        sa.Column('last_completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('period_start', 'period_end', name='uq_allocation_run_period'),
    )

    op.create_table(
        'revenue_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('external_id', sa.String(200), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=True),
        sa.Column('product_id', sa.String(100), nullable=True),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('gross_revenue', sa.BigInteger(), nullable=False),
        sa.Column('marketplace_fee', sa.BigInteger(), nullable=False),
        sa.Column('processor_fee', sa.BigInteger(), nullable=False),
        sa.Column('net_revenue', sa.BigInteger(), nullable=False),
        sa.Column('platform_share', sa.BigInteger(), nullable=False),
        sa.Column('creator_pool_share', sa.BigInteger(), nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=True),
        sa.Column('period_end', sa.DateTime(), nullable=True),
        sa.Column('is_renewal', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column(
            'allocation_run_id', sa.Integer(),
            sa.ForeignKey('allocation_runs.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'ix_revenue_transactions_external_id', 'revenue_transactions', ['external_id'], unique=True,
    )
    op.create_index('ix_revenue_timestamp', 'revenue_transactions', ['timestamp'])

    op.create_table(
        'creator_commissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.String(200), nullable=False),
        sa.Column(
            'creator_id', sa.Integer(),
            sa.ForeignKey('creator_profiles.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('order_subtotal', sa.BigInteger(), nullable=True),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('platform_fee', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('status', sa.String(20), server_default='paid', nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_creator_commissions_order_id', 'creator_commissions', ['order_id'], unique=True)
    op.create_index('ix_commission_creator_paid', 'creator_commissions', ['creator_id', 'paid_at'])

    op.create_table(
        'creator_payouts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'creator_id', sa.Integer(),
            sa.ForeignKey('creator_profiles.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('period_label', sa.String(50), nullable=False),
        sa.Column('total_res', sa.Numeric(24, 4), nullable=False),
        sa.Column('platform_total_res', sa.Numeric(24, 4), nullable=False),
        sa.Column('res_share', sa.Numeric(12, 10), nullable=False),
        sa.Column('creator_pool_amount', sa.BigInteger(), nullable=False),
        sa.Column('subscription_payout', sa.BigInteger(), nullable=False),
        sa.Column('shop_payout', sa.BigInteger(), nullable=False),
        sa.Column('total_payout', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('retry_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('failure_reason', sa.String(500), nullable=True),
        sa.Column('payment_id', sa.String(200), nullable=True),
        sa.Column('processing_started_at', sa.DateTime(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            'creator_id', 'period_start', 'period_end', name='uq_payout_creator_period',
        ),
    )
    op.create_index('ix_payout_period', 'creator_payouts', ['period_start', 'period_end'])
    op.create_index('ix_payout_status', 'creator_payouts', ['status'])


def downgrade() -> None:
    op.drop_index('ix_payout_status', 'creator_payouts')
    op.drop_index('ix_payout_period', 'creator_payouts')
    op.drop_table('creator_payouts')
    op.drop_index('ix_commission_creator_paid', 'creator_commissions')
    op.drop_index('ix_creator_commissions_order_id', 'creator_commissions')
    op.drop_table('creator_commissions')
    op.drop_index('ix_revenue_timestamp', 'revenue_transactions')
    op.drop_index('ix_revenue_transactions_external_id', 'revenue_transactions')
    op.drop_table('revenue_transactions')
    op.drop_table('allocation_runs')
    op.drop_index('ix_engagement_day', 'recipe_engagement')
    op.drop_index('ix_engagement_creator_day', 'recipe_engagement')
    op.drop_table('recipe_engagement')
    op.drop_index('ix_creator_profiles_user_id', 'creator_profiles')
    op.drop_table('creator_profiles')
