"""initial schema

Revision ID: 2026_10_18_0000
Revises:
Create Date: 2026-10-18 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '2026_10_18_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    """Create the economy schema."""

    # ========================================================================
    # Create accounts table
    # ========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('telegram_id', sa.BigInteger(), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('photo_url', sa.String(1024), nullable=True),
        sa.Column('balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('coins', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('api_credits', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('api_key_prefix', sa.String(20), nullable=True),
        sa.Column('api_key_hash', sa.String(64), nullable=True),
        sa.Column('api_key_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('api_key_created_at', nullable=True),
        _timestamp('api_key_last_used_at', nullable=True),
        sa.Column('active_plan_id', sa.String(100), nullable=True),
        sa.Column('active_plan_name', sa.String(255), nullable=True),
        _timestamp('active_plan_purchased_at', nullable=True),
        _timestamp('active_plan_expires_at', nullable=True),
        sa.Column('active_plan_credits', sa.Integer(), nullable=True),
        sa.Column('ads_watched_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_watch_date', sa.Date(), nullable=True),
        sa.Column('total_ads_watched', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('bonus_claimed', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('last_ad_watched_at', nullable=True),
        sa.Column('referral_code', sa.String(32), nullable=False),
        sa.Column('referred_by', sa.String(64), nullable=True),
        sa.Column('referral_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('referral_earnings_coins', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('referral_earnings_balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('channel_joined', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('referral_reward_claimed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('referral_purchase_credited', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('banned', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('created_at'),
        _timestamp('updated_at'),

        # Constraints
        sa.CheckConstraint('balance >= 0', name='ck_account_balance_non_negative'),
        sa.CheckConstraint('coins >= 0', name='ck_account_coins_non_negative'),
        sa.CheckConstraint('api_credits >= 0', name='ck_account_api_credits_non_negative'),
        sa.CheckConstraint('ads_watched_today >= 0', name='ck_account_ads_today_non_negative'),
        sa.UniqueConstraint('telegram_id', name='uq_accounts_telegram_id'),
        sa.UniqueConstraint('api_key_hash', name='uq_accounts_api_key_hash'),
        sa.UniqueConstraint('referral_code', name='uq_accounts_referral_code'),
        sa.ForeignKeyConstraint(['referred_by'], ['accounts.id'], name='fk_accounts_referred_by'),
    )
    op.create_index('idx_accounts_referred_by', 'accounts', ['referred_by'])
    op.create_index('idx_accounts_updated_at', 'accounts', ['updated_at'])

    # ========================================================================
    # Create ad_network_watches table
    # ========================================================================
    op.create_table(
        'ad_network_watches',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('account_id', sa.String(64), nullable=False),
        sa.Column('network_id', sa.String(50), nullable=False),
        sa.Column('watch_date', sa.Date(), nullable=False),
        sa.Column('watch_count', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('last_watched_at'),
        sa.UniqueConstraint('account_id', 'network_id', 'watch_date', name='uq_ad_network_watch_day'),
        sa.CheckConstraint('watch_count >= 0', name='ck_ad_network_watch_count_non_negative'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_ad_network_watches_account'),
    )

    # ========================================================================
    # Create catalog tables
    # ========================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('product_type', sa.String(50), nullable=False, server_default='other'),
        sa.Column('category', sa.String(100), nullable=False, server_default='general'),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('is_free', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('coin_price', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unlock_by_ads', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ad_credits_required', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        sa.CheckConstraint('coin_price >= 0', name='ck_product_coin_price_non_negative'),
    )

    op.create_table(
        'telegram_bots',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('webhook_url', sa.String(1024), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('total_sales', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('created_at'),
        sa.CheckConstraint('price >= 0', name='ck_bot_price_non_negative'),
    )

    op.create_table(
        'api_plans',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('requests', sa.Integer(), nullable=False),
        sa.Column('validity_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        sa.CheckConstraint('price >= 0', name='ck_api_plan_price_non_negative'),
        sa.CheckConstraint('requests > 0', name='ck_api_plan_requests_positive'),
        sa.CheckConstraint('validity_days > 0', name='ck_api_plan_validity_positive'),
    )

    # ========================================================================
    # Create entitlement tables
    # ========================================================================
    op.create_table(
        'purchased_files',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('account_id', sa.String(64), nullable=False),
        sa.Column('product_id', sa.String(100), nullable=False),
        sa.Column('coins_paid', sa.BigInteger(), nullable=False, server_default='0'),
        _timestamp('created_at'),
        sa.UniqueConstraint('account_id', 'product_id', name='uq_purchased_file'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_purchased_files_account'),
    )

    op.create_table(
        'api_purchases',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('plan_id', sa.String(100), nullable=False),
        sa.Column('account_id', sa.String(64), nullable=False),
        sa.Column('price_paid', sa.Numeric(12, 2), nullable=False),
        _timestamp('purchase_date'),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_requests', sa.Integer(), nullable=False),
        sa.Column('used_requests', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.CheckConstraint('total_requests > 0', name='ck_api_purchase_total_positive'),
        sa.CheckConstraint(
            'used_requests >= 0 AND used_requests <= total_requests',
            name='ck_api_purchase_used_in_range',
        ),
        sa.CheckConstraint("status IN ('active', 'expired', 'exhausted')", name='ck_api_purchase_status'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_api_purchases_account'),
    )
    op.create_index('ix_api_purchases_account_id', 'api_purchases', ['account_id'])
    op.create_index('idx_api_purchases_account_status', 'api_purchases', ['account_id', 'status'])

    op.create_table(
        'bot_purchases',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('bot_id', sa.String(100), nullable=False),
        sa.Column('account_id', sa.String(64), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('webhook_response', sa.Text(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'delivered', 'failed')",
            name='ck_bot_purchase_status',
        ),
        sa.ForeignKeyConstraint(['bot_id'], ['telegram_bots.id'], name='fk_bot_purchases_bot'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_bot_purchases_account'),
    )
    op.create_index('ix_bot_purchases_account_id', 'bot_purchases', ['account_id'])

    # ========================================================================
    # Create transactions table
    # ========================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('account_id', sa.String(64), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(20), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='completed'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_transactions_account'),
    )
    op.create_index('idx_transactions_account_created', 'transactions', ['account_id', 'created_at'])

    # ========================================================================
    # Create redeem code tables
    # ========================================================================
    op.create_table(
        'redeem_codes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('code', sa.String(64), nullable=False),
        sa.Column('reward_type', sa.String(20), nullable=False),
        sa.Column('reward_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('max_uses', sa.Integer(), nullable=False),
        sa.Column('current_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('expires_at', nullable=True),
        sa.Column('created_by', sa.String(255), nullable=False),
        _timestamp('created_at'),
        sa.UniqueConstraint('code', name='uq_redeem_codes_code'),
        sa.CheckConstraint('reward_amount > 0', name='ck_redeem_code_reward_positive'),
        sa.CheckConstraint('max_uses > 0', name='ck_redeem_code_max_uses_positive'),
        sa.CheckConstraint('current_uses >= 0', name='ck_redeem_code_uses_non_negative'),
        sa.CheckConstraint("reward_type IN ('coins', 'balance')", name='ck_redeem_code_reward_type'),
    )

    op.create_table(
        'redeem_code_uses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('code_id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.String(64), nullable=False),
        _timestamp('created_at'),
        sa.UniqueConstraint('code_id', 'account_id', name='uq_redeem_code_use'),
        sa.ForeignKeyConstraint(
            ['code_id'], ['redeem_codes.id'], name='fk_redeem_code_uses_code', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_redeem_code_uses_account'),
    )

    # ========================================================================
    # Create back office tables
    # ========================================================================
    op.create_table(
        'admin_notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('purchase_id', sa.Uuid(), nullable=True),
        sa.Column('account_id', sa.String(64), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('created_at'),
    )
    op.create_index('idx_admin_notifications_read', 'admin_notifications', ['read'])

    op.create_table(
        'api_keys',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('key_hash', sa.Text(), nullable=False),
        sa.Column('key_prefix', sa.String(20), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('environment', sa.String(10), nullable=False),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=False),
        _timestamp('created_at'),
        _timestamp('expires_at', nullable=True),
        _timestamp('last_used_at', nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.UniqueConstraint('key_prefix', name='uq_api_keys_key_prefix'),
        sa.CheckConstraint("environment IN ('test', 'live')", name='ck_api_keys_environment'),
        sa.CheckConstraint("status IN ('active', 'rotating', 'revoked')", name='ck_api_keys_status'),
    )
    op.create_index('idx_api_keys_status', 'api_keys', ['status'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('api_keys')
    op.drop_table('admin_notifications')
    op.drop_table('redeem_code_uses')
    op.drop_table('redeem_codes')
    op.drop_table('transactions')
    op.drop_table('bot_purchases')
    op.drop_table('api_purchases')
    op.drop_table('purchased_files')
    op.drop_table('api_plans')
    op.drop_table('telegram_bots')
    op.drop_table('products')
    op.drop_table('ad_network_watches')
    op.drop_table('accounts')
