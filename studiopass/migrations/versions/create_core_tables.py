"""create tariffs, subscriptions, qr_codes, subscription_usage, users, admins, payments

Revision ID: create_core_tables
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'create_core_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('email', sa.String(320), nullable=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('active_subscription_id', sa.Integer(), nullable=True),
        sa.Column('active_tariff_id', sa.String(128), nullable=True),
        sa.Column('active_tariff_name', sa.String(255), nullable=True),
        sa.Column('subscription_start_date', sa.DateTime(), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(), nullable=True),
        sa.Column('remaining_sessions', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('total_sessions', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('payment_status', sa.String(32), nullable=True),
        sa.Column('last_payment_id', sa.String(255), nullable=True),
        sa.Column('is_subscription_active', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'admins',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'tariffs',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('duration', sa.String(64), nullable=True),
        sa.Column('session_count', sa.Integer(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=True, server_default='0'),
        sa.Column('is_visible', sa.Boolean(), nullable=True, server_default=sa.true()),
    )

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('tariff_id', sa.String(128), sa.ForeignKey('tariffs.id'), nullable=False),
        sa.Column('payment_id', sa.String(255), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('total_sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('remaining_sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('last_used', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('payment_id', name='uq_subscriptions_payment_id'),
        sa.CheckConstraint(
            'remaining_sessions >= 0 AND remaining_sessions <= total_sessions',
            name='ck_subscriptions_remaining_sessions',
        ),
    )
    op.create_index('ix_subscriptions_user_active', 'subscriptions', ['user_id', 'is_active'])
    op.create_index('ix_subscriptions_end_date', 'subscriptions', ['end_date'])

    op.create_table(
        'qr_codes',
        sa.Column('code', sa.String(64), primary_key=True),
        sa.Column('subscription_id', sa.Integer(), sa.ForeignKey('subscriptions.id'), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_used', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('used_by', sa.String(128), nullable=True),
    )
    op.create_index('ix_qr_codes_subscription_id', 'qr_codes', ['subscription_id'])
    op.create_index('ix_qr_codes_expires_at', 'qr_codes', ['expires_at'])

    op.create_table(
        'subscription_usage',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('subscription_id', sa.Integer(), sa.ForeignKey('subscriptions.id'), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('admin_id', sa.String(128), nullable=False),
        sa.Column('qr_code', sa.String(64), sa.ForeignKey('qr_codes.code'), nullable=False),
        sa.Column('remaining_sessions', sa.Integer(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_subscription_usage_subscription_id', 'subscription_usage', ['subscription_id'])
    op.create_index('ix_subscription_usage_user_id', 'subscription_usage', ['user_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('user_id', sa.String(128), nullable=True),
        sa.Column('order_id', sa.String(128), nullable=True),
        sa.Column('tariff_id', sa.String(128), nullable=True),
        sa.Column('value', sa.Numeric(10, 2), nullable=True),
        sa.Column('status', sa.String(32), nullable=True, server_default='pending'),
        sa.Column('paid', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('captured_at', sa.DateTime(), nullable=True),
        sa.Column('confirmation_url', sa.String(1024), nullable=True),
        sa.Column('tariff_data', sa.JSON(), nullable=True),
        sa.Column('user_profile_updated', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('profile_updated_at', sa.DateTime(), nullable=True),
        sa.Column('profile_update_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_payments_user_id', 'payments')
    op.drop_table('payments')
    op.drop_index('ix_subscription_usage_user_id', 'subscription_usage')
    op.drop_index('ix_subscription_usage_subscription_id', 'subscription_usage')
    op.drop_table('subscription_usage')
    op.drop_index('ix_qr_codes_expires_at', 'qr_codes')
    op.drop_index('ix_qr_codes_subscription_id', 'qr_codes')
    op.drop_table('qr_codes')
    op.drop_index('ix_subscriptions_end_date', 'subscriptions')
    op.drop_index('ix_subscriptions_user_active', 'subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('tariffs')
    op.drop_table('admins')
    op.drop_table('users')
