# migrations/versions/001_economy_engine.py

"""Economy config versions, user states, earning events and withdrawals

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('economy_config_versions',
                    sa.Column('version', sa.Integer(), autoincrement=True, nullable=False),
                    sa.Column('body', sa.JSON(), nullable=False),
                    sa.Column('created_by', sa.String(), nullable=True),
                    sa.Column('created_at', sa.DateTime(), nullable=False),
                    sa.PrimaryKeyConstraint('version')
                    )

    op.create_table('economy_user_states',
                    sa.Column('user_id', sa.String(), nullable=False),
                    sa.Column('total_points', sa.BigInteger(), server_default='0', nullable=False),
                    sa.Column('points_ads', sa.BigInteger(), server_default='0', nullable=False),
                    sa.Column('points_news', sa.BigInteger(), server_default='0', nullable=False),
                    sa.Column('points_trivia', sa.BigInteger(), server_default='0', nullable=False),
                    sa.Column('points_games', sa.BigInteger(), server_default='0', nullable=False),
                    sa.Column('points_offers', sa.BigInteger(), server_default='0', nullable=False),
                    sa.Column('points_surveys', sa.BigInteger(), server_default='0', nullable=False),
                    sa.Column('points_referrals', sa.BigInteger(), server_default='0', nullable=False),
                    sa.Column('daily_streak', sa.Integer(), server_default='0', nullable=False),
                    sa.Column('last_check_in', sa.Date(), nullable=True),
                    sa.Column('daily_counters', sa.JSON(), server_default='{}', nullable=False),
                    sa.Column('boost_factor', sa.Float(), nullable=True),
                    sa.Column('boost_expires_at', sa.DateTime(), nullable=True),
                    sa.Column('country', sa.String(length=8), nullable=True),
                    sa.Column('email_verified', sa.Boolean(), server_default='false', nullable=False),
                    sa.Column('phone_verified', sa.Boolean(), server_default='false', nullable=False),
                    sa.Column('device_id', sa.String(), nullable=True),
                    sa.Column('ip_address', sa.String(), nullable=True),
                    sa.Column('account_created_at', sa.DateTime(), nullable=True),
                    sa.Column('version', sa.Integer(), server_default='1', nullable=False),
                    sa.Column('created_at', sa.DateTime(), nullable=False),
                    sa.Column('updated_at', sa.DateTime(), nullable=False),
                    sa.CheckConstraint('total_points >= 0', name='ck_economy_user_states_total_points'),
                    sa.PrimaryKeyConstraint('user_id')
                    )
    op.create_index(op.f('ix_economy_user_states_device_id'), 'economy_user_states', ['device_id'])
    op.create_index(op.f('ix_economy_user_states_ip_address'), 'economy_user_states', ['ip_address'])

    op.create_table('economy_earning_events',
                    sa.Column('id', sa.String(), nullable=False),
                    sa.Column('user_id', sa.String(), nullable=False),
                    sa.Column('action_type', sa.String(), nullable=False),
                    sa.Column('source', sa.String(), nullable=False),
                    sa.Column('base_points', sa.Float(), nullable=False),
                    sa.Column('multipliers', sa.JSON(), server_default='[]', nullable=False),
                    sa.Column('multiplier', sa.Float(), nullable=False),
                    sa.Column('capped', sa.Boolean(), server_default='false', nullable=False),
                    sa.Column('final_points', sa.BigInteger(), nullable=False),
                    sa.Column('created_at', sa.DateTime(), nullable=False),
                    sa.ForeignKeyConstraint(['user_id'], ['economy_user_states.user_id']),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_economy_earning_events_user_id'), 'economy_earning_events', ['user_id'])
    op.create_index(op.f('ix_economy_earning_events_source'), 'economy_earning_events', ['source'])
    op.create_index(op.f('ix_economy_earning_events_created_at'), 'economy_earning_events', ['created_at'])

    op.create_table('economy_withdrawals',
                    sa.Column('id', sa.String(), nullable=False),
                    sa.Column('user_id', sa.String(), nullable=False),
                    sa.Column('amount_points', sa.BigInteger(), nullable=False),
                    sa.Column('amount_usd_cents', sa.BigInteger(), nullable=False),
                    sa.Column('method', sa.String(), nullable=False),
                    sa.Column('method_details', sa.JSON(), nullable=False),
                    sa.Column('payout_fingerprint', sa.String(), nullable=False),
                    sa.Column('status', sa.String(), server_default='pending', nullable=False),
                    sa.Column('risk_score', sa.Integer(), nullable=False),
                    sa.Column('fraud_signals', sa.JSON(), server_default='[]', nullable=False),
                    sa.Column('admin_note', sa.Text(), nullable=True),
                    sa.Column('processed_by', sa.String(), nullable=True),
                    sa.Column('processed_at', sa.DateTime(), nullable=True),
                    sa.Column('rejection_reason', sa.Text(), nullable=True),
                    sa.Column('payout_reference', sa.String(), nullable=True),
                    sa.Column('settled_at', sa.DateTime(), nullable=True),
                    sa.Column('payout_claimed_at', sa.DateTime(), nullable=True),
                    sa.Column('dispatch_attempts', sa.Integer(), server_default='0', nullable=False),
                    sa.Column('last_dispatched_at', sa.DateTime(), nullable=True),
                    sa.Column('version', sa.Integer(), server_default='1', nullable=False),
                    sa.Column('created_at', sa.DateTime(), nullable=False),
                    sa.Column('updated_at', sa.DateTime(), nullable=False),
                    sa.ForeignKeyConstraint(['user_id'], ['economy_user_states.user_id']),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_economy_withdrawals_user_id'), 'economy_withdrawals', ['user_id'])
    op.create_index(op.f('ix_economy_withdrawals_status'), 'economy_withdrawals', ['status'])
    op.create_index(op.f('ix_economy_withdrawals_payout_fingerprint'), 'economy_withdrawals', ['payout_fingerprint'])


def downgrade() -> None:
    op.drop_index(op.f('ix_economy_withdrawals_payout_fingerprint'), table_name='economy_withdrawals')
    op.drop_index(op.f('ix_economy_withdrawals_status'), table_name='economy_withdrawals')
    op.drop_index(op.f('ix_economy_withdrawals_user_id'), table_name='economy_withdrawals')
    op.drop_table('economy_withdrawals')
    op.drop_index(op.f('ix_economy_earning_events_created_at'), table_name='economy_earning_events')
    op.drop_index(op.f('ix_economy_earning_events_source'), table_name='economy_earning_events')
    op.drop_index(op.f('ix_economy_earning_events_user_id'), table_name='economy_earning_events')
    op.drop_table('economy_earning_events')
    op.drop_index(op.f('ix_economy_user_states_ip_address'), table_name='economy_user_states')
    op.drop_index(op.f('ix_economy_user_states_device_id'), table_name='economy_user_states')
    op.drop_table('economy_user_states')
    op.drop_table('economy_config_versions')
