"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'app_user',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('password_hash', sa.Text(), nullable=False),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.UniqueConstraint('email'),
    )

    op.create_table(
        'auth_session',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['app_user.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_auth_session_user_id', 'auth_session', ['user_id'])

    op.create_table(
        'procedure_record',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('mrn', sa.Text(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('age', sa.Integer(), nullable=False),
        sa.Column('procedure', sa.Text(), nullable=False),
        sa.Column('supervision', sa.Text(), nullable=False),
        sa.Column('complication_notes', sa.Text(), nullable=False),
        sa.Column('operation_notes', sa.Text(), nullable=False),
        sa.Column('hospital', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['app_user.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_procedure_record_user_id', 'procedure_record', ['user_id'])
    op.create_index('ix_procedure_record_user_created', 'procedure_record', ['user_id', 'created_at'])
    op.create_index('ix_procedure_record_user_procedure', 'procedure_record', ['user_id', 'procedure'])

    op.create_table(
        'custom_label',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('kind', sa.Text(), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['app_user.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('user_id', 'kind', 'value', name='uq_custom_label_user_kind_value'),
    )
    op.create_index('ix_custom_label_user_id', 'custom_label', ['user_id'])

    op.create_table(
        'milestone_type',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('procedure', sa.Text(), nullable=False),
        sa.Column('milestone_count', sa.Integer(), nullable=False),
        sa.Column('badge_name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.UniqueConstraint('procedure', 'milestone_count', name='uq_milestone_type_procedure_count'),
    )
    op.create_index('ix_milestone_type_procedure', 'milestone_type', ['procedure'])

    op.create_table(
        'user_achievement',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('milestone_type_id', sa.Uuid(), nullable=False),
        sa.Column('achieved_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('is_seen', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['app_user.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['milestone_type_id'], ['milestone_type.id']),
        sa.UniqueConstraint('user_id', 'milestone_type_id', name='uq_user_achievement_user_milestone'),
    )
    op.create_index('ix_user_achievement_user_id', 'user_achievement', ['user_id'])

    op.create_table(
        'user_subscription',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('is_subscribed', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('subscription_status', sa.Text(), nullable=True),
        sa.Column('trial_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_customer_id', sa.Text(), nullable=True),
        sa.Column('stripe_subscription_id', sa.Text(), nullable=True),
        sa.Column('stripe_price_id', sa.Text(), nullable=True),
        sa.Column('state_as_of', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['app_user.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_user_subscription_user_id', 'user_subscription', ['user_id'], unique=True)
    op.create_index('ix_user_subscription_stripe_customer_id', 'user_subscription', ['stripe_customer_id'])
    op.create_index('ix_user_subscription_stripe_subscription_id', 'user_subscription', ['stripe_subscription_id'])

    op.create_table(
        'stripe_events',
        sa.Column('event_id', sa.Text(), primary_key=True),
        sa.Column('event_type', sa.Text(), nullable=False),
        sa.Column('stripe_created', sa.Integer(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_stripe_events_event_type', 'stripe_events', ['event_type'])


def downgrade() -> None:
    op.drop_index('ix_stripe_events_event_type', table_name='stripe_events')
    op.drop_table('stripe_events')
    op.drop_index('ix_user_subscription_stripe_subscription_id', table_name='user_subscription')
    op.drop_index('ix_user_subscription_stripe_customer_id', table_name='user_subscription')
    op.drop_index('ix_user_subscription_user_id', table_name='user_subscription')
    op.drop_table('user_subscription')
    op.drop_index('ix_user_achievement_user_id', table_name='user_achievement')
    op.drop_table('user_achievement')
    op.drop_index('ix_milestone_type_procedure', table_name='milestone_type')
    op.drop_table('milestone_type')
    op.drop_index('ix_custom_label_user_id', table_name='custom_label')
    op.drop_table('custom_label')
    op.drop_index('ix_procedure_record_user_procedure', table_name='procedure_record')
    op.drop_index('ix_procedure_record_user_created', table_name='procedure_record')
    op.drop_index('ix_procedure_record_user_id', table_name='procedure_record')
    op.drop_table('procedure_record')
    op.drop_index('ix_auth_session_user_id', table_name='auth_session')
    op.drop_table('auth_session')
    op.drop_table('app_user')
