"""create_settlement_tables

Revision ID: 4c1e2a7b9d10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4c1e2a7b9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'settlements',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('processor_payment_ref', sa.String(length=255), nullable=False, comment='Processor charge id (payment intent)'),
        sa.Column('booking_ref', sa.String(length=64), nullable=True),
        sa.Column('booking_request_ref', sa.String(length=64), nullable=True),
        sa.Column('coach_ref', sa.String(length=64), nullable=False),
        sa.Column('athlete_ref', sa.String(length=64), nullable=True),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('platform_fee_cents', sa.Integer(), nullable=False),
        sa.Column('coach_amount_cents', sa.Integer(), nullable=False),
        sa.Column('processor_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('athlete_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='pending',
                  comment='pending/succeeded/failed/canceled/refunded'),
        sa.Column('payout_status', sa.String(length=32), nullable=False, server_default='unknown',
                  comment='unknown/pending/in_transit/paid/failed/canceled'),
        sa.Column('payout_failed_reason', sa.Text(), nullable=True),
        sa.Column('payout_retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('transfer_ref', sa.String(length=255), nullable=True),
        sa.Column('charge_ref', sa.String(length=255), nullable=True,
                  comment='charge id matched by transfer source_transaction'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='usd'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('platform_fee_cents + coach_amount_cents = total_amount_cents', name='ck_settlements_split'),
        sa.CheckConstraint('payout_retry_count >= 0', name='ck_settlements_retry_count'),
        sa.CheckConstraint('booking_ref IS NULL OR booking_request_ref IS NULL', name='ck_settlements_single_owner'),
    )

    # the upsert's ON CONFLICT target
    op.create_index('ux_settlements_processor_payment_ref', 'settlements', ['processor_payment_ref'], unique=True)
    op.create_index('ix_settlements_payout_status', 'settlements', ['payout_status'], unique=False)
    op.create_index('ix_settlements_transfer_ref', 'settlements', ['transfer_ref'], unique=False)
    op.create_index('ix_settlements_charge_ref', 'settlements', ['charge_ref'], unique=False)
    op.create_index('ix_settlements_booking_ref', 'settlements', ['booking_ref'], unique=False)
    op.create_index('ix_settlements_booking_request_ref', 'settlements', ['booking_request_ref'], unique=False)
    op.create_index('ix_settlements_coach_ref', 'settlements', ['coach_ref'], unique=False)
    op.create_index('ix_settlements_created_at', 'settlements', ['created_at'], unique=False)

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('processor_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, comment='processed/unresolved/ignored'),
        sa.Column('processor_payment_ref', sa.String(length=255), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ux_webhook_events_processor_event_id', 'webhook_events', ['processor_event_id'], unique=True)
    op.create_index('ix_webhook_events_status', 'webhook_events', ['status'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_webhook_events_status', table_name='webhook_events')
    op.drop_index('ux_webhook_events_processor_event_id', table_name='webhook_events')
    op.drop_table('webhook_events')

    op.drop_index('ix_settlements_created_at', table_name='settlements')
    op.drop_index('ix_settlements_coach_ref', table_name='settlements')
    op.drop_index('ix_settlements_booking_request_ref', table_name='settlements')
    op.drop_index('ix_settlements_booking_ref', table_name='settlements')
    op.drop_index('ix_settlements_charge_ref', table_name='settlements')
    op.drop_index('ix_settlements_transfer_ref', table_name='settlements')
    op.drop_index('ix_settlements_payout_status', table_name='settlements')
    op.drop_index('ux_settlements_processor_payment_ref', table_name='settlements')
    op.drop_table('settlements')
