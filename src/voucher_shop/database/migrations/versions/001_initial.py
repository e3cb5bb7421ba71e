"""Initial migration - create vouchers, payment_records, processed_callbacks and transaction_history tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'vouchers',
        sa.Column('code', sa.String(64), primary_key=True),
        sa.Column('denomination', sa.Integer(), nullable=False),
        sa.Column('consumed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('assigned_to', sa.String(32), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=True),
        sa.Column('originating_reference', sa.String(64), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_vouchers_denomination_consumed', 'vouchers', ['denomination', 'consumed'])
    op.create_index('ix_vouchers_assigned_to', 'vouchers', ['assigned_to'])

    op.create_table(
        'payment_records',
        sa.Column('reference', sa.String(64), primary_key=True),
        sa.Column('subscriber_identifier', sa.String(32), nullable=False),
        sa.Column('denomination', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='UGX'),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        sa.Column('provider', sa.String(20), nullable=True),
        sa.Column('provider_transaction_id', sa.String(64), nullable=True),
        sa.Column('assigned_voucher_code', sa.String(64), sa.ForeignKey('vouchers.code'), nullable=True),
        sa.Column('origin', sa.String(20), nullable=False, server_default='initiation'),
        sa.Column('raw_provider_response_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_payment_records_provider_transaction_id', 'payment_records', ['provider_transaction_id'])
    op.create_index('ix_payment_records_status', 'payment_records', ['status'])
    op.create_index('ix_payment_records_created_at', 'payment_records', ['created_at'])
    op.create_index('ix_payment_records_subscriber', 'payment_records', ['subscriber_identifier'])

    op.create_table(
        'processed_callbacks',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('reference', sa.String(64), nullable=False),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('provider_transaction_uuid', sa.String(64), nullable=False, server_default=''),
        sa.Column('outcome', sa.String(32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            'reference', 'event_type', 'provider_transaction_uuid',
            name='uq_processed_callbacks_callback_id',
        ),
    )
    op.create_index('ix_processed_callbacks_created_at', 'processed_callbacks', ['created_at'])

    op.create_table(
        'transaction_history',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('payment_reference', sa.String(64), sa.ForeignKey('payment_records.reference'), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('previous_status', sa.String(20), nullable=True),
        sa.Column('new_status', sa.String(20), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('action_metadata_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_transaction_history_payment_reference', 'transaction_history', ['payment_reference'])
    op.create_index('ix_transaction_history_action', 'transaction_history', ['action'])
    op.create_index('ix_transaction_history_created_at', 'transaction_history', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_transaction_history_created_at', table_name='transaction_history')
    op.drop_index('ix_transaction_history_action', table_name='transaction_history')
    op.drop_index('ix_transaction_history_payment_reference', table_name='transaction_history')
    op.drop_table('transaction_history')

    op.drop_index('ix_processed_callbacks_created_at', table_name='processed_callbacks')
    op.drop_table('processed_callbacks')

    op.drop_index('ix_payment_records_subscriber', table_name='payment_records')
    op.drop_index('ix_payment_records_created_at', table_name='payment_records')
    op.drop_index('ix_payment_records_status', table_name='payment_records')
    op.drop_index('ix_payment_records_provider_transaction_id', table_name='payment_records')
    op.drop_table('payment_records')

    op.drop_index('ix_vouchers_assigned_to', table_name='vouchers')
    op.drop_index('ix_vouchers_denomination_consumed', table_name='vouchers')
    op.drop_table('vouchers')
