"""Initial reservation schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_BOOKING_PREDICATE = "status NOT IN ('cancelled', 'rejected')"


def upgrade() -> None:
    """Upgrade database schema."""
    # GiST over (uuid, daterange) needs btree_gist for the equality part
    op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')

    # Create vehicles table
    op.create_table('vehicles',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('make', sa.String(length=64), nullable=False),
        sa.Column('model', sa.String(length=64), nullable=False),
        sa.Column('license_plate', sa.String(length=32), nullable=False),
        sa.Column('daily_rate', sa.Integer(), nullable=False),
        sa.Column('with_driver_rate', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_available', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('maintenance_status', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('daily_rate >= 0', name='ck_vehicle_daily_rate_non_negative'),
        sa.CheckConstraint('with_driver_rate >= 0', name='ck_vehicle_with_driver_rate_non_negative'),
        sa.CheckConstraint('length(license_plate) > 0', name='ck_vehicle_license_plate_not_empty'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_vehicles_license_plate'), 'vehicles', ['license_plate'], unique=True)

    # Create bookings table
    op.create_table('bookings',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('booking_number', sa.String(length=32), nullable=False),
        sa.Column('vehicle_id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.String(length=128), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('pickup_location', sa.String(length=255), nullable=True),
        sa.Column('return_location', sa.String(length=255), nullable=True),
        sa.Column('with_driver', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payment_status', sa.String(length=20), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('start_date < end_date', name='ck_booking_interval_ordered'),
        sa.CheckConstraint('total_amount >= 0', name='ck_booking_total_amount_non_negative'),
        sa.CheckConstraint('length(customer_id) > 0', name='ck_booking_customer_id_not_empty'),
        sa.ForeignKeyConstraint(['vehicle_id'], ['vehicles.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_booking_number'), 'bookings', ['booking_number'], unique=True)
    op.create_index(op.f('ix_bookings_vehicle_id'), 'bookings', ['vehicle_id'], unique=False)
    op.create_index(op.f('ix_bookings_customer_id'), 'bookings', ['customer_id'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)
    op.create_index('ix_bookings_vehicle_interval', 'bookings', ['vehicle_id', 'start_date', 'end_date'], unique=False)

    # No two active bookings of one vehicle may overlap; violations raise SQLSTATE 23P01
    op.execute(
        "ALTER TABLE bookings ADD CONSTRAINT ex_bookings_vehicle_no_overlap "
        "EXCLUDE USING gist (vehicle_id WITH =, daterange(start_date, end_date, '[)') WITH &&) "
        f"WHERE ({ACTIVE_BOOKING_PREDICATE})"
    )

    # Create payments table
    op.create_table('payments',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('payment_number', sa.String(length=32), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('processing_fee', sa.Integer(), nullable=False),
        sa.Column('tax_amount', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('transaction_reference', sa.String(length=64), nullable=False),
        sa.Column('gateway_transaction_id', sa.String(length=128), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('refund_reason', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_payment_amount_positive'),
        sa.CheckConstraint('processing_fee >= 0', name='ck_payment_fee_non_negative'),
        sa.CheckConstraint('tax_amount >= 0', name='ck_payment_tax_non_negative'),
        sa.CheckConstraint('total_amount = amount + processing_fee + tax_amount', name='ck_payment_total_composition'),
        sa.CheckConstraint(
            'refund_amount IS NULL OR (refund_amount > 0 AND refund_amount <= total_amount)',
            name='ck_payment_refund_bounded'
        ),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_number')
    )
    op.create_index(op.f('ix_payments_booking_id'), 'payments', ['booking_id'], unique=False)
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'], unique=False)
    op.create_index(op.f('ix_payments_transaction_reference'), 'payments', ['transaction_reference'], unique=True)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index(op.f('ix_payments_transaction_reference'), table_name='payments')
    op.drop_index(op.f('ix_payments_status'), table_name='payments')
    op.drop_index(op.f('ix_payments_booking_id'), table_name='payments')
    op.drop_table('payments')

    op.execute('ALTER TABLE bookings DROP CONSTRAINT IF EXISTS ex_bookings_vehicle_no_overlap')
    op.drop_index('ix_bookings_vehicle_interval', table_name='bookings')
    op.drop_index(op.f('ix_bookings_status'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_customer_id'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_vehicle_id'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_booking_number'), table_name='bookings')
    op.drop_table('bookings')

    op.drop_index(op.f('ix_vehicles_license_plate'), table_name='vehicles')
    op.drop_table('vehicles')
