"""Initial schema with reservations, promo codes and loyalty points

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""
    # Create enum types
    op.execute("CREATE TYPE reservationstatus AS ENUM ('draft', 'pending_payment', 'confirmed', 'cancelled')")
    op.execute("CREATE TYPE discounttype AS ENUM ('percentage', 'fixed_amount')")
    op.execute("CREATE TYPE loyaltytier AS ENUM ('bronze', 'silver', 'gold', 'platinum')")
    op.execute("CREATE TYPE pointstransactiontype AS ENUM ('earned', 'redeemed')")
    op.execute("CREATE TYPE pointssourcekind AS ENUM ('booking', 'reward')")

    # Create promo_codes table
    op.create_table(
        'promo_codes',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', postgresql.ENUM('percentage', 'fixed_amount', name='discounttype', create_type=False), nullable=False),
        sa.Column('discount_value', sa.Integer(), nullable=False),
        sa.Column('min_order_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('current_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('valid_from', sa.DateTime(), nullable=True),
        sa.Column('valid_until', sa.DateTime(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('discount_value > 0', name='check_positive_discount'),
        sa.CheckConstraint('min_order_value >= 0', name='check_nonnegative_min_order'),
        sa.CheckConstraint('current_uses >= 0', name='check_nonnegative_uses'),
        sa.CheckConstraint('max_uses IS NULL OR current_uses <= max_uses', name='check_uses_within_cap'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_promo_codes_code', 'promo_codes', ['code'], unique=True)

    # Create reservations table
    op.create_table(
        'reservations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, primary_key=True),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('asset_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('asset_name', sa.String(length=200), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('pickup_location', sa.String(length=200), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('base_subtotal', sa.Integer(), nullable=False),
        sa.Column('addon_subtotal', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_price', sa.Integer(), nullable=False),
        sa.Column('promo_code_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('promo_code', sa.String(length=50), nullable=True),
        sa.Column('status', postgresql.ENUM('draft', 'pending_payment', 'confirmed', 'cancelled', name='reservationstatus', create_type=False), nullable=False),
        sa.Column('payer_phone', sa.String(length=20), nullable=True),
        sa.Column('payment_reference', sa.String(length=100), nullable=True),
        sa.Column('payment_receipt', sa.String(length=50), nullable=True),
        sa.Column('payment_simulated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('end_date >= start_date', name='check_date_range'),
        sa.CheckConstraint('base_subtotal >= 0', name='check_nonnegative_base'),
        sa.CheckConstraint('addon_subtotal >= 0', name='check_nonnegative_addons'),
        sa.CheckConstraint('discount_amount >= 0', name='check_nonnegative_discount'),
        sa.CheckConstraint('total_price >= 0', name='check_nonnegative_total'),
        sa.CheckConstraint('asset_id IS NOT NULL OR asset_name IS NOT NULL', name='check_asset_reference'),
        sa.ForeignKeyConstraint(['promo_code_id'], ['promo_codes.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_reference')
    )
    op.create_index('ix_reservations_owner_id', 'reservations', ['owner_id'])
    op.create_index('ix_reservations_asset_id', 'reservations', ['asset_id'])
    op.create_index('ix_reservations_status', 'reservations', ['status'])
    op.create_index('ix_reservations_created_at', 'reservations', ['created_at'])
    op.create_index('ix_reservations_owner_created', 'reservations', ['owner_id', sa.text('created_at DESC')])
    op.create_index('ix_reservations_asset_dates', 'reservations', ['asset_id', 'start_date', 'end_date'])
    op.create_index('ix_reservations_status_created', 'reservations', ['status', 'created_at'])

    # Create reservation_add_ons table
    op.create_table(
        'reservation_add_ons',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, primary_key=True),
        sa.Column('reservation_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('gear_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('price_per_day', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('price_per_day >= 0', name='check_nonnegative_gear_price'),
        sa.CheckConstraint('quantity > 0', name='check_positive_gear_quantity'),
        sa.ForeignKeyConstraint(['reservation_id'], ['reservations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reservation_id', 'gear_id', name='uq_reservation_gear')
    )
    op.create_index('ix_reservation_add_ons_reservation_id', 'reservation_add_ons', ['reservation_id'])

    # Create loyalty_points table
    op.create_table(
        'loyalty_points',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, primary_key=True),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lifetime_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tier', postgresql.ENUM('bronze', 'silver', 'gold', 'platinum', name='loyaltytier', create_type=False), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('total_points >= 0', name='check_nonnegative_points'),
        sa.CheckConstraint('lifetime_points >= 0', name='check_nonnegative_lifetime'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_loyalty_points_owner_id', 'loyalty_points', ['owner_id'], unique=True)

    # Create points_transactions table
    op.create_table(
        'points_transactions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, primary_key=True),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('transaction_type', postgresql.ENUM('earned', 'redeemed', name='pointstransactiontype', create_type=False), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reference_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('reference_type', postgresql.ENUM('booking', 'reward', name='pointssourcekind', create_type=False), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference_type', 'reference_id', 'transaction_type', name='uq_points_transaction_source')
    )
    op.create_index('ix_points_transactions_owner_id', 'points_transactions', ['owner_id'])
    op.create_index('ix_points_transactions_created_at', 'points_transactions', ['created_at'])
    op.create_index('ix_points_transactions_owner_created', 'points_transactions', ['owner_id', sa.text('created_at DESC')])


def downgrade() -> None:
    """Drop all tables and types."""
    op.drop_table('points_transactions')
    op.drop_table('loyalty_points')
    op.drop_table('reservation_add_ons')
    op.drop_table('reservations')
    op.drop_table('promo_codes')

    op.execute('DROP TYPE IF EXISTS pointssourcekind')
    op.execute('DROP TYPE IF EXISTS pointstransactiontype')
    op.execute('DROP TYPE IF EXISTS loyaltytier')
    op.execute('DROP TYPE IF EXISTS discounttype')
    op.execute('DROP TYPE IF EXISTS reservationstatus')
