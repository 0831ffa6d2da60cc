"""create inventory, order, payment and cart tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Stock counters; variant_id is a soft reference to the catalog
    op.create_table(
        'inventory',
        sa.Column('variant_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('available_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reserved_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('available_stock >= 0', name='available_stock_non_negative'),
        sa.CheckConstraint('reserved_stock >= 0', name='reserved_stock_non_negative'),
    )
    op.create_index('idx_inventory_available', 'inventory', ['available_stock'])

    op.create_table(
        'orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_number', sa.String(32), nullable=False),
        sa.Column('user_id', sa.Text()),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('discount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('shipping_method', sa.String(50)),
        sa.Column('shipping_address', postgresql.JSONB(), nullable=False),
        sa.Column('billing_address', postgresql.JSONB()),
        sa.Column('cancellation_reason', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True)),
        sa.Column('shipped_at', sa.DateTime(timezone=True)),
        sa.Column('delivered_at', sa.DateTime(timezone=True)),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.CheckConstraint(
            "status IN ('PENDING', 'PAID', 'SHIPPED', 'DELIVERED', 'CANCELLED')",
            name='order_status_valid'
        ),
        sa.CheckConstraint('total >= 0', name='order_total_non_negative'),
        sa.CheckConstraint("currency ~ '^[A-Z]{3}$'", name='order_currency_format'),
    )
    op.create_index('idx_orders_user', 'orders', ['user_id'])
    op.create_index('idx_orders_status_created', 'orders', ['status', 'created_at'])
    # Guest lookups by checkout email
    op.create_index(
        'idx_orders_guest_email',
        'orders',
        [sa.text("lower(shipping_address->>'email')")],
        postgresql_where=sa.text('user_id IS NULL'),
    )

    op.create_table(
        'order_number_counters',
        sa.Column('name', sa.String(50), primary_key=True),
        sa.Column('value', sa.Integer(), nullable=False, server_default='0'),
    )
    op.execute("INSERT INTO order_number_counters (name, value) VALUES ('orders', 0)")

    op.create_table(
        'order_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('variant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_name', sa.Text(), nullable=False),
        sa.Column('attributes', postgresql.JSONB()),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.CheckConstraint('quantity > 0', name='order_item_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='order_item_price_non_negative'),
    )
    op.create_index('idx_order_items_order', 'order_items', ['order_id'])

    op.create_table(
        'payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('provider', sa.String(30), nullable=False),
        sa.Column('provider_reference', sa.Text(), nullable=False),
        sa.Column('payment_intent_id', sa.Text()),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('details', postgresql.JSONB()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.UniqueConstraint('provider_reference', name='uq_payments_provider_reference'),
        sa.CheckConstraint("status IN ('PENDING', 'SUCCESS', 'FAILED')", name='payment_status_valid'),
    )
    op.create_index('idx_payments_order', 'payments', ['order_id'])
    op.create_index('idx_payments_intent', 'payments', ['payment_intent_id'])

    op.create_table(
        'carts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'cart_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('cart_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('variant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('product_name', sa.Text(), nullable=False),
        sa.Column('attributes', postgresql.JSONB()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
        sa.CheckConstraint('quantity > 0', name='cart_item_quantity_positive'),
    )
    op.create_index('idx_cart_items_cart', 'cart_items', ['cart_id'])


def downgrade() -> None:
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_table('payments')
    op.drop_table('order_items')
    op.drop_table('order_number_counters')
    op.drop_table('orders')
    op.drop_table('inventory')
