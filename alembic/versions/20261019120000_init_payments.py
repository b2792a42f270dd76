
from alembic import op
import sqlalchemy as sa

revision = "20261019120000"
down_revision = None

def upgrade():
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_reference', sa.String(length=120), nullable=False, unique=True),
        sa.Column('charge_id', sa.String(length=120), nullable=True, unique=True),
        sa.Column('user_id', sa.String(length=120), nullable=True, index=True),
        sa.Column('customer_name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('email', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='MWK'),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('stock_applied', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('provider_ref_id', sa.String(length=120), nullable=True),
        sa.Column('mobile', sa.String(length=32), nullable=True),
        sa.Column('operator_name', sa.String(length=120), nullable=True),
        sa.Column('completed_at', sa.String(length=64), nullable=True),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('provider_payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_ref', sa.String(length=120), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
    )
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=120), primary_key=True),
        sa.Column('name', sa.String(length=240), nullable=False, server_default=''),
        sa.Column('price', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='MWK'),
        sa.Column('stock', sa.Integer(), nullable=True),
    )
    op.create_table(
        'addresses',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('user_id', sa.String(length=120), nullable=False, index=True),
        sa.Column('first_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('email', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('operator', sa.String(length=64), nullable=False, server_default=''),
        sa.Column('operator_ref', sa.String(length=120), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('city', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('state', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('zip', sa.String(length=32), nullable=False, server_default=''),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
    )

def downgrade():
    op.drop_table('addresses')
    op.drop_table('products')
    op.drop_table('order_items')
    op.drop_table('orders')
