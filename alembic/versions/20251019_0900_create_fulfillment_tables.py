"""Create catalog, inventory, order and reservation tables

Revision ID: create_fulfillment_tables
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_fulfillment_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLite 只有 INTEGER PRIMARY KEY 才会自增
PK = sa.BigInteger().with_variant(sa.Integer(), 'sqlite')
NOW = sa.text('CURRENT_TIMESTAMP')


def upgrade() -> None:
    """Create fulfillment engine tables"""

    # 目录协作方
    op.create_table('product_variants',
        sa.Column('id', PK, nullable=False),
        sa.Column('sku', sa.Text(), nullable=False, comment='规格SKU'),
        sa.Column('name', sa.Text(), nullable=False, comment='规格名称'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False, comment='记录创建时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku')
    )

    op.create_table('warehouses',
        sa.Column('id', PK, nullable=False),
        sa.Column('name', sa.Text(), nullable=False, comment='仓库名称'),
        sa.Column('location', sa.Text(), nullable=False, comment='仓库地址'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False, comment='记录创建时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table('customers',
        sa.Column('id', PK, nullable=False),
        sa.Column('type', sa.Text(), nullable=False, comment='客户类型'),
        sa.Column('company_name', sa.Text(), nullable=False, comment='公司名称'),
        sa.Column('status', sa.Text(), nullable=False, comment='客户状态'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False, comment='记录创建时间'),
        sa.CheckConstraint("type IN ('RETAIL','B2B','WHOLESALE')", name='ck_customers_type'),
        sa.CheckConstraint("status IN ('ACTIVE','INACTIVE','SUSPENDED')", name='ck_customers_status'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_customers_type', 'customers', ['type'], unique=False)

    # 库存位与台账
    op.create_table('stock_locations',
        sa.Column('id', PK, nullable=False),
        sa.Column('product_variant_id', sa.BigInteger(), nullable=False, comment='商品规格ID'),
        sa.Column('warehouse_id', sa.BigInteger(), nullable=False, comment='仓库ID'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='现存数量'),
        sa.Column('item_type', sa.Text(), nullable=False, comment='物料类型'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False, comment='记录创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False, comment='最后更新时间'),
        sa.CheckConstraint('quantity >= 0', name='ck_stock_locations_quantity_non_negative'),
        sa.CheckConstraint("item_type IN ('RAW_MATERIAL','WIP','FINISHED_GOOD')", name='ck_stock_locations_item_type'),
        sa.ForeignKeyConstraint(['product_variant_id'], ['product_variants.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_variant_id', 'warehouse_id', name='uq_stock_locations_variant_warehouse')
    )
    op.create_index('ix_stock_locations_variant', 'stock_locations', ['product_variant_id'], unique=False)
    op.create_index('ix_stock_locations_warehouse', 'stock_locations', ['warehouse_id'], unique=False)

    op.create_table('inventory_ledger',
        sa.Column('id', PK, nullable=False),
        sa.Column('stock_location_id', sa.BigInteger(), nullable=False, comment='库存位ID'),
        sa.Column('change_quantity', sa.Integer(), nullable=False, comment='变动数量（带符号）'),
        sa.Column('reason', sa.Text(), nullable=False, comment='变动原因'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False, comment='记录创建时间'),
        sa.CheckConstraint('change_quantity <> 0', name='ck_inventory_ledger_change_non_zero'),
        sa.ForeignKeyConstraint(['stock_location_id'], ['stock_locations.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_inventory_ledger_location', 'inventory_ledger', ['stock_location_id'], unique=False)
    op.create_index('ix_inventory_ledger_created_at', 'inventory_ledger', ['created_at'], unique=False)

    # 订单
    op.create_table('orders',
        sa.Column('id', PK, nullable=False),
        sa.Column('order_number', sa.Text(), nullable=False, comment='订单号'),
        sa.Column('channel', sa.Text(), nullable=False, comment='销售渠道'),
        sa.Column('customer_id', sa.BigInteger(), nullable=True, comment='客户ID（DTC/POS/RETAIL 可为空）'),
        sa.Column('status', sa.Text(), nullable=False, comment='订单状态'),
        sa.Column('total_amount', sa.Numeric(18, 4), nullable=False, comment='订单总额'),
        sa.Column('currency', sa.Text(), nullable=False, comment='币种'),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True, comment='确认时间'),
        sa.Column('allocated_at', sa.DateTime(timezone=True), nullable=True, comment='全部分配时间'),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True, comment='发货时间'),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True, comment='履约完成时间'),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True, comment='取消时间'),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True, comment='退货时间'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False, comment='记录创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False, comment='记录更新时间'),
        sa.CheckConstraint("channel IN ('DTC','B2B','POS','WHOLESALE','RETAIL')", name='ck_orders_channel'),
        sa.CheckConstraint(
            "status IN ('DRAFT','CONFIRMED','ALLOCATED','SHIPPED','DELIVERED','COMPLETED','FULFILLED','CANCELLED','RETURNED')",
            name='ck_orders_status'
        ),
        sa.CheckConstraint('total_amount >= 0', name='ck_orders_total_amount'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number')
    )
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_channel', 'orders', ['channel'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)

    op.create_table('order_items',
        sa.Column('id', PK, nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False, comment='关联订单ID'),
        sa.Column('product_variant_id', sa.BigInteger(), nullable=False, comment='商品规格ID'),
        sa.Column('warehouse_id', sa.BigInteger(), nullable=False, comment='下单时指定的仓库ID'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='数量'),
        sa.Column('unit_price', sa.Numeric(18, 4), nullable=False, comment='单价'),
        sa.Column('total_price', sa.Numeric(18, 4), nullable=False, comment='行总价'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_unit_price'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['product_variant_id'], ['product_variants.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_items_order', 'order_items', ['order_id'], unique=False)
    op.create_index('ix_order_items_variant', 'order_items', ['product_variant_id'], unique=False)

    # 预留
    op.create_table('reservations',
        sa.Column('id', PK, nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False, comment='订单ID'),
        sa.Column('order_item_id', sa.BigInteger(), nullable=False, comment='订单行ID'),
        sa.Column('stock_location_id', sa.BigInteger(), nullable=False, comment='库存位ID'),
        sa.Column('product_variant_id', sa.BigInteger(), nullable=False, comment='商品规格ID'),
        sa.Column('warehouse_id', sa.BigInteger(), nullable=False, comment='仓库ID'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='预留数量'),
        sa.Column('reserved_at', sa.DateTime(timezone=True), server_default=NOW, nullable=False, comment='预留时间'),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True, comment='消耗时间（发货扣减库存）'),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True, comment='释放时间（取消订单）'),
        sa.CheckConstraint('quantity > 0', name='ck_reservations_quantity_positive'),
        sa.CheckConstraint('consumed_at IS NULL OR released_at IS NULL', name='ck_reservations_single_terminal_state'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id']),
        sa.ForeignKeyConstraint(['stock_location_id'], ['stock_locations.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_reservations_order', 'reservations', ['order_id'], unique=False)
    op.create_index(
        'ix_reservations_location_active', 'reservations',
        ['stock_location_id', 'consumed_at', 'released_at'], unique=False
    )
    op.create_index('ix_reservations_variant', 'reservations', ['product_variant_id'], unique=False)


def downgrade() -> None:
    """Drop fulfillment engine tables"""
    op.drop_table('reservations')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('inventory_ledger')
    op.drop_table('stock_locations')
    op.drop_table('customers')
    op.drop_table('warehouses')
    op.drop_table('product_variants')
