"""create users and member orders

Revision ID: 3f8a1c2d9b40
Revises:
Create Date: 2026-03-10 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f8a1c2d9b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

order_status = sa.Enum('pending', 'success', 'failed', 'expired', name='member_order_status')
trade_type = sa.Enum('jsapi', 'native', name='member_trade_type')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False, comment='用户唯一主键ID'),
        sa.Column('external_id', sa.String(length=64), nullable=False, comment='外部身份ID (OAuth openid)'),
        sa.Column('nick_name', sa.String(length=100), nullable=True, comment='用户昵称'),
        sa.Column('member_expire_at', sa.DateTime(), nullable=True, comment='会员到期时间，NULL 表示从未开通'),
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='账户创建时间'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='最后更新时间'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_users')),
    )
    op.create_index(op.f('ix_users_external_id'), 'users', ['external_id'], unique=True)

    op.create_table(
        'member_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_no', sa.String(length=32), nullable=False, comment='对外订单号 (out_trade_no)'),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=32), nullable=False, comment='ProductCatalog 中的商品ID'),
        sa.Column('product_name', sa.String(length=100), nullable=False, comment='下单时的商品名称快照'),
        sa.Column('amount', sa.Integer(), nullable=False, comment='订单金额 (分)'),
        sa.Column('trade_type', trade_type, nullable=False),
        sa.Column('status', order_status, nullable=False),
        sa.Column('payment_params', sa.JSON(), nullable=True, comment='网关返回的客户端支付参数，用于重新展示'),
        sa.Column('transaction_id', sa.String(length=64), nullable=True, comment='支付网关流水号，仅 SUCCESS 时存在'),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "status != 'success' OR (transaction_id IS NOT NULL AND paid_at IS NOT NULL)",
            name=op.f('ck_member_orders_success_requires_transaction')
        ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name=op.f('fk_member_orders_user_id_users')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_member_orders')),
        sa.UniqueConstraint('order_no', name=op.f('uq_member_orders_order_no')),
        sa.UniqueConstraint('transaction_id', name=op.f('uq_member_orders_transaction_id')),
    )
    op.create_index(op.f('ix_member_orders_user_id'), 'member_orders', ['user_id'], unique=False)
    op.create_index(op.f('ix_member_orders_status'), 'member_orders', ['status'], unique=False)
    op.create_index(
        'ix_member_orders_user_product_created', 'member_orders',
        ['user_id', 'product_id', 'created_at'], unique=False
    )
    op.create_index(
        'uq_member_orders_pending_slot', 'member_orders',
        ['user_id', 'product_id', 'trade_type'], unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_member_orders_pending_slot', table_name='member_orders')
    op.drop_index('ix_member_orders_user_product_created', table_name='member_orders')
    op.drop_index(op.f('ix_member_orders_status'), table_name='member_orders')
    op.drop_index(op.f('ix_member_orders_user_id'), table_name='member_orders')
    op.drop_table('member_orders')
    op.drop_index(op.f('ix_users_external_id'), table_name='users')
    op.drop_table('users')
    trade_type.drop(op.get_bind(), checkfirst=True)
    order_status.drop(op.get_bind(), checkfirst=True)
