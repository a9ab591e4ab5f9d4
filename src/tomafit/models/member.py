# tomafit/models/member.py

import enum
from sqlalchemy import (
    Column, Integer, String, Text, JSON, Enum, ForeignKey, DateTime,
    Index, CheckConstraint, text
)
from sqlalchemy.orm import relationship
from tomafit.db.base import Base
from tomafit.utils.time_utils import utcnow

class MemberOrderStatus(str, enum.Enum):
    PENDING = "pending"    # 已创建，等待支付
    SUCCESS = "success"    # 已支付并已延长会员 (终态)
    FAILED = "failed"      # 网关下单失败，保留用于审计
    EXPIRED = "expired"    # 超出复用窗口，被新订单取代

class TradeType(str, enum.Enum):
    JSAPI = "jsapi"        # 小程序/公众号内支付
    NATIVE = "native"      # 扫码支付

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class MemberOrder(Base):
    """
    会员订单表。
    由 OrderManager 以 PENDING 创建；只有 MembershipLedger 能将其置为 SUCCESS，且只发生一次。
    订单从不删除。
    """
    __tablename__ = 'member_orders'

    id = Column(Integer, primary_key=True)
    order_no = Column(String(32), nullable=False, unique=True, comment="对外订单号 (out_trade_no)")

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    product_id = Column(String(32), nullable=False, comment="ProductCatalog 中的商品ID")
    product_name = Column(String(100), nullable=False, comment="下单时的商品名称快照")
    amount = Column(Integer, nullable=False, comment="订单金额 (分)")

    trade_type = Column(
        Enum(TradeType, name="member_trade_type", values_callable=_enum_values),
        nullable=False, default=TradeType.JSAPI
    )
    status = Column(
        Enum(MemberOrderStatus, name="member_order_status", values_callable=_enum_values),
        nullable=False, default=MemberOrderStatus.PENDING, index=True
    )

    payment_params = Column(JSON, nullable=True, comment="网关返回的客户端支付参数，用于重新展示")
    transaction_id = Column(String(64), nullable=True, unique=True, comment="支付网关流水号，仅 SUCCESS 时存在")
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    paid_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="member_orders")

    __table_args__ = (
        CheckConstraint(
            "status != 'success' OR (transaction_id IS NOT NULL AND paid_at IS NOT NULL)",
            name='success_requires_transaction'
        ),
        # 同一用户、商品、支付方式最多只有一张 PENDING 订单
        Index(
            'uq_member_orders_pending_slot',
            'user_id', 'product_id', 'trade_type',
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index('ix_member_orders_user_product_created', 'user_id', 'product_id', 'created_at'),
    )
