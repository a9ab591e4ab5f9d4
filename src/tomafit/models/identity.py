from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from tomafit.db.base import Base
from tomafit.utils.time_utils import utcnow

class User(Base):
    """
    用户表 (会员支付相关的子集)。
    其余资料字段由用户模块维护，这里只声明支付链路读写的列。
    """
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, comment="用户唯一主键ID")
    # 小程序 openid，下单时作为 payer 传给支付网关
    external_id = Column(String(64), nullable=False, unique=True, index=True, comment="外部身份ID (OAuth openid)")
    nick_name = Column(String(100), nullable=True, comment="用户昵称")

    # 只由 MembershipLedger 修改
    member_expire_at = Column(DateTime, nullable=True, comment="会员到期时间，NULL 表示从未开通")

    created_at = Column(DateTime, nullable=False, default=utcnow, comment="账户创建时间")
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow, comment="最后更新时间")

    member_orders = relationship("MemberOrder", back_populates="user")
