# tomafit/dao/member/member_order_dao.py
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from tomafit.dao.base_dao import BaseDao
from tomafit.models.member import MemberOrder, MemberOrderStatus, TradeType

class MemberOrderDao(BaseDao[MemberOrder]):
    """OrderStore: 会员订单的全部读写入口。状态迁移一律使用条件更新。"""
    def __init__(self, db_session: AsyncSession):
        super().__init__(MemberOrder, db_session)

    async def get_by_order_no(self, order_no: str) -> Optional[MemberOrder]:
        return await self.get_one(where={"order_no": order_no})

    async def get_latest_pending(self, user_id: int, product_id: str, trade_type: TradeType) -> Optional[MemberOrder]:
        return await self.get_one(
            where={
                "user_id": user_id,
                "product_id": product_id,
                "trade_type": trade_type,
                "status": MemberOrderStatus.PENDING,
            },
            order=[MemberOrder.created_at.desc(), MemberOrder.id.desc()]
        )

    async def update_payment_params(self, order_id: int, payment_params: dict, now: datetime) -> int:
        return await self.update_where(
            where={"id": order_id},
            values={"payment_params": payment_params, "updated_at": now}
        )

    async def mark_success(self, order_no: str, transaction_id: str, paid_at: datetime) -> int:
        """
        单条条件更新完成 -> SUCCESS 迁移。
        返回 1 表示本次调用赢得了结算；0 表示订单已被其他投递结算过。
        """
        return await self.update_where(
            where=[
                MemberOrder.order_no == order_no,
                MemberOrder.status != MemberOrderStatus.SUCCESS,
            ],
            values={
                "status": MemberOrderStatus.SUCCESS,
                "transaction_id": transaction_id,
                "paid_at": paid_at,
                "failure_reason": None,
                "updated_at": paid_at,
            }
        )

    async def mark_expired(self, order_id: int, now: datetime) -> int:
        return await self.update_where(
            where=[MemberOrder.id == order_id, MemberOrder.status == MemberOrderStatus.PENDING],
            values={"status": MemberOrderStatus.EXPIRED, "updated_at": now}
        )

    async def mark_failed(self, order_id: int, reason: str, now: datetime) -> int:
        return await self.update_where(
            where=[MemberOrder.id == order_id, MemberOrder.status == MemberOrderStatus.PENDING],
            values={"status": MemberOrderStatus.FAILED, "failure_reason": reason, "updated_at": now}
        )
