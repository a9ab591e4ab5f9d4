# tomafit/services/member/membership_ledger.py

import logging
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError

from tomafit.core.context import AppContext
from tomafit.dao.identity.user_dao import UserDao
from tomafit.dao.member.member_order_dao import MemberOrderDao
from tomafit.models.member import MemberOrderStatus
from tomafit.schemas.member.member_schemas import MembershipStatusRead
from tomafit.services.exceptions import (
    InvalidArgumentError, NotFoundError, PersistenceError
)
from tomafit.utils import time_utils

logger = logging.getLogger(__name__)

def extend_expiry(current_expire_at: Optional[datetime], duration_days: int, now: datetime) -> datetime:
    """从 max(now, 当前到期时间) 起顺延；仍在有效期内的会员时长叠加，不会被截断。"""
    base = max(now, current_expire_at or now)
    return base + timedelta(days=duration_days)

class MembershipLedger:
    """
    把已验证的支付结果记入用户会员有效期。
    订单状态迁移与有效期延长在同一个事务中提交。
    """
    def __init__(self, context: AppContext):
        self.context = context
        self.db = context.db
        self.order_dao = MemberOrderDao(context.db)
        self.user_dao = UserDao(context.db)

    async def get_status(self, external_user_id: str) -> MembershipStatusRead:
        """读取会员有效期。从未开通或已过期的用户 is_member 为 False。"""
        async with self.db.begin():
            user = await self.user_dao.get_by_external_id(external_user_id)
        if user is None:
            raise NotFoundError("User not found.", external_user_id=external_user_id)
        expire_at = user.member_expire_at
        return MembershipStatusRead(
            is_member=expire_at is not None and expire_at > time_utils.utcnow(),
            member_expire_at=expire_at,
        )

    async def handle_payment_success(
        self,
        order_no: str,
        transaction_id: str,
        amount_total: Optional[int] = None
    ) -> bool:
        """
        Settles one order. Returns True when this call applied the extension,
        False when the order was already settled (duplicate delivery).
        """
        try:
            async with self.db.begin():
                return await self._settle(order_no, transaction_id, amount_total)
        except SQLAlchemyError as e:
            logger.error(f"[MembershipLedger] Settlement of {order_no} failed: {e}", exc_info=True)
            raise PersistenceError("Failed to record payment.", order_no=order_no)

    async def _settle(self, order_no: str, transaction_id: str, amount_total: Optional[int]) -> bool:
        order = await self.order_dao.get_by_order_no(order_no)
        if order is None:
            logger.critical(f"[MembershipLedger] Verified payment for unknown order {order_no} (txn {transaction_id})")
            raise NotFoundError(f"Order '{order_no}' not found.", order_no=order_no)

        if order.status == MemberOrderStatus.SUCCESS:
            logger.debug(f"[MembershipLedger] Order {order_no} already settled, ignoring duplicate notification.")
            return False

        if amount_total is not None and amount_total != order.amount:
            logger.critical(
                f"[MembershipLedger] Amount mismatch for order {order_no}: "
                f"paid {amount_total}, expected {order.amount} (txn {transaction_id})"
            )
            raise InvalidArgumentError("Paid amount does not match the order.", order_no=order_no)

        now = time_utils.utcnow()
        # 条件更新：只有赢得这次迁移的调用才会延长会员
        affected = await self.order_dao.mark_success(order_no, transaction_id, now)
        if affected != 1:
            logger.debug(f"[MembershipLedger] Order {order_no} was settled concurrently, ignoring.")
            return False

        product = self.context.catalog.get(order.product_id)

        user = await self.user_dao.lock_by_pk(order.user_id)
        if user is None:
            raise NotFoundError(f"User {order.user_id} of order '{order_no}' not found.", order_no=order_no)

        new_expire_at = extend_expiry(user.member_expire_at, product.duration_days, now)
        await self.user_dao.update_where(
            where={"id": user.id},
            values={"member_expire_at": new_expire_at, "updated_at": now}
        )

        logger.info(
            f"[MembershipLedger] Order {order_no} settled: user={user.id} product={product.id} "
            f"txn={transaction_id} member_expire_at={new_expire_at.isoformat()}"
        )
        return True
