# tomafit/services/member/notification_service.py

import logging
from typing import Mapping

from tomafit.core.context import AppContext
from tomafit.schemas.member.member_schemas import NotificationAck
from tomafit.services.exceptions import MalformedRequestError
from tomafit.services.member.membership_ledger import MembershipLedger

logger = logging.getLogger(__name__)

class NotificationHandler:
    """
    支付结果回调：验签解密 -> 记账 -> 应答。
    任何异常都向上抛出，由路由层转换为 FAIL 应答让支付平台重试。
    """
    def __init__(self, context: AppContext):
        self.context = context
        self.ledger = MembershipLedger(context)

    async def handle(self, headers: Mapping[str, str], body: bytes) -> NotificationAck:
        notification = self.context.verifier.verify(headers, body)

        if not notification.is_success:
            # 非成功状态不改动任何数据，仍然应答成功
            logger.info(
                f"[Notification] Order {notification.order_no} reported trade_state="
                f"{notification.trade_state or 'UNKNOWN'}, nothing to settle"
            )
            return NotificationAck()

        if not notification.transaction_id:
            raise MalformedRequestError("Successful notification carries no transaction_id.")

        applied = await self.ledger.handle_payment_success(
            notification.order_no,
            notification.transaction_id,
            amount_total=notification.amount_total,
        )
        if not applied:
            logger.debug(f"[Notification] Duplicate delivery for order {notification.order_no} acknowledged")
        return NotificationAck()
