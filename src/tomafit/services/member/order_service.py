# tomafit/services/member/order_service.py

import logging
from datetime import timedelta
from typing import Any, Dict, NamedTuple
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tomafit.core.config import settings
from tomafit.core.context import AppContext
from tomafit.dao.identity.user_dao import UserDao
from tomafit.dao.member.member_order_dao import MemberOrderDao
from tomafit.engine.payment import WechatPayClient
from tomafit.models.member import MemberOrder, MemberOrderStatus, TradeType
from tomafit.schemas.member.member_schemas import (
    MemberOrderCreated, NativeOrderCreated, JsapiParamsRead
)
from tomafit.services.exceptions import (
    AlreadyPaidError, GatewayError, InvalidArgumentError, NotFoundError,
    PaymentNotConfigured, PermissionDeniedError, PersistenceError
)
from tomafit.services.member.product_catalog import Product
from tomafit.utils import time_utils
from tomafit.utils.id_generator import generate_order_no

logger = logging.getLogger(__name__)

# JSAPI 参数中用于判断缓存是否可用的字段
JSAPI_FRESHNESS_FIELD = "timeStamp"

class ReservedOrder(NamedTuple):
    order: MemberOrder
    reused: bool

class OrderManager:
    """
    [Service Layer] 会员订单编排。

    流程：事务内复用或创建 PENDING 订单 -> 事务外调用支付网关 -> 新事务缓存支付参数。
    网关调用期间不持有任何数据库事务。
    """
    def __init__(self, context: AppContext):
        self.context = context
        self.db = context.db
        self.order_dao = MemberOrderDao(context.db)
        self.user_dao = UserDao(context.db)

    @property
    def reuse_window(self) -> timedelta:
        return timedelta(minutes=settings.MEMBER_ORDER_REUSE_MINUTES)

    # ==============================================================================
    # 对外操作
    # ==============================================================================

    async def create_order(self, external_user_id: str, product_id: str) -> MemberOrderCreated:
        product = self._resolve_product(product_id)

        reserved = await self._reserve_order(external_user_id, product, TradeType.JSAPI)
        order = reserved.order
        gateway = self.context.gateway
        if reserved.reused and self._has_jsapi_params(order.payment_params):
            logger.info(f"[OrderManager] Reusing pending order {order.order_no} for user {order.user_id}")
            return MemberOrderCreated(order_id=order.id, order_number=order.order_no, payment_params=order.payment_params)

        params = await self._call_gateway(
            order,
            gateway.create_in_app_transaction(
                description=self._description(gateway, order.product_name),
                order_no=order.order_no,
                amount_minor_units=order.amount,
                payer_external_id=external_user_id,
            )
        )
        await self._cache_payment_params(order, params)
        return MemberOrderCreated(order_id=order.id, order_number=order.order_no, payment_params=params)

    async def create_native_order(self, external_user_id: str, product_id: str) -> NativeOrderCreated:
        product = self._resolve_product(product_id)

        reserved = await self._reserve_order(external_user_id, product, TradeType.NATIVE)
        order = reserved.order
        gateway = self.context.gateway
        cached_url = (order.payment_params or {}).get("code_url")
        if reserved.reused and cached_url:
            logger.info(f"[OrderManager] Reusing pending native order {order.order_no} for user {order.user_id}")
            return NativeOrderCreated(order_id=order.id, order_number=order.order_no, code_url=cached_url)

        code_url = await self._call_gateway(
            order,
            gateway.create_qr_transaction(
                description=self._description(gateway, order.product_name),
                order_no=order.order_no,
                amount_minor_units=order.amount,
            )
        )
        await self._cache_payment_params(order, {"code_url": code_url})
        return NativeOrderCreated(order_id=order.id, order_number=order.order_no, code_url=code_url)

    async def get_jsapi_params(self, order_id: int, external_user_id: str) -> JsapiParamsRead:
        """为已有订单重新获取小程序支付参数 (继续支付)。"""
        async with self.db.begin():
            order = await self.order_dao.get_by_pk(order_id)
            user = await self.user_dao.get_by_external_id(external_user_id)

        if order is None:
            raise NotFoundError(f"Order {order_id} not found.")
        if user is None or order.user_id != user.id:
            raise PermissionDeniedError("This order does not belong to the current user.")
        if order.status == MemberOrderStatus.SUCCESS:
            raise AlreadyPaidError("This order has already been paid.")
        if order.trade_type != TradeType.JSAPI:
            raise InvalidArgumentError("This order cannot be paid in the mini-program.")
        if order.status != MemberOrderStatus.PENDING:
            raise InvalidArgumentError("This order is no longer payable, please create a new one.")

        params = order.payment_params
        if not self._has_jsapi_params(params):
            gateway = self.context.gateway
            params = await self._call_gateway(
                order,
                gateway.create_in_app_transaction(
                    description=self._description(gateway, order.product_name),
                    order_no=order.order_no,
                    amount_minor_units=order.amount,
                    payer_external_id=external_user_id,
                ),
                mark_failed=False
            )
            await self._cache_payment_params(order, params)

        return JsapiParamsRead(
            order_number=order.order_no,
            product_name=order.product_name,
            amount_minor_units=order.amount,
            payment_params=params,
        )

    # ==============================================================================
    # 内部步骤
    # ==============================================================================

    def _resolve_product(self, product_id: str) -> Product:
        product = self.context.catalog.find(product_id)
        if product is None:
            raise InvalidArgumentError(f"Unknown product '{product_id}'.", product_id=product_id)
        return product

    def _description(self, gateway: WechatPayClient, product_name: str) -> str:
        return f"{gateway.config.description_prefix}-{product_name}"

    def _has_jsapi_params(self, params: Any) -> bool:
        return isinstance(params, dict) and bool(params.get(JSAPI_FRESHNESS_FIELD))

    async def _reserve_order(self, external_user_id: str, product: Product, trade_type: TradeType) -> ReservedOrder:
        now = time_utils.utcnow()
        try:
            async with self.db.begin():
                user = await self.user_dao.get_by_external_id(external_user_id)
                if user is None:
                    raise NotFoundError("User not found.", external_user_id=external_user_id)
                # 支付未配置时不落订单
                if self.context.payment_client is None:
                    raise PaymentNotConfigured()

                pending = await self.order_dao.get_latest_pending(user.id, product.id, trade_type)
                if pending is not None:
                    if now - pending.created_at < self.reuse_window:
                        return ReservedOrder(pending, reused=True)
                    # 超出复用窗口的旧订单让位给新订单
                    await self.order_dao.mark_expired(pending.id, now)

                order = MemberOrder(
                    order_no=generate_order_no(user.id, now),
                    user_id=user.id,
                    product_id=product.id,
                    product_name=product.display_name,
                    amount=product.price_minor_units,
                    trade_type=trade_type,
                    status=MemberOrderStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                )
                await self.order_dao.add(order)
                logger.info(f"[OrderManager] Created {trade_type.value} order {order.order_no} for user {user.id}")
                return ReservedOrder(order, reused=False)
        except IntegrityError:
            # 并发请求已经占用了同一个 PENDING 槽位，复用它
            logger.info(f"[OrderManager] Concurrent order creation for {external_user_id}/{product.id}, reusing winner")
            return await self._load_winning_order(external_user_id, product, trade_type)
        except SQLAlchemyError as e:
            logger.error(f"[OrderManager] Failed to reserve order: {e}", exc_info=True)
            raise PersistenceError("Failed to create order.")

    async def _load_winning_order(self, external_user_id: str, product: Product, trade_type: TradeType) -> ReservedOrder:
        async with self.db.begin():
            user = await self.user_dao.get_by_external_id(external_user_id)
            pending = None
            if user is not None:
                pending = await self.order_dao.get_latest_pending(user.id, product.id, trade_type)
        if pending is None:
            raise PersistenceError("Failed to create order.")
        return ReservedOrder(pending, reused=True)

    async def _call_gateway(self, order: MemberOrder, call, mark_failed: bool = True):
        try:
            return await call
        except GatewayError as e:
            logger.error(
                f"[OrderManager] Gateway call for order {order.order_no} failed: "
                f"status={e.status_code} response={e.raw_response} context={e.context}"
            )
            if mark_failed:
                await self._mark_failed(order, e)
            raise

    async def _mark_failed(self, order: MemberOrder, error: GatewayError):
        reason = f"gateway error (HTTP {error.status_code})" if error.status_code else "gateway error"
        if error.raw_response:
            reason = f"{reason}: {error.raw_response[:500]}"
        try:
            async with self.db.begin():
                await self.order_dao.mark_failed(order.id, reason, time_utils.utcnow())
        except SQLAlchemyError as e:
            logger.error(f"[OrderManager] Failed to mark order {order.order_no} as failed: {e}", exc_info=True)

    async def _cache_payment_params(self, order: MemberOrder, params: Dict[str, Any]):
        try:
            async with self.db.begin():
                await self.order_dao.update_payment_params(order.id, params, time_utils.utcnow())
        except SQLAlchemyError as e:
            logger.error(f"[OrderManager] Failed to cache payment params for {order.order_no}: {e}", exc_info=True)
            raise PersistenceError("Failed to save payment parameters.")
