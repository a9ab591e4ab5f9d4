# tests/services/member/test_order_service.py

from datetime import timedelta

import pytest

from tomafit.dao.member.member_order_dao import MemberOrderDao
from tomafit.models import MemberOrderStatus, TradeType
from tomafit.services.exceptions import (
    AlreadyPaidError, GatewayError, InvalidArgumentError, NotFoundError,
    PaymentNotConfigured, PermissionDeniedError
)
from tomafit.services.member.membership_ledger import MembershipLedger
from tomafit.services.member.order_service import OrderManager

pytestmark = pytest.mark.asyncio

# ==============================================================================
# 1. 创建订单
# ==============================================================================

class TestCreateOrder:

    async def test_creates_pending_order_and_caches_params(self, context_factory, user_factory, gateway_mock, frozen_now, db):
        # Arrange
        user = await user_factory()

        # Act
        created = await OrderManager(context_factory()).create_order(user.external_id, "month")

        # Assert: 1. 网关调用参数
        gateway_mock.create_in_app_transaction.assert_awaited_once()
        kwargs = gateway_mock.create_in_app_transaction.await_args.kwargs
        assert kwargs["description"] == "番茄控卡-月卡会员"
        assert kwargs["amount_minor_units"] == 990
        assert kwargs["payer_external_id"] == user.external_id
        assert kwargs["order_no"] == created.order_number

        # Assert: 2. 数据库状态
        order = await db.order(created.order_number)
        assert order.status == MemberOrderStatus.PENDING
        assert order.trade_type == TradeType.JSAPI
        assert order.product_name == "月卡会员"
        assert order.amount == 990
        assert order.created_at == frozen_now.now
        assert order.payment_params == created.payment_params
        assert created.order_id == order.id
        assert created.order_number.startswith("M")

    async def test_reuse_within_window_returns_same_order(self, context_factory, user_factory, gateway_mock, frozen_now):
        user = await user_factory()
        first = await OrderManager(context_factory()).create_order(user.external_id, "month")

        frozen_now.advance(timedelta(minutes=59))
        second = await OrderManager(context_factory()).create_order(user.external_id, "month")

        assert second.order_number == first.order_number
        assert second.payment_params == first.payment_params
        assert gateway_mock.create_in_app_transaction.await_count == 1

    async def test_outside_window_creates_new_order(self, context_factory, user_factory, gateway_mock, frozen_now, db):
        user = await user_factory()
        first = await OrderManager(context_factory()).create_order(user.external_id, "month")

        frozen_now.advance(timedelta(minutes=61))
        second = await OrderManager(context_factory()).create_order(user.external_id, "month")

        assert second.order_number != first.order_number
        assert gateway_mock.create_in_app_transaction.await_count == 2
        # 旧订单让出 PENDING 槽位
        assert (await db.order(first.order_number)).status == MemberOrderStatus.EXPIRED
        assert (await db.order(second.order_number)).status == MemberOrderStatus.PENDING

    async def test_different_products_do_not_share_orders(self, context_factory, user_factory, frozen_now):
        user = await user_factory()
        month = await OrderManager(context_factory()).create_order(user.external_id, "month")
        frozen_now.advance(timedelta(seconds=1))
        year = await OrderManager(context_factory()).create_order(user.external_id, "year")

        assert month.order_number != year.order_number

    async def test_unknown_product(self, context_factory, user_factory, gateway_mock):
        user = await user_factory()

        with pytest.raises(InvalidArgumentError):
            await OrderManager(context_factory()).create_order(user.external_id, "lifetime")
        gateway_mock.create_in_app_transaction.assert_not_awaited()

    async def test_unknown_user(self, context_factory, gateway_mock, db):
        with pytest.raises(NotFoundError):
            await OrderManager(context_factory()).create_order("openid_nobody", "month")
        gateway_mock.create_in_app_transaction.assert_not_awaited()

    async def test_payment_not_configured(self, context_factory, user_factory):
        user = await user_factory()

        with pytest.raises(PaymentNotConfigured):
            await OrderManager(context_factory(with_payment=False)).create_order(user.external_id, "month")

    async def test_unknown_product_reported_before_payment_check(self, context_factory, user_factory):
        user = await user_factory()

        with pytest.raises(InvalidArgumentError):
            await OrderManager(context_factory(with_payment=False)).create_order(user.external_id, "lifetime")

    async def test_unknown_user_reported_before_payment_check(self, context_factory):
        with pytest.raises(NotFoundError):
            await OrderManager(context_factory(with_payment=False)).create_order("openid_nobody", "month")

    async def test_payment_not_configured_creates_no_order(self, context_factory, user_factory, db):
        user = await user_factory()

        with pytest.raises(PaymentNotConfigured):
            await OrderManager(context_factory(with_payment=False)).create_native_order(user.external_id, "month")
        assert await db.orders_for(user.id) == []

    async def test_gateway_failure_marks_order_failed(self, context_factory, user_factory, gateway_mock, frozen_now, db):
        # Arrange
        user = await user_factory()
        gateway_mock.create_in_app_transaction.side_effect = GatewayError(
            "payment is temporarily unavailable, please retry",
            status_code=500, raw_response='{"code":"SYSTEM_ERROR"}'
        )

        # Act
        with pytest.raises(GatewayError):
            await OrderManager(context_factory()).create_order(user.external_id, "month")

        # Assert: 订单保留用于审计，并释放 PENDING 槽位
        orders = await db.orders_for(user.id)
        assert len(orders) == 1
        assert orders[0].status == MemberOrderStatus.FAILED
        assert "SYSTEM_ERROR" in orders[0].failure_reason
        assert orders[0].payment_params is None

    async def test_retry_after_gateway_failure_creates_fresh_order(self, context_factory, user_factory, gateway_mock, frozen_now, db):
        user = await user_factory()
        original = gateway_mock.create_in_app_transaction.side_effect
        gateway_mock.create_in_app_transaction.side_effect = GatewayError("retry", status_code=502)
        with pytest.raises(GatewayError):
            await OrderManager(context_factory()).create_order(user.external_id, "month")

        gateway_mock.create_in_app_transaction.side_effect = original
        frozen_now.advance(timedelta(seconds=1))
        created = await OrderManager(context_factory()).create_order(user.external_id, "month")

        statuses = sorted(o.status.value for o in await db.orders_for(user.id))
        assert statuses == ["failed", "pending"]
        assert (await db.order(created.order_number)).status == MemberOrderStatus.PENDING

    async def test_concurrent_insert_reuses_winning_order(self, context_factory, user_factory, gateway_mock, monkeypatch):
        # Arrange: 先占住 PENDING 槽位，再让下一次查询"看不到"它，模拟并发下单
        user = await user_factory()
        winner = await OrderManager(context_factory()).create_order(user.external_id, "month")

        original_lookup = MemberOrderDao.get_latest_pending
        calls = {"n": 0}

        async def blind_first_lookup(self, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await original_lookup(self, *args, **kwargs)
        monkeypatch.setattr(MemberOrderDao, "get_latest_pending", blind_first_lookup)

        # Act: 插入撞上部分唯一索引，转而复用胜出的订单
        loser = await OrderManager(context_factory()).create_order(user.external_id, "month")

        # Assert
        assert loser.order_number == winner.order_number
        assert gateway_mock.create_in_app_transaction.await_count == 1

# ==============================================================================
# 2. Native 订单
# ==============================================================================

class TestCreateNativeOrder:

    async def test_native_order_returns_code_url(self, context_factory, user_factory, gateway_mock, db):
        user = await user_factory()

        created = await OrderManager(context_factory()).create_native_order(user.external_id, "quarter")

        assert created.code_url.startswith("weixin://wxpay/bizpayurl")
        order = await db.order(created.order_number)
        assert order.trade_type == TradeType.NATIVE
        assert order.amount == 2990
        assert order.payment_params == {"code_url": created.code_url}

    async def test_native_order_is_reused_within_window(self, context_factory, user_factory, gateway_mock, frozen_now):
        user = await user_factory()
        first = await OrderManager(context_factory()).create_native_order(user.external_id, "quarter")
        frozen_now.advance(timedelta(minutes=10))
        second = await OrderManager(context_factory()).create_native_order(user.external_id, "quarter")

        assert second.order_number == first.order_number
        assert second.code_url == first.code_url
        assert gateway_mock.create_qr_transaction.await_count == 1

    async def test_native_and_jsapi_orders_are_independent(self, context_factory, user_factory, frozen_now):
        user = await user_factory()
        jsapi = await OrderManager(context_factory()).create_order(user.external_id, "month")
        frozen_now.advance(timedelta(seconds=1))
        native = await OrderManager(context_factory()).create_native_order(user.external_id, "month")

        assert jsapi.order_number != native.order_number

# ==============================================================================
# 3. 继续支付
# ==============================================================================

class TestGetJsapiParams:

    async def test_returns_cached_params(self, context_factory, user_factory, gateway_mock):
        user = await user_factory()
        created = await OrderManager(context_factory()).create_order(user.external_id, "year")

        result = await OrderManager(context_factory()).get_jsapi_params(created.order_id, user.external_id)

        assert result.order_number == created.order_number
        assert result.product_name == "年卡会员"
        assert result.amount_minor_units == 4990
        assert result.payment_params == created.payment_params
        assert gateway_mock.create_in_app_transaction.await_count == 1

    async def test_rederives_when_cache_lacks_freshness_field(self, context_factory, user_factory, gateway_mock, session_factory, db):
        user = await user_factory()
        created = await OrderManager(context_factory()).create_order(user.external_id, "month")
        async with session_factory() as session:
            async with session.begin():
                await MemberOrderDao(session).update_where(
                    where={"id": created.order_id}, values={"payment_params": {"package": "prepay_id=stale"}}
                )

        result = await OrderManager(context_factory()).get_jsapi_params(created.order_id, user.external_id)

        assert "timeStamp" in result.payment_params
        assert gateway_mock.create_in_app_transaction.await_count == 2
        assert (await db.order(created.order_number)).payment_params == result.payment_params

    async def test_other_user_is_forbidden(self, context_factory, user_factory):
        owner = await user_factory()
        stranger = await user_factory()
        created = await OrderManager(context_factory()).create_order(owner.external_id, "month")

        with pytest.raises(PermissionDeniedError):
            await OrderManager(context_factory()).get_jsapi_params(created.order_id, stranger.external_id)

    async def test_paid_order_is_rejected(self, context_factory, user_factory):
        user = await user_factory()
        created = await OrderManager(context_factory()).create_order(user.external_id, "month")
        await MembershipLedger(context_factory()).handle_payment_success(created.order_number, "4200000010")

        with pytest.raises(AlreadyPaidError):
            await OrderManager(context_factory()).get_jsapi_params(created.order_id, user.external_id)

    async def test_unknown_order(self, context_factory, user_factory):
        user = await user_factory()

        with pytest.raises(NotFoundError):
            await OrderManager(context_factory()).get_jsapi_params(999999, user.external_id)
