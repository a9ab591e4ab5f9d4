# tomafit/api/v1/member.py

import logging
import dataclasses
from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from typing import List

from tomafit.api.dependencies.context import PublicContextDep
from tomafit.api.errors import status_for
from tomafit.core.config import settings
from tomafit.core.context import AppContext
from tomafit.schemas.common import JsonResponse
from tomafit.schemas.member.member_schemas import (
    ProductRead, MemberOrderCreate, MemberOrderCreated, NativeOrderCreated,
    JsapiParamsRead, MembershipStatusRead, MockPayRequest, MockPayResult, NotificationAck
)
from tomafit.services.exceptions import ServiceException
from tomafit.services.member.membership_ledger import MembershipLedger
from tomafit.services.member.notification_service import NotificationHandler
from tomafit.services.member.order_service import OrderManager
from tomafit.utils.id_generator import generate_nonce

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/products", response_model=JsonResponse[List[ProductRead]], summary="List Membership Products")
async def list_products(context: AppContext = PublicContextDep):
    products = [ProductRead(**dataclasses.asdict(p)) for p in context.catalog.list()]
    return JsonResponse(data=products)

@router.post("/orders", response_model=JsonResponse[MemberOrderCreated], summary="Create Mini-program Order")
async def create_order(order_in: MemberOrderCreate, context: AppContext = PublicContextDep):
    """Creates (or reuses) a pending JSAPI order and returns wx.requestPayment parameters."""
    service = OrderManager(context)
    created = await service.create_order(order_in.external_user_id, order_in.product_id)
    return JsonResponse(data=created)

@router.post("/native-orders", response_model=JsonResponse[NativeOrderCreated], summary="Create QR-code Order")
async def create_native_order(order_in: MemberOrderCreate, context: AppContext = PublicContextDep):
    service = OrderManager(context)
    created = await service.create_native_order(order_in.external_user_id, order_in.product_id)
    return JsonResponse(data=created)

@router.get("/jsapi-params", response_model=JsonResponse[JsapiParamsRead], summary="Resume Payment of an Order")
async def get_jsapi_params(
    order_id: int = Query(..., alias="orderId"),
    external_user_id: str = Query(..., alias="externalUserId", min_length=1),
    context: AppContext = PublicContextDep
):
    service = OrderManager(context)
    params = await service.get_jsapi_params(order_id, external_user_id)
    return JsonResponse(data=params)

@router.get("/status", response_model=JsonResponse[MembershipStatusRead], summary="Membership Status")
async def get_membership_status(
    external_user_id: str = Query(..., alias="externalUserId", min_length=1),
    context: AppContext = PublicContextDep
):
    ledger = MembershipLedger(context)
    return JsonResponse(data=await ledger.get_status(external_user_id))

@router.post("/notification", response_model=NotificationAck, summary="Payment Provider Webhook")
async def payment_notification(request: Request, context: AppContext = PublicContextDep):
    """
    支付平台回调。必须读取原始字节验签；
    失败时返回非 2xx 的 FAIL 应答，支付平台会按其策略重试。
    """
    body = await request.body()
    handler = NotificationHandler(context)
    try:
        return await handler.handle(request.headers, body)
    except ServiceException as e:
        return JSONResponse(
            status_code=status_for(e),
            content={"code": "FAIL", "message": e.message},
        )
    except Exception:
        logger.exception("[Notification] Unexpected error while handling webhook")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"code": "FAIL", "message": "Internal Server Error"},
        )

@router.post("/mock-pay", response_model=JsonResponse[MockPayResult], summary="[Dev] Simulate Payment")
async def mock_pay(pay_in: MockPayRequest, context: AppContext = PublicContextDep):
    """[Dev] 绕过支付平台直接结算订单，仅非生产环境可用。"""
    if settings.APP_ENV == "production":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    ledger = MembershipLedger(context)
    settled = await ledger.handle_payment_success(pay_in.order_number, f"MOCK{generate_nonce()[:24].upper()}")
    return JsonResponse(data=MockPayResult(order_number=pay_in.order_number, settled=settled))
