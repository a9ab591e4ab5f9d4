# tomafit/schemas/member/member_schemas.py

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    """小程序端使用驼峰字段名；服务端内部仍使用下划线。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

# --- Product Schemas ---
class ProductRead(CamelModel):
    id: str
    display_name: str
    price_minor_units: int
    original_price_minor_units: int
    duration_days: int
    recommended: bool = False

# --- Order Schemas ---
class MemberOrderCreate(CamelModel):
    external_user_id: str = Field(..., min_length=1, max_length=64)
    product_id: str = Field(..., min_length=1, max_length=32)

class MemberOrderCreated(CamelModel):
    order_id: int
    order_number: str
    payment_params: Dict[str, Any]

class NativeOrderCreated(CamelModel):
    order_id: int
    order_number: str
    code_url: str

class JsapiParamsRead(CamelModel):
    order_number: str
    product_name: str
    amount_minor_units: int
    payment_params: Dict[str, Any]

# --- Membership Schemas ---
class MembershipStatusRead(CamelModel):
    is_member: bool
    member_expire_at: Optional[datetime] = None

class MockPayRequest(CamelModel):
    order_number: str = Field(..., min_length=1, max_length=32)

class MockPayResult(CamelModel):
    order_number: str
    settled: bool

# --- Notification ---
class NotificationAck(BaseModel):
    """支付平台要求的应答格式。"""
    code: str = "SUCCESS"
    message: str = "成功"
