# tomafit/core/context.py

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from tomafit.engine.payment import WechatPayClient, CallbackVerifier
from tomafit.services.exceptions import PaymentNotConfigured
from tomafit.services.member.product_catalog import ProductCatalog, product_catalog

class AppContext(BaseModel):
    """
    Defines the complete, typed context for service layer operations.
    This acts as a "contract" for what dependencies are available and is
    the single source of truth for service dependencies.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    # 核心数据库会话
    db: AsyncSession

    # 支付未配置时两者均为 None，在首次使用时才报错
    payment_client: Optional[WechatPayClient] = None
    callback_verifier: Optional[CallbackVerifier] = None

    catalog: ProductCatalog = Field(default_factory=lambda: product_catalog)

    @property
    def gateway(self) -> WechatPayClient:
        if self.payment_client is None:
            raise PaymentNotConfigured()
        return self.payment_client

    @property
    def verifier(self) -> CallbackVerifier:
        if self.callback_verifier is None:
            raise PaymentNotConfigured()
        return self.callback_verifier
