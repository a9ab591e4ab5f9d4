# tomafit/api/dependencies/context.py

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from tomafit.core.context import AppContext
from tomafit.db.session import get_db

async def get_app_context(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> AppContext:
    """
    构建请求级 AppContext。
    支付客户端与回调校验器在 lifespan 中创建并挂在 app.state 上；未配置支付时为 None。
    """
    return AppContext(
        db=db,
        payment_client=getattr(request.app.state, "payment_client", None),
        callback_verifier=getattr(request.app.state, "callback_verifier", None),
    )

# 会员/支付路由均为公共路由：调用方显式传入 externalUserId
PublicContextDep = Depends(get_app_context)
