from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from tomafit.core.config import settings

def _engine_options(url: str) -> dict:
    # sqlite (local runs) does not take pool sizing options
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,   # 每次取连接时测试连通性，防止拿到失效连接
        "pool_recycle": 3600,    # 每隔1小时回收连接
    }

engine = create_async_engine(
    settings.ASYNC_DATABASE_URL,
    **_engine_options(settings.ASYNC_DATABASE_URL),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
    class_=AsyncSession
)

# 依赖项：为每个API请求提供一个独立的数据库会话
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides one session per request.

    Transactions are NOT opened here: the member services open their own
    `async with session.begin()` blocks so that no transaction stays open
    while the payment gateway is being called.
    """
    async with SessionLocal() as session:
        yield session
