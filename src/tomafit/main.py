import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from tomafit.core.config import settings
from tomafit.api.router import router
from tomafit.api.errors import status_for
from tomafit.engine.payment import WechatPayClient, CallbackVerifier
from tomafit.services.exceptions import ServiceException, GatewayError

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- 支付网关生命周期 ---
    # 配置不完整时支付处于"未配置"状态，相关接口在调用时返回 503
    payment_config = settings.payment_config()
    if payment_config is None:
        logger.warning("Payment is not configured; member payment endpoints will return 503.")
        app.state.payment_client = None
        app.state.callback_verifier = None
    else:
        # 配置了但密钥/证书不可读时直接启动失败 (ConfigurationError)
        app.state.payment_client = WechatPayClient.from_config(payment_config)
        app.state.callback_verifier = CallbackVerifier.from_config(payment_config)
        logger.info(f"Payment enabled for merchant {payment_config.mch_id}")

    yield

    # --- 清理 ---
    if app.state.payment_client is not None:
        await app.state.payment_client.aclose()

app = FastAPI(title="tomafit", lifespan=lifespan)

#设置允许访问的域名
origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,  #设置允许的origins来源
    allow_credentials=True,
    allow_methods=["*"],  # 设置允许跨域的http方法，比如 get、post、put等。
    allow_headers=["*"])  #允许跨域的headers，可以用来鉴别来源等作用。

app.include_router(router)

@app.exception_handler(ServiceException)
async def service_exception_handler(request: Request, exc: ServiceException):
    # 处理所有来自服务层的、可预期的业务逻辑错误
    status_code = status_for(exc)
    if isinstance(exc, GatewayError) or status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind.value} {exc.message} {exc.context}")
    return JSONResponse(
        status_code=status_code,
        content={"status": status_code, "msg": exc.message, "data": None},
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    msg = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"status": status.HTTP_400_BAD_REQUEST, "msg": msg, "data": None},
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # 重写 FastAPI 默认的 HTTPException 处理器，以匹配我们的响应格式
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": exc.status_code, "msg": exc.detail, "data": None},
        headers=exc.headers,
    )

@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    # 这个处理器只处理真正未预料到的服务器内部错误
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"status": 500, "msg": "Internal Server Error", "data": None},
    )
