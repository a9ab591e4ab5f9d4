# tests/conftest.py

import os

# 必须在导入 tomafit 之前设置：settings 与 engine 在导入时创建
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["APP_ENV"] = "test"

import base64
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Callable, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tomafit.main import app
from tomafit.db.base import Base
from tomafit.db.session import get_db
from tomafit.core.config import PaymentConfig
from tomafit.core.context import AppContext
from tomafit.engine.payment import WechatPayClient, CallbackVerifier
from tomafit.models import User, MemberOrder
from tomafit.dao.identity.user_dao import UserDao
from tomafit.dao.member.member_order_dao import MemberOrderDao
from tomafit.utils import time_utils

API_V3_KEY = "0123456789abcdef0123456789abcdef"  # 32 bytes
MERCHANT_SERIAL = "3775B6A45ACD588826D15E583A95F5DD3F5F8E13"
PLATFORM_SERIAL = "5157F09EFDC096DE15EBE81A47057A7232F1B8E1"

# ==============================================================================
# 1. 密钥与证书 Fixtures (整个测试会话只生成一次)
# ==============================================================================

@dataclass
class KeyMaterial:
    merchant_key: rsa.RSAPrivateKey
    platform_key: rsa.RSAPrivateKey
    merchant_key_path: Path
    merchant_cert_path: Path
    platform_cert_path: Path

def _self_signed_cert(key: rsa.RSAPrivateKey, serial_hex: str, common_name: str) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(int(serial_hex, 16))
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )

def _write_pem(path: Path, data: bytes) -> Path:
    path.write_bytes(data)
    return path

@pytest.fixture(scope="session")
def key_material(tmp_path_factory) -> KeyMaterial:
    base = tmp_path_factory.mktemp("payment_keys")
    merchant_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    platform_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    merchant_key_path = _write_pem(base / "apiclient_key.pem", merchant_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))
    merchant_cert = _self_signed_cert(merchant_key, MERCHANT_SERIAL, "tomafit merchant")
    merchant_cert_path = _write_pem(base / "apiclient_cert.pem", merchant_cert.public_bytes(serialization.Encoding.PEM))

    platform_dir = base / "platform"
    platform_dir.mkdir()
    platform_cert = _self_signed_cert(platform_key, PLATFORM_SERIAL, "wechatpay platform")
    _write_pem(platform_dir / f"wechatpay_{PLATFORM_SERIAL}.pem", platform_cert.public_bytes(serialization.Encoding.PEM))

    return KeyMaterial(
        merchant_key=merchant_key,
        platform_key=platform_key,
        merchant_key_path=merchant_key_path,
        merchant_cert_path=merchant_cert_path,
        platform_cert_path=platform_dir,
    )

@pytest.fixture(scope="session")
def payment_config(key_material: KeyMaterial) -> PaymentConfig:
    return PaymentConfig(
        app_id="wx_test_appid",
        mch_id="1900000001",
        api_v3_key=API_V3_KEY,
        private_key_path=str(key_material.merchant_key_path),
        notify_url="https://tomafit.example.com/member/notification",
        platform_cert_path=str(key_material.platform_cert_path),
        cert_path=str(key_material.merchant_cert_path),
        base_url="https://api.mch.test",
    )

# ==============================================================================
# 2. 数据库 Fixtures (每个测试一个全新的内存数据库)
# ==============================================================================

@pytest.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    # StaticPool 让所有会话共享同一个内存数据库连接
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=test_engine, class_=AsyncSession
    )

    await test_engine.dispose()

@dataclass
class DbProbe:
    """测试断言用的只读访问；每次读取都使用新会话，避免读到会话缓存。"""
    session_factory: async_sessionmaker

    async def order(self, order_no: str) -> Optional[MemberOrder]:
        async with self.session_factory() as session:
            return await MemberOrderDao(session).get_by_order_no(order_no)

    async def orders_for(self, user_id: int) -> List[MemberOrder]:
        async with self.session_factory() as session:
            return await MemberOrderDao(session).get_list(where={"user_id": user_id}, order=[MemberOrder.id])

    async def user(self, user_id: int) -> Optional[User]:
        async with self.session_factory() as session:
            return await UserDao(session).get_by_pk(user_id)

@pytest.fixture
def db(session_factory) -> DbProbe:
    return DbProbe(session_factory)

@pytest.fixture
def user_factory(session_factory) -> Callable:
    """创建并提交一个用户，返回 ORM 对象。"""
    async def _create(member_expire_at: Optional[datetime] = None, external_id: Optional[str] = None) -> User:
        async with session_factory() as session:
            async with session.begin():
                user = User(
                    external_id=external_id or f"openid_{uuid.uuid4().hex[:16]}",
                    nick_name="番茄用户",
                    member_expire_at=member_expire_at,
                )
                session.add(user)
            return user
    return _create

class FrozenClock:
    """可拨动的时钟，替换 time_utils.utcnow。"""
    def __init__(self, now: datetime):
        self.now = now

    def advance(self, delta: timedelta):
        self.now = self.now + delta

@pytest.fixture
def frozen_now(monkeypatch) -> FrozenClock:
    clock = FrozenClock(datetime(2026, 3, 1, 8, 0, 0))
    monkeypatch.setattr(time_utils, "utcnow", lambda: clock.now)
    return clock

# ==============================================================================
# 3. 支付网关与回调 Fixtures
# ==============================================================================

@pytest.fixture
def gateway_mock(payment_config: PaymentConfig) -> MagicMock:
    """
    WechatPayClient 的 mock。每次下单返回不同的 prepay_id，
    以便断言复用逻辑没有重复调用网关。
    """
    gateway = MagicMock(spec=WechatPayClient)
    gateway.config = payment_config
    counter = {"n": 0}

    async def _jsapi(description, order_no, amount_minor_units, payer_external_id, notify_url=None):
        counter["n"] += 1
        return {
            "appId": payment_config.app_id,
            "timeStamp": str(int(time.time())),
            "nonceStr": uuid.uuid4().hex,
            "package": f"prepay_id=wx_prepay_{counter['n']}",
            "signType": "RSA",
            "paySign": "c2lnbmF0dXJl",
        }

    async def _native(description, order_no, amount_minor_units, notify_url=None):
        counter["n"] += 1
        return f"weixin://wxpay/bizpayurl?pr=test{counter['n']}"

    gateway.create_in_app_transaction.side_effect = _jsapi
    gateway.create_qr_transaction.side_effect = _native
    return gateway

@pytest.fixture
def callback_verifier(key_material: KeyMaterial) -> CallbackVerifier:
    return CallbackVerifier(API_V3_KEY, {PLATFORM_SERIAL: key_material.platform_key.public_key()})

@pytest.fixture
def notification_factory(key_material: KeyMaterial) -> Callable[..., Tuple[Dict[str, str], bytes]]:
    """
    构造一条与支付平台格式一致的回调：AES-256-GCM 加密 resource，平台私钥签名。
    返回 (headers, body)。
    """
    def _build(
        order_no: str,
        trade_state: str = "SUCCESS",
        transaction_id: Optional[str] = "4200000000202603010000000001",
        amount_total: int = 990,
        timestamp: Optional[int] = None,
        serial: str = PLATFORM_SERIAL,
        corrupt_ciphertext: bool = False,
        algorithm: str = "AEAD_AES_256_GCM",
    ) -> Tuple[Dict[str, str], bytes]:
        transaction = {
            "appid": "wx_test_appid",
            "mchid": "1900000001",
            "out_trade_no": order_no,
            "trade_state": trade_state,
            "trade_state_desc": "支付成功",
            "success_time": "2026-03-01T16:00:00+08:00",
            "amount": {"total": amount_total, "payer_total": amount_total, "currency": "CNY"},
        }
        if transaction_id is not None:
            transaction["transaction_id"] = transaction_id

        resource_nonce = uuid.uuid4().hex[:12]
        associated_data = "transaction"
        ciphertext = AESGCM(API_V3_KEY.encode()).encrypt(
            resource_nonce.encode(),
            json.dumps(transaction).encode(),
            associated_data.encode(),
        )
        if corrupt_ciphertext:
            # 翻转第一个字节，GCM 认证必然失败
            ciphertext = bytes([ciphertext[0] ^ 0xFF]) + ciphertext[1:]
        body = json.dumps({
            "id": str(uuid.uuid4()),
            "create_time": "2026-03-01T16:00:01+08:00",
            "event_type": "TRANSACTION.SUCCESS",
            "resource_type": "encrypt-resource",
            "summary": "支付成功",
            "resource": {
                "algorithm": algorithm,
                "original_type": "transaction",
                "ciphertext": base64.b64encode(ciphertext).decode(),
                "associated_data": associated_data,
                "nonce": resource_nonce,
            },
        }, ensure_ascii=False).encode("utf-8")

        ts = str(timestamp if timestamp is not None else int(time.time()))
        nonce = uuid.uuid4().hex
        message = f"{ts}\n{nonce}\n".encode() + body + b"\n"
        signature = key_material.platform_key.sign(message, padding.PKCS1v15(), hashes.SHA256())
        headers = {
            "Wechatpay-Timestamp": ts,
            "Wechatpay-Nonce": nonce,
            "Wechatpay-Signature": base64.b64encode(signature).decode(),
            "Wechatpay-Serial": serial,
            "Content-Type": "application/json",
        }
        return headers, body
    return _build

@pytest.fixture
def context_factory(session_factory, gateway_mock, callback_verifier) -> Callable[..., AppContext]:
    """为服务层测试构建 AppContext；每次调用都打开一个新会话。"""
    def _build(with_payment: bool = True) -> AppContext:
        return AppContext(
            db=session_factory(),
            payment_client=gateway_mock if with_payment else None,
            callback_verifier=callback_verifier if with_payment else None,
        )
    return _build

# ==============================================================================
# 4. API 客户端 Fixture
# ==============================================================================

@pytest.fixture(scope="function")
async def client(session_factory, gateway_mock, callback_verifier) -> AsyncGenerator[AsyncClient, None]:
    """
    通过 ASGITransport 直接调用 FastAPI 应用。
    get_db 被替换为测试数据库；支付客户端与校验器直接挂在 app.state 上
    (ASGITransport 不会触发 lifespan)。
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.payment_client = gateway_mock
    app.state.callback_verifier = callback_verifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
    app.state.payment_client = None
    app.state.callback_verifier = None
