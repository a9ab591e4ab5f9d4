# tomafit/engine/payment/notification.py

import json
import time
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from tomafit.core.config import PaymentConfig
from tomafit.services.exceptions import (
    ConfigurationError, DecryptionFailedError, MalformedRequestError, SignatureInvalidError
)
from .crypto import (
    aead_decrypt, build_message, check_api_v3_key,
    load_platform_certificates, load_public_key, rsa_verify
)

logger = logging.getLogger(__name__)

HEADER_TIMESTAMP = "wechatpay-timestamp"
HEADER_NONCE = "wechatpay-nonce"
HEADER_SIGNATURE = "wechatpay-signature"
HEADER_SERIAL = "wechatpay-serial"
REQUIRED_HEADERS = (HEADER_TIMESTAMP, HEADER_NONCE, HEADER_SIGNATURE, HEADER_SERIAL)

SUPPORTED_ALGORITHM = "AEAD_AES_256_GCM"
TRADE_STATE_SUCCESS = "SUCCESS"

@dataclass(frozen=True)
class VerifiedNotification:
    """解密后的交易结果。只有 trade_state == SUCCESS 时才应进入结算。"""
    order_no: str
    transaction_id: Optional[str]
    trade_state: str
    amount_total: Optional[int] = None
    success_time: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.trade_state == TRADE_STATE_SUCCESS

class CallbackVerifier:
    """
    单次、无状态的回调校验流水线：
    1. 校验必需请求头
    2. 时间戳偏差与证书序列号
    3. 用平台公钥验签 (timestamp\\nnonce\\nbody\\n)
    4. AEAD_AES_256_GCM 解密 resource
    5. 解析交易结果

    验签通过之前绝不解密；本类不做任何持久化。
    """
    def __init__(
        self,
        api_v3_key: str,
        trusted_keys: Dict[str, rsa.RSAPublicKey],
        max_skew_seconds: int = 300,
        clock: Callable[[], float] = time.time
    ):
        self.api_v3_key = check_api_v3_key(api_v3_key)
        # serial 比较不区分大小写
        self.trusted_keys = {serial.upper(): key for serial, key in trusted_keys.items()}
        self.max_skew_seconds = max_skew_seconds
        self.clock = clock

    @classmethod
    def from_config(cls, config: PaymentConfig) -> "CallbackVerifier":
        trusted_keys: Dict[str, rsa.RSAPublicKey] = {}
        if config.platform_cert_path:
            trusted_keys.update(load_platform_certificates(config.platform_cert_path))
        if config.public_key_path and config.public_key_id:
            # 微信支付公钥模式：Wechatpay-Serial 携带的是公钥ID
            trusted_keys[config.public_key_id] = load_public_key(config.public_key_path)
        if not trusted_keys:
            raise ConfigurationError("No provider key is configured for webhook verification.")
        return cls(config.api_v3_key, trusted_keys, max_skew_seconds=config.notify_max_skew_seconds)

    def verify(self, headers: Mapping[str, str], body: bytes) -> VerifiedNotification:
        lowered = {key.lower(): value for key, value in headers.items()}
        missing = [name for name in REQUIRED_HEADERS if not lowered.get(name)]
        if missing:
            self._log_rejection("missing headers", lowered, body)
            raise MalformedRequestError(f"Missing notification headers: {', '.join(missing)}.")

        timestamp = lowered[HEADER_TIMESTAMP]
        nonce = lowered[HEADER_NONCE]
        signature = lowered[HEADER_SIGNATURE]
        serial = lowered[HEADER_SERIAL].upper()

        try:
            sent_at = int(timestamp)
        except ValueError:
            self._log_rejection("non-numeric timestamp", lowered, body)
            raise MalformedRequestError("Notification timestamp is not a number.")

        if abs(self.clock() - sent_at) > self.max_skew_seconds:
            self._log_rejection("timestamp outside allowed skew", lowered, body)
            raise SignatureInvalidError("Notification timestamp is outside the allowed window.")

        public_key = self.trusted_keys.get(serial)
        if public_key is None:
            self._log_rejection("unknown certificate serial", lowered, body)
            raise SignatureInvalidError("Notification is signed by an unknown certificate.", serial=serial)

        # body 按原始字节参与验签，不能先解码再重新序列化
        message = build_message(timestamp, nonce).encode("utf-8") + body + b"\n"
        if not rsa_verify(public_key, message, signature):
            self._log_rejection("signature mismatch", lowered, body)
            raise SignatureInvalidError("Notification signature is invalid.")

        resource = self._extract_resource(body)
        try:
            plaintext = aead_decrypt(
                self.api_v3_key,
                resource["nonce"],
                resource.get("associated_data") or "",
                resource["ciphertext"],
            )
        except DecryptionFailedError:
            self._log_rejection("decryption failed", lowered, body)
            raise

        return self._parse_transaction(plaintext)

    def _extract_resource(self, body: bytes) -> Dict[str, Any]:
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            raise MalformedRequestError("Notification body is not valid JSON.")

        resource = payload.get("resource") if isinstance(payload, dict) else None
        if not isinstance(resource, dict):
            raise MalformedRequestError("Notification body has no resource object.")
        # 兼容驼峰写法
        if "associatedData" in resource and "associated_data" not in resource:
            resource["associated_data"] = resource["associatedData"]
        for field in ("ciphertext", "nonce"):
            if not isinstance(resource.get(field), str):
                raise MalformedRequestError(f"Notification resource is missing '{field}'.")

        algorithm = resource.get("algorithm")
        if algorithm is not None and algorithm != SUPPORTED_ALGORITHM:
            raise MalformedRequestError(f"Unsupported resource algorithm '{algorithm}'.")
        return resource

    def _parse_transaction(self, plaintext: bytes) -> VerifiedNotification:
        try:
            transaction = json.loads(plaintext)
        except (ValueError, UnicodeDecodeError):
            raise DecryptionFailedError("Decrypted resource is not valid JSON.")
        if not isinstance(transaction, dict) or not transaction.get("out_trade_no"):
            raise MalformedRequestError("Decrypted resource has no out_trade_no.")

        amount = transaction.get("amount") or {}
        total = amount.get("total") if isinstance(amount, dict) else None
        return VerifiedNotification(
            order_no=transaction["out_trade_no"],
            transaction_id=transaction.get("transaction_id"),
            trade_state=transaction.get("trade_state") or "",
            amount_total=total if isinstance(total, int) else None,
            success_time=transaction.get("success_time"),
        )

    def _log_rejection(self, reason: str, headers: Mapping[str, str], body: bytes):
        """只记录可用于排查的脱敏信息，不记录报文正文与密钥。"""
        signature = headers.get(HEADER_SIGNATURE) or ""
        logger.error(
            f"[Notification] Rejected webhook ({reason}): "
            f"serial={headers.get(HEADER_SERIAL)} timestamp={headers.get(HEADER_TIMESTAMP)} "
            f"nonce={headers.get(HEADER_NONCE)} signature={signature[:8]}... "
            f"body_length={len(body)} body_sha256={hashlib.sha256(body).hexdigest()}"
        )
