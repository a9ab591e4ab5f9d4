# tomafit/engine/payment/client.py

import json
import time
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa

from tomafit.core.config import PaymentConfig
from tomafit.services.exceptions import ConfigurationError, GatewayError
from tomafit.utils.id_generator import generate_nonce
from .crypto import (
    aead_decrypt, build_message, certificate_serial, check_api_v3_key,
    load_certificate, load_private_key, rsa_sign
)

logger = logging.getLogger(__name__)

AUTH_SCHEMA = "WECHATPAY2-SHA256-RSA2048"
JSAPI_PATH = "/v3/pay/transactions/jsapi"
NATIVE_PATH = "/v3/pay/transactions/native"
CERTIFICATES_PATH = "/v3/certificates"
CURRENCY = "CNY"

# 返回给终端用户的通用文案，不暴露网关原始报文
RETRY_MESSAGE = "payment is temporarily unavailable, please retry"

@dataclass(frozen=True)
class PlatformCertificate:
    serial_no: str
    effective_time: str
    expire_time: str
    pem: str

class WechatPayClient:
    """
    纯粹的、无数据库依赖的支付网关客户端 (v3 API)。
    负责请求签名、下单与平台证书下载；不做任何持久化。

    Unified-order calls are not guaranteed idempotent at the provider, so this
    client never retries on its own.
    """
    def __init__(
        self,
        config: PaymentConfig,
        private_key: rsa.RSAPrivateKey,
        merchant_serial_no: str,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config
        self.private_key = private_key
        self.merchant_serial_no = merchant_serial_no
        self.api_v3_key = check_api_v3_key(config.api_v3_key)
        self.http_client = http_client or httpx.AsyncClient(
            base_url=config.base_url, timeout=config.timeout_seconds
        )

    @classmethod
    def from_config(cls, config: PaymentConfig, http_client: Optional[httpx.AsyncClient] = None) -> "WechatPayClient":
        private_key = load_private_key(config.private_key_path)
        if config.cert_path:
            serial_no = certificate_serial(load_certificate(config.cert_path))
        elif config.cert_serial_no:
            serial_no = config.cert_serial_no.upper()
        else:
            raise ConfigurationError("Merchant certificate serial number is not configured.")
        return cls(config, private_key, serial_no, http_client=http_client)

    async def aclose(self):
        await self.http_client.aclose()

    # ==============================================================================
    # 下单
    # ==============================================================================

    async def create_in_app_transaction(
        self,
        description: str,
        order_no: str,
        amount_minor_units: int,
        payer_external_id: str,
        notify_url: Optional[str] = None
    ) -> Dict[str, str]:
        """JSAPI 下单，返回小程序端 wx.requestPayment 所需参数。"""
        body = self._transaction_body(description, order_no, amount_minor_units, notify_url)
        body["payer"] = {"openid": payer_external_id}

        data = await self._request("POST", JSAPI_PATH, body)
        prepay_id = data.get("prepay_id")
        if not prepay_id:
            raise GatewayError(RETRY_MESSAGE, raw_response=json.dumps(data, ensure_ascii=False), order_no=order_no)
        return self.build_jsapi_params(prepay_id)

    async def create_qr_transaction(
        self,
        description: str,
        order_no: str,
        amount_minor_units: int,
        notify_url: Optional[str] = None
    ) -> str:
        """Native 下单，返回用于生成二维码的 code_url。"""
        body = self._transaction_body(description, order_no, amount_minor_units, notify_url)

        data = await self._request("POST", NATIVE_PATH, body)
        code_url = data.get("code_url")
        if not code_url:
            raise GatewayError(RETRY_MESSAGE, raw_response=json.dumps(data, ensure_ascii=False), order_no=order_no)
        return code_url

    def build_jsapi_params(self, prepay_id: str) -> Dict[str, str]:
        time_stamp = str(int(time.time()))
        nonce_str = generate_nonce()
        package = f"prepay_id={prepay_id}"
        pay_sign = rsa_sign(
            self.private_key,
            build_message(self.config.app_id, time_stamp, nonce_str, package)
        )
        return {
            "appId": self.config.app_id,
            "timeStamp": time_stamp,
            "nonceStr": nonce_str,
            "package": package,
            "signType": "RSA",
            "paySign": pay_sign,
        }

    # ==============================================================================
    # 平台证书
    # ==============================================================================

    async def download_certificates(self) -> List[PlatformCertificate]:
        data = await self._request("GET", CERTIFICATES_PATH)
        certificates = []
        for item in data.get("data") or []:
            encrypted = item.get("encrypt_certificate") or {}
            try:
                pem = aead_decrypt(
                    self.api_v3_key,
                    encrypted["nonce"],
                    encrypted.get("associated_data", ""),
                    encrypted["ciphertext"],
                )
                certificates.append(PlatformCertificate(
                    serial_no=item["serial_no"],
                    effective_time=item.get("effective_time", ""),
                    expire_time=item.get("expire_time", ""),
                    pem=pem.decode("utf-8"),
                ))
            except KeyError as e:
                raise GatewayError(
                    RETRY_MESSAGE,
                    raw_response=json.dumps(item, ensure_ascii=False),
                    missing_field=str(e)
                )
        return certificates

    # ==============================================================================
    # 内部：签名请求
    # ==============================================================================

    def _transaction_body(self, description: str, order_no: str, amount_minor_units: int, notify_url: Optional[str]) -> Dict[str, Any]:
        return {
            "appid": self.config.app_id,
            "mchid": self.config.mch_id,
            "description": description,
            "out_trade_no": order_no,
            "notify_url": notify_url or self.config.notify_url,
            "amount": {"total": amount_minor_units, "currency": CURRENCY},
        }

    def _authorization(self, method: str, url_path: str, body: str) -> str:
        timestamp = str(int(time.time()))
        nonce_str = generate_nonce()
        signature = rsa_sign(
            self.private_key,
            build_message(method, url_path, timestamp, nonce_str, body)
        )
        return (
            f'{AUTH_SCHEMA} mchid="{self.config.mch_id}",nonce_str="{nonce_str}",'
            f'signature="{signature}",timestamp="{timestamp}",serial_no="{self.merchant_serial_no}"'
        )

    async def _request(self, method: str, url_path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """核心的 HTTP 请求执行逻辑。签名串中的 body 必须与实际发送的字节完全一致。"""
        payload = json.dumps(body, ensure_ascii=False, separators=(",", ":")) if body is not None else ""
        headers = {
            "Authorization": self._authorization(method, url_path, payload),
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        try:
            response = await self.http_client.request(
                method, url_path, headers=headers,
                content=payload.encode("utf-8") if payload else None
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"[WechatPay] {method} {url_path} failed with HTTP {e.response.status_code}: {e.response.text}"
            )
            raise GatewayError(
                RETRY_MESSAGE, status_code=e.response.status_code,
                raw_response=e.response.text, path=url_path
            )
        except httpx.RequestError as e:
            # 超时与网络层错误
            logger.error(f"[WechatPay] {method} {url_path} transport error: {e!r}")
            raise GatewayError(RETRY_MESSAGE, raw_response=repr(e), path=url_path)

        try:
            data = response.json()
        except ValueError:
            logger.error(f"[WechatPay] {method} {url_path} returned non-JSON body: {response.text[:500]}")
            raise GatewayError(
                RETRY_MESSAGE, status_code=response.status_code,
                raw_response=response.text, path=url_path
            )
        if not isinstance(data, dict):
            raise GatewayError(RETRY_MESSAGE, status_code=response.status_code, raw_response=response.text, path=url_path)
        return data
