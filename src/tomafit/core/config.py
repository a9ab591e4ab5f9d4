# tomafit/core/config.py

from dotenv import load_dotenv
load_dotenv(".env")
from dataclasses import dataclass
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field
from typing import Optional

@dataclass(frozen=True)
class PaymentConfig:
    """
    Everything the payment gateway needs, collected once at start-up.
    Only built when every required field is present (see Settings.payment_config).
    """
    app_id: str
    mch_id: str
    api_v3_key: str
    private_key_path: str
    notify_url: str
    platform_cert_path: str
    cert_path: Optional[str] = None
    cert_serial_no: Optional[str] = None
    public_key_path: Optional[str] = None
    public_key_id: Optional[str] = None
    base_url: str = "https://api.mch.weixin.qq.com"
    timeout_seconds: float = 15.0
    notify_max_skew_seconds: int = 300
    description_prefix: str = "番茄控卡"

class Settings(BaseSettings):
    # model_config 会自动加载 .env 文件
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    APP_ENV: str = "production"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_NAME: str = "tomafit"
    # 显式指定时优先于 DB_* 拼接结果 (e.g. sqlite+aiosqlite:// for local runs)
    DATABASE_URL: Optional[str] = None

    @computed_field
    @property
    def ASYNC_DATABASE_URL(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # --- WeChat Pay (v3) ---
    WECHAT_APPID: Optional[str] = None
    WECHAT_MCHID: Optional[str] = None
    WECHAT_PAY_API_V3_KEY: Optional[str] = None
    WECHAT_KEY_PATH: Optional[str] = Field(None, description="Merchant private key (PEM)")
    WECHAT_CERT_PATH: Optional[str] = Field(None, description="Merchant certificate (PEM); its serial identifies the signing key")
    WECHAT_CERT_SERIAL_NO: Optional[str] = Field(None, description="Used when WECHAT_CERT_PATH is not available")
    WECHAT_NOTIFY_URL: Optional[str] = None
    WECHAT_PLATFORM_CERT_PATH: Optional[str] = Field(None, description="Platform certificate file, or a directory of *.pem certificates")
    WECHAT_PAY_PUBLIC_KEY_PATH: Optional[str] = None
    WECHAT_PAY_PUBLIC_KEY_ID: Optional[str] = None
    WECHAT_PAY_BASE_URL: str = "https://api.mch.weixin.qq.com"
    WECHAT_PAY_TIMEOUT_SECONDS: float = 15.0
    WECHAT_NOTIFY_MAX_SKEW_SECONDS: int = 300
    WECHAT_ORDER_DESCRIPTION_PREFIX: str = "番茄控卡"

    # --- Membership ---
    MEMBER_ORDER_REUSE_MINUTES: int = 60

    def payment_config(self) -> Optional[PaymentConfig]:
        """
        Returns None when any required payment field is missing. Callers treat
        None as "payment disabled"; it never raises.
        """
        required = (
            self.WECHAT_APPID,
            self.WECHAT_MCHID,
            self.WECHAT_PAY_API_V3_KEY,
            self.WECHAT_KEY_PATH,
            self.WECHAT_NOTIFY_URL,
        )
        if not all(required):
            return None
        if not (self.WECHAT_CERT_PATH or self.WECHAT_CERT_SERIAL_NO):
            return None
        has_public_key = bool(self.WECHAT_PAY_PUBLIC_KEY_PATH and self.WECHAT_PAY_PUBLIC_KEY_ID)
        if not (self.WECHAT_PLATFORM_CERT_PATH or has_public_key):
            return None

        return PaymentConfig(
            app_id=self.WECHAT_APPID,
            mch_id=self.WECHAT_MCHID,
            api_v3_key=self.WECHAT_PAY_API_V3_KEY,
            private_key_path=self.WECHAT_KEY_PATH,
            notify_url=self.WECHAT_NOTIFY_URL,
            platform_cert_path=self.WECHAT_PLATFORM_CERT_PATH or "",
            cert_path=self.WECHAT_CERT_PATH,
            cert_serial_no=self.WECHAT_CERT_SERIAL_NO,
            public_key_path=self.WECHAT_PAY_PUBLIC_KEY_PATH if has_public_key else None,
            public_key_id=self.WECHAT_PAY_PUBLIC_KEY_ID if has_public_key else None,
            base_url=self.WECHAT_PAY_BASE_URL.rstrip("/"),
            timeout_seconds=self.WECHAT_PAY_TIMEOUT_SECONDS,
            notify_max_skew_seconds=self.WECHAT_NOTIFY_MAX_SKEW_SECONDS,
            description_prefix=self.WECHAT_ORDER_DESCRIPTION_PREFIX,
        )

settings = Settings()
