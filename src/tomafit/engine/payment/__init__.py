from .client import WechatPayClient, PlatformCertificate, RETRY_MESSAGE
from .notification import CallbackVerifier, VerifiedNotification
