import secrets
import uuid
from datetime import datetime, timezone

ORDER_NO_PREFIX = "M"

def generate_nonce() -> str:
    return uuid.uuid4().hex

def generate_order_no(user_id: int, now: datetime) -> str:
    """
    M + epoch millis + zero-padded user id + 4 random digits.

    The millis/user part keeps numbers sortable per user; the random tail keeps
    two processes from colliding inside the same millisecond. At most 32 chars,
    which is the provider's limit for out_trade_no.
    """
    millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return f"{ORDER_NO_PREFIX}{millis}{user_id:06d}{secrets.randbelow(10000):04d}"
