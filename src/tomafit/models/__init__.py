# tomafit/models/__init__.py

from .identity import User
from .member import (
    MemberOrder,
    MemberOrderStatus,
    TradeType
)
