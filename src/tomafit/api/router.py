# tomafit/api/router.py

from fastapi import APIRouter
from tomafit.api.v1 import member

# 小程序端已按 /member/* 发布，不加版本前缀
router = APIRouter()

# ===================================================================
# Membership & Payment Routes
# ===================================================================

router.include_router(member.router, prefix="/member", tags=["Membership & Payment"])
