# tomafit/constants/product_constants.py

# --- Membership Product IDs ---
PRODUCT_MONTH = "month"
PRODUCT_QUARTER = "quarter"
PRODUCT_YEAR = "year"

# 价格单位：分 (CNY fen)。改价需要重新发布
MEMBER_PRODUCTS = [
    {
        "id": PRODUCT_MONTH,
        "display_name": "月卡会员",
        "price_minor_units": 990,
        "original_price_minor_units": 1990,
        "duration_days": 30,
        "recommended": False,
    },
    {
        "id": PRODUCT_QUARTER,
        "display_name": "季卡会员",
        "price_minor_units": 2990,
        "original_price_minor_units": 5990,
        "duration_days": 90,
        "recommended": False,
    },
    {
        "id": PRODUCT_YEAR,
        "display_name": "年卡会员",
        "price_minor_units": 4990,
        "original_price_minor_units": 19990,
        "duration_days": 365,
        "recommended": True,
    },
]
