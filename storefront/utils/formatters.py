# storefront/utils/formatters.py
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
import pytz
from ..config import Config

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def round_amount(amount: Decimal) -> Decimal:
    """Round to the nearest whole currency unit, halves away from zero"""
    return Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

def format_price(amount: Decimal) -> str:
    """Format an amount for display, e.g. 2459 -> '2,459'"""
    return f"{amount:,.0f}"

def format_datetime(dt: datetime) -> str:
    """Render a timestamp in the shop's time zone"""
    shop_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    local_time = dt.astimezone(shop_tz)
    return local_time.strftime("%Y-%m-%d %H:%M:%S")

def format_date(dt: datetime) -> str:
    shop_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(shop_tz).strftime("%d/%m/%Y")
