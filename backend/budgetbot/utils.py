"""
Shared utility functions.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from zoneinfo import ZoneInfo

MICROS = Decimal(1_000_000)
CENTS = Decimal("0.01")


def utcnow() -> datetime:
    """
    Return the current UTC time as a naive datetime (no tzinfo).
    Naive datetimes are used because our DB columns are TIMESTAMP WITHOUT TIME ZONE.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_now(tz_name: str) -> datetime:
    """Current wall-clock time in the business timezone (aware)."""
    return datetime.now(ZoneInfo(tz_name))


def to_naive_utc(dt: datetime) -> datetime:
    """Aware datetime -> naive UTC for storage. Naive input is assumed UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_phone(phone: Optional[str]) -> str:
    """Strip everything but digits and hyphens, the form the chat platform indexes."""
    return re.sub(r"[^0-9\-]", "", phone or "")


def parse_ad_platform_ids(raw: Optional[str]) -> list[str]:
    """
    CRM stores one Google Ads customer id per line, usually as 123-456-7890.
    The API wants the bare digits.
    """
    if not raw:
        return []
    ids = []
    for line in raw.replace("-", "").splitlines():
        line = line.strip()
        if line:
            ids.append(line)
    return ids


def micros_to_amount(micros: int) -> Decimal:
    return Decimal(int(micros or 0)) / MICROS


def amount_to_micros(amount) -> int:
    return int((Decimal(str(amount)) * MICROS).to_integral_value(rounding=ROUND_HALF_UP))


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def currency_format(value) -> str:
    """$1,234.50 style string for chat templates."""
    return f"${money(value):,.2f}"


def budget_format(value) -> str:
    """Budgets are shown without trailing zeros: 50 -> '50', 12.5 -> '12.5'."""
    d = Decimal(str(value)).normalize()
    if d == d.to_integral_value():
        d = d.quantize(Decimal(1))
    return format(d, "f")
