"""Late-filing penalty arithmetic for Indian statutory requirements."""

import re
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation


NOT_APPLICABLE = "Not applicable"
CANNOT_CALCULATE = "Cannot calculate - Insufficient information"

_CURRENCY = r"(?:₹|Rs\.?|INR)"
_AMOUNT = r"[\d,]+(?:\.\d+)?"

DAILY_RATE_RE = re.compile(rf"{_CURRENCY}?{_AMOUNT}/day", re.IGNORECASE)
MAX_CAP_RE = re.compile(rf"max\s*{_CURRENCY}?({_AMOUNT})", re.IGNORECASE)
FIXED_KEYWORDS_RE = re.compile(r"fixed|one-time|one time|flat|lump", re.IGNORECASE)
RUPEE_AMOUNT_RE = re.compile(rf"₹{_AMOUNT}")
PLAIN_AMOUNT_RE = re.compile(_AMOUNT)
ONLY_AMOUNT_RE = re.compile(rf"^{_AMOUNT}$")


def _to_decimal(raw: str) -> Decimal | None:
    try:
        value = Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None
    return value if value > 0 else None


def format_inr(amount: Decimal | int | float) -> str:
    """
    Format an amount as rupees with Indian digit grouping.

    >>> format_inr(150000)
    '₹1,50,000'
    >>> format_inr(1234.5)
    '₹1,234.5'
    """
    value = Decimal(str(amount)).quantize(Decimal("0.001"), rounding=ROUND_HALF_EVEN)
    sign = "-" if value < 0 else ""
    integer_part, _, fraction = f"{abs(value):f}".partition(".")
    fraction = fraction.rstrip("0")

    if len(integer_part) > 3:
        head, tail = integer_part[:-3], integer_part[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        integer_part = ",".join(groups + [tail])

    return f"{sign}₹{integer_part}" + (f".{fraction}" if fraction else "")


def calculate_days_delayed(
    due_date: date | None,
    status: str,
    today: date | None = None,
) -> int | None:
    """Days past the due date, or None if not delayed or not applicable."""
    if status in ("completed", "upcoming") or due_date is None:
        return None

    today = today or datetime.now(timezone.utc).date()
    delay = (today - due_date).days
    return delay if delay > 0 else None


def calculate_exact_penalty(penalty: str | None, days_delayed: int | None) -> str:
    """
    Estimate the accrued penalty from a free-text penalty description.

    Understands a per-day rate (optionally capped with "max"), a fixed or
    one-time amount, and a bare number which is treated as a per-day rate.
    """
    if not penalty or not days_delayed or days_delayed <= 0:
        return NOT_APPLICABLE

    text = penalty.strip()

    daily = DAILY_RATE_RE.search(text)
    if daily:
        rate_str = re.sub(rf"{_CURRENCY}|/day", "", daily.group(0), flags=re.IGNORECASE)
        rate = _to_decimal(rate_str)
        if rate is not None:
            total = rate * days_delayed
            cap_match = MAX_CAP_RE.search(text)
            if cap_match:
                cap = _to_decimal(cap_match.group(1))
                if cap is not None:
                    total = min(total, cap)
            return format_inr(total)

    if FIXED_KEYWORDS_RE.search(text):
        rupees = RUPEE_AMOUNT_RE.search(text)
        if rupees:
            return rupees.group(0)
        plain = PLAIN_AMOUNT_RE.search(text)
        if plain:
            amount = _to_decimal(plain.group(0))
            if amount is not None:
                return format_inr(amount)

    if ONLY_AMOUNT_RE.match(text):
        amount = _to_decimal(text)
        if amount is not None:
            return format_inr(amount * days_delayed)

    return CANNOT_CALCULATE
