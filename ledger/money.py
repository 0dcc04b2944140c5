"""
Exact money arithmetic.

Every monetary value in the ledger is a `decimal.Decimal` with exactly two
fractional digits. Values are rounded ROUND_HALF_UP after every operation
that produces something to persist or compare, and a binary float is never
used for arithmetic: float input is converted through its shortest repr
("150.75"), which is the literal the caller typed.

At rest, money columns use `ScaledDecimal`, which stores hundredths as an
integer. That keeps storage exact on every backend, SQLite included.

Usage:
    from ledger import money
    total = money.add("1.234,56", 10)      # Decimal("1244.56")
    money.to_str(total)                    # "1244.56"
"""

import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

from ledger.exceptions import DivisionByZero, InvalidAmount, ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

_STRIP = re.compile(r"[^\d,.\-]")


def round2(value: Decimal) -> Decimal:
    """Round to two places, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _normalize_string(raw: str) -> str:
    cleaned = _STRIP.sub("", raw.strip())
    negative = cleaned.startswith("-")
    cleaned = cleaned.replace("-", "")

    if "," in cleaned and "." in cleaned:
        # Whichever separator comes last is the decimal point
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        if cleaned.count(",") == 1:
            cleaned = cleaned.replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")

    if not cleaned or cleaned == ".":
        raise InvalidAmount(raw)
    return f"-{cleaned}" if negative else cleaned


def parse(value) -> Decimal:
    """
    Convert user or database input into a two-place Decimal.

    Accepts Decimal, int, float and locale-formatted strings such as
    "R$ 1.234,56", "1,234.56" or "-12,5".

    Raises:
        InvalidAmount: If the value cannot be read as a number.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(value)

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidAmount(value)
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(_normalize_string(value))
        except InvalidOperation:
            raise InvalidAmount(value) from None
    else:
        raise InvalidAmount(value)

    if not result.is_finite():
        raise InvalidAmount(value)
    return round2(result)


def add(*values) -> Decimal:
    total = Decimal(0)
    for value in values:
        total += parse(value)
    return round2(total)


def subtract(first, *values) -> Decimal:
    result = parse(first)
    for value in values:
        result -= parse(value)
    return round2(result)


def multiply(*values) -> Decimal:
    """Multiply exactly; only the final product is rounded."""
    if not values:
        return Decimal("1.00")
    result = Decimal(1)
    for value in values:
        result *= parse(value)
    return round2(result)


def divide(dividend, divisor) -> Decimal:
    divisor = parse(divisor)
    if divisor == 0:
        raise DivisionByZero()
    return round2(parse(dividend) / divisor)


def percent_of(value, percent) -> Decimal:
    """value × percent / 100, e.g. percent_of("1000", "10") == Decimal("100.00")"""
    return round2(parse(value) * parse(percent) / HUNDRED)


def split(total, parts: int) -> list[Decimal]:
    """
    Split a total into `parts` shares that add up to the total exactly.

    Each share is round(total / parts); the last share absorbs the
    rounding remainder, so 100.00 / 3 gives [33.33, 33.33, 33.34].
    """
    if parts < 1:
        raise DivisionByZero()
    total = parse(total)
    share = round2(total / parts)
    last = total - share * (parts - 1)
    if share <= 0 or last <= 0:
        raise ValidationError(f"Amount {total:.2f} is too small to split into {parts} parts")
    return [share] * (parts - 1) + [last]


def to_str(value) -> str:
    """Serialize for the API boundary: always two fractional digits."""
    return f"{parse(value):.2f}"


class ScaledDecimal(TypeDecorator):
    """
    Column type that stores a two-place Decimal as integer hundredths.

    150.75 is written as 15075 and read back as Decimal("150.75").
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return int(parse(value).scaleb(2))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return round2(Decimal(int(value)).scaleb(-2))
