"""
Shared schema types.

Money crosses the API boundary only through `Money`: request values
(strings or numbers, locale formats included) are parsed by
ledger.money.parse, and responses always carry a string with exactly two
fractional digits, e.g. "150.75".
"""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, PlainSerializer

from ledger import money
from ledger.exceptions import InvalidAmount


def _parse_money(value) -> Decimal:
    try:
        return money.parse(value)
    except InvalidAmount as exc:
        raise ValueError(exc.detail) from None


Money = Annotated[
    Decimal,
    BeforeValidator(_parse_money),
    PlainSerializer(money.to_str, return_type=str),
]


class MessageResponse(BaseModel):
    message: str
