import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

U64_MAX = 2 ** 64 - 1
I64_MIN, I64_MAX = -(2 ** 63), 2 ** 63 - 1


class Direction(Enum):
    BUY = "Buy"
    SELL = "Sell"

    def opposite(self) -> "Direction":
        return Direction.SELL if self is Direction.BUY else Direction.BUY


def is_int(value: Any) -> bool:
    # bool is an int subclass but never a valid amount on the wire
    return isinstance(value, int) and not isinstance(value, bool)

def check_quantity(value: Any) -> int:
    ''' quantity is an unsigned 64-bit count of base units (sats) '''
    if not is_int(value) or not 0 <= value <= U64_MAX:
        raise ValueError(f"quantity must be an integer in [0, {U64_MAX}], got {value!r}")
    return value

def check_price(value: Any) -> int:
    ''' price is a signed 64-bit number of price units per base unit '''
    if not is_int(value) or not I64_MIN <= value <= I64_MAX:
        raise ValueError(f"price must be an integer in [{I64_MIN}, {I64_MAX}], got {value!r}")
    return value


# Offer record as published to relays. Direction travels in the "x" tag,
# only quantity and price live in the content.
@dataclass(frozen=True)
class Offer:
    direction: Direction
    quantity: int
    price: int

    def __post_init__(self):
        check_quantity(self.quantity)
        check_price(self.price)

    def content_json(self) -> str:
        return json.dumps({"quantity": self.quantity, "price": self.price}, separators=(",", ":"))


@dataclass(frozen=True)
class Order:
    offer_id: str
    quantity: int
    price: int

    def __post_init__(self):
        if not isinstance(self.offer_id, str):
            raise ValueError("offer_id must be a string")
        check_quantity(self.quantity)
        check_price(self.price)


@dataclass(frozen=True)
class Confirmation:
    order_id: str
    status_code: str

    def __post_init__(self):
        if not isinstance(self.order_id, str) or not isinstance(self.status_code, str):
            raise ValueError("order_id and status_code must be strings")


# An offer as seen by a querent: the record plus who published it.
@dataclass(frozen=True)
class OfferRecord:
    id: str
    author: str
    created_at: int
    offer: Offer


def parse_offer_content(content: str) -> Dict[str, int]:
    '''
    This function parses the content of an offer record.
    Input: '{"quantity": <uint64>, "price": <int64>}'
    Output: dict with validated quantity and price
    Raises ValueError on anything else.
    '''
    try:
        obj = json.loads(content)
    except RecursionError as e:
        raise ValueError("offer content nested too deeply") from e
    if not isinstance(obj, dict):
        raise ValueError("offer content must be an object")
    return {"quantity": check_quantity(obj.get("quantity")), "price": check_price(obj.get("price"))}