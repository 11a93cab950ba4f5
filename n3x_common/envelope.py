"""
Application envelope carried inside encrypted direct messages.

Wire form: the 10-character marker "n3x_header" followed by the JSON of a
tagged union, either {"Order": {...}} or {"Confirm": {...}}. Anything that
does not start with the marker is someone else's traffic and decodes to None.
"""
import json
from typing import Any, Dict, Optional, Union

from n3x_common.messages import Confirmation, Order

HEADER = "n3x_header"
HEADER_LEN = len(HEADER)   # 10

ORDER_TAG = "Order"
CONFIRM_TAG = "Confirm"

Payload = Union[Order, Confirmation]


class EnvelopeMalformed(Exception):
    """Header matched but the body is not a valid Order/Confirm envelope."""
    pass


def encode(payload: Payload) -> str:
    if isinstance(payload, Order):
        body: Dict[str, Any] = {ORDER_TAG: {
            "offer_id": payload.offer_id,
            "quantity": payload.quantity,
            "price": payload.price,
        }}
    elif isinstance(payload, Confirmation):
        body = {CONFIRM_TAG: {
            "order_id": payload.order_id,
            "status_code": payload.status_code,
        }}
    else:
        raise TypeError(f"cannot encode {type(payload).__name__} as an envelope")
    return HEADER + json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def decode(raw: str) -> Optional[Payload]:
    '''
    Decode a decrypted direct message.
    Returns None when the header does not match (not our protocol).
    Raises EnvelopeMalformed when the header matches but the body is invalid.
    '''
    if not isinstance(raw, str) or raw[:HEADER_LEN] != HEADER:
        return None
    try:
        obj = json.loads(raw[HEADER_LEN:])
    except (ValueError, RecursionError) as e:   # deep nesting exhausts the parser
        raise EnvelopeMalformed(f"invalid JSON: {e}") from e

    if not isinstance(obj, dict) or len(obj) != 1:
        raise EnvelopeMalformed("envelope must be an object with exactly one variant")
    (tag, fields), = obj.items()
    if not isinstance(fields, dict):
        raise EnvelopeMalformed(f"{tag} body must be an object")

    try:
        if tag == ORDER_TAG:
            return Order(
                offer_id=fields["offer_id"],
                quantity=fields["quantity"],
                price=fields["price"],
            )
        if tag == CONFIRM_TAG:
            return Confirmation(
                order_id=fields["order_id"],
                status_code=fields["status_code"],
            )
    except KeyError as e:
        raise EnvelopeMalformed(f"{tag} is missing field {e}") from e
    except ValueError as e:
        raise EnvelopeMalformed(f"{tag}: {e}") from e
    raise EnvelopeMalformed(f"unknown variant {tag!r}")
