"""
Outbound side of the protocol: offer records and Order/Confirm direct messages.

The module-level functions take a session the caller already holds (the
dispatcher replies this way); Publisher takes the gate itself for each call.
"""
import logging

from n3x_client.gate import SessionGate
from n3x_client.net import RelayClient, TransportError
from n3x_common import envelope
from n3x_common.crypto import load_public_key
from n3x_common.events import KIND_OFFER
from n3x_common.messages import Confirmation, Direction, Offer, Order
from n3x_common.tags import offer_tags

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """Raised when the relays reject or never confirm something we tried to publish."""
    pass


def publish_offer(session: RelayClient, direction: Direction, quantity: int, price: int) -> str:
    '''
    This function publishes (or replaces) our offer record.
    Input:
        - session: relay client, held by the caller
        - direction: Direction.BUY or Direction.SELL
        - quantity: sats, non-negative
        - price: sats per dollar
    Output: record (event) id
    '''
    offer = Offer(direction, quantity, price)   # ValueError on bad amounts, before anything is sent
    try:
        record_id = session.publish_event(KIND_OFFER, offer.content_json(), offer_tags(direction))
    except TransportError as e:
        raise PublishError(f"offer not published: {e}") from e
    logger.info("published %s offer %s (quantity=%d price=%d)", direction.value, record_id, quantity, price)
    return record_id

def send_order(session: RelayClient, recipient: str, offer_id: str, quantity: int, price: int) -> str:
    ''' Send an Order envelope to the author of an offer; returns the direct message's event id '''
    load_public_key(recipient)
    order = Order(offer_id=offer_id, quantity=quantity, price=price)
    return _send_envelope(session, recipient, envelope.encode(order), "order")

def send_confirmation(session: RelayClient, recipient: str, order_id: str, status_code: str) -> str:
    load_public_key(recipient)
    confirmation = Confirmation(order_id=order_id, status_code=status_code)
    return _send_envelope(session, recipient, envelope.encode(confirmation), "confirmation")

def _send_envelope(session: RelayClient, recipient: str, body: str, what: str) -> str:
    try:
        event_id = session.send_direct_msg(recipient, body)
    except TransportError as e:
        raise PublishError(f"{what} not sent: {e}") from e
    logger.info("sent %s %s to %s", what, event_id, recipient)
    return event_id


class Publisher:
    def __init__(self, gate: SessionGate):
        self.gate = gate

    def publish_offer(self, direction: Direction, quantity: int, price: int) -> str:
        with self.gate.hold() as session:
            return publish_offer(session, direction, quantity, price)

    def send_order(self, recipient: str, offer_id: str, quantity: int, price: int) -> str:
        with self.gate.hold() as session:
            return send_order(session, recipient, offer_id, quantity, price)

    def send_confirmation(self, recipient: str, order_id: str, status_code: str) -> str:
        with self.gate.hold() as session:
            return send_confirmation(session, recipient, order_id, status_code)
