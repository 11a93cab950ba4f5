import logging
from typing import Callable, List, Optional

from n3x_client.gate import SessionGate
from n3x_client.inbox import OrderInbox
from n3x_client.net import TransportError
from n3x_client.publisher import PublishError, Publisher
from n3x_common.crypto import is_valid_public_key
from n3x_common.events import Event
from n3x_common.filters import offer_filter
from n3x_common.messages import Direction, OfferRecord, Offer, check_price, check_quantity, parse_offer_content
from n3x_common.tags import offer_direction, parse_direction

logger = logging.getLogger(__name__)

MENU = """=> Options
  1. Create New Offer
  2. Show Outstanding Offers
  3. Take Offer
  4. Respond to Order
  5. Quit"""


class MenuUI:
    '''
    Text menu. Every prompt re-asks until the input parses; every network
    failure is reported and control goes back to the menu.
    User input is collected before the session gate is taken.
    '''
    def __init__(self, gate: SessionGate, publisher: Publisher, inbox: OrderInbox,
                 query_timeout: float = 1.0,
                 read: Callable[[], str] = input, write: Callable[[str], None] = print):
        self.gate = gate
        self.publisher = publisher
        self.inbox = inbox
        self.query_timeout = query_timeout
        self.read = read
        self.write = write

    def run(self) -> None:
        self.write("n3x Nostr Derisk CLI")
        try:
            while True:
                self.write(MENU)
                choice = self.ask().strip()
                if choice == "5":
                    return
                self.run_command(choice)
                self.write("")
        except (EOFError, KeyboardInterrupt):
            self.write("")

    def run_command(self, choice: str) -> None:
        commands = {
            "1": self.create_offer,
            "2": self.show_offers,
            "3": self.take_offer,
            "4": self.respond_to_order,
        }
        command = commands.get(choice)
        if command is None:
            self.write("Invalid input. Please input a number.")
            return
        try:
            command()
        except (PublishError, TransportError) as e:
            logger.debug("command %s failed", choice, exc_info=True)
            self.write(f"Failed: {e}")

    # --------- prompts ----------
    def ask(self) -> str:
        text = self.read()
        self.write("")
        return text

    def get_offer_dir(self) -> Direction:
        while True:
            direction = parse_direction(self.ask())
            if direction is not None:
                return direction
            self.write("Unrecognized input. Please specify either 'Buy', 'Buying', 'Sell', or 'Selling'")

    def get_quantity(self) -> int:
        while True:
            try:
                return check_quantity(int(self.ask().strip()))
            except ValueError:
                self.write("Unrecognized input. Please input a non-negative integer")

    def get_price(self) -> int:
        while True:
            try:
                return check_price(int(self.ask().strip()))
            except ValueError:
                self.write("Unrecognized input. Please input an integer")

    def get_pubkey(self) -> str:
        while True:
            text = self.ask().strip()
            if is_valid_public_key(text):
                return text
            self.write("Unrecognized input. Please input a hex public key")

    def get_text(self) -> str:
        while True:
            text = self.ask().strip()
            if text:
                return text
            self.write("Please input a value")

    # --------- commands ----------
    def create_offer(self) -> None:
        self.write("Are you Buying or Selling?")
        direction = self.get_offer_dir()
        self.write("How many Sats?")
        quantity = self.get_quantity()
        self.write("At what price?")
        price = self.get_price()
        record_id = self.publisher.publish_offer(direction, quantity, price)
        self.write(f"Offer published: {record_id}")

    def show_offers(self) -> None:
        self.write("Are you trying to see Buy Offers, or Sell Offers?")
        direction = self.get_offer_dir()
        with self.gate.hold() as session:
            events = session.get_events_of([offer_filter(direction)], self.query_timeout)
        self.write(f"{len(events)} n3x {direction.value} offers found")
        for ev in events:
            record = to_offer_record(ev)
            if record is None:
                self.write(ev.as_json())
            else:
                self.write(f"  id: {record.id}  pubkey: {record.author}  "
                           f"quantity: {record.offer.quantity}  price: {record.offer.price}")

    def take_offer(self) -> None:
        self.write("What Offer ID?")
        offer_id = self.get_text()
        self.write("What Pubkey?")
        pubkey = self.get_pubkey()
        self.write("How many Sats?")
        quantity = self.get_quantity()
        self.write("At what price?")
        price = self.get_price()
        event_id = self.publisher.send_order(pubkey, offer_id, quantity, price)
        self.write(f"Order sent: {event_id}")

    def respond_to_order(self) -> None:
        pending = self.inbox.pending()
        if not pending:
            self.write("No orders waiting for a response.")
            return
        for i, r in enumerate(pending, 1):
            self.write(f"  {i}. order {r.order_id} from {r.msg.sender}: offer {r.order.offer_id}, "
                       f"quantity {r.order.quantity}, price {r.order.price}")
        self.write("Which order?")
        picked = self._pick(len(pending))
        received = pending[picked]
        self.write("Status code? (e.g. accepted, rejected)")
        status = self.get_text()
        event_id = self.publisher.send_confirmation(received.msg.sender, received.order_id, status)
        self.inbox.take(received.order_id)
        self.write(f"Confirmation sent: {event_id}")

    def _pick(self, count: int) -> int:
        while True:
            try:
                n = int(self.ask().strip())
            except ValueError:
                n = 0
            if 1 <= n <= count:
                return n - 1
            self.write(f"Please input a number between 1 and {count}")


def to_offer_record(ev: Event) -> Optional[OfferRecord]:
    ''' Read an offer event back into an OfferRecord; None if it is not a well-formed n3x offer '''
    direction = offer_direction(ev)
    if direction is None:
        return None
    try:
        fields = parse_offer_content(ev.content)
    except ValueError:
        logger.debug("offer %s has unreadable content", ev.id)
        return None
    return OfferRecord(id=ev.id, author=ev.pubkey, created_at=ev.created_at,
                       offer=Offer(direction, fields["quantity"], fields["price"]))

def offer_records(events: List[Event]) -> List[OfferRecord]:
    return [r for r in map(to_offer_record, events) if r is not None]
