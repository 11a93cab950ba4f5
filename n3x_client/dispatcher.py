"""
Background loop that classifies inbound notifications and routes n3x
direct messages to the order / confirmation handlers.

    Event, kind 4    -> decrypt -> decode envelope
                         Order         -> on_order
                         Confirmation  -> on_confirmation
                         not n3x       -> ignored (counted as foreign)
                         malformed     -> logged, dropped
                       decrypt fails -> logged, dropped
    Event, any kind  -> ignored (offers are fetched by query)
    Message          -> ignored
    Shutdown         -> loop ends

Each notification is judged once; nothing is retried.
"""
import logging, threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Optional, Set

from n3x_client.gate import SessionGate
from n3x_client.net import (
    EventNotification, MessageNotification, Notification, RelayClient, ShutdownNotification,
)
from n3x_client.publisher import send_confirmation
from n3x_common import envelope
from n3x_common.crypto import DecryptionError
from n3x_common.events import KIND_ENCRYPTED_DIRECT_MESSAGE, Event
from n3x_common.messages import Confirmation, Order

logger = logging.getLogger(__name__)


# Where a decoded payload came from
@dataclass(frozen=True)
class DirectMessage:
    event_id: str
    sender: str
    created_at: int
    relay_url: str


Reply = Callable[[str, str], str]   # reply(order_id, status_code) -> confirmation event id
OrderHandler = Callable[[Order, DirectMessage, Reply], None]
ConfirmationHandler = Callable[[Confirmation, DirectMessage, Reply], None]


@dataclass
class DispatchStats:
    notifications: int = 0
    events: int = 0
    messages: int = 0
    orders: int = 0
    confirmations: int = 0
    foreign: int = 0            # decrypted fine but not an n3x envelope
    malformed: int = 0
    decrypt_failures: int = 0
    duplicates: int = 0
    handler_errors: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def bump(self, name: str) -> None:
        with self.lock:
            setattr(self, name, getattr(self, name) + 1)


class Dispatcher:
    '''
    Consumes notifications from `receive` (the session's notification channel,
    read without holding the gate) and takes the gate once per direct message,
    for the whole decrypt -> decode -> route -> reply sequence.
    '''
    def __init__(self, gate: SessionGate, receive: Callable[[], Notification],
                 on_order: Optional[OrderHandler] = None,
                 on_confirmation: Optional[ConfirmationHandler] = None,
                 seen_window: int = 4096):
        self.gate = gate
        self.receive = receive
        self.on_order = on_order
        self.on_confirmation = on_confirmation
        self.stats = DispatchStats()
        self._seen: Set[str] = set()
        self._seen_order: Deque[str] = deque()
        self._seen_window = seen_window
        self._thread: Optional[threading.Thread] = None

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name="n3x-dispatcher", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        ''' Loop until a Shutdown notification arrives '''
        logger.debug("dispatcher started")
        while True:
            notification = self.receive()
            if notification is None:
                continue
            if not self.handle(notification):
                break
        logger.debug("dispatcher stopped: %s", self.stats)

    def handle(self, notification: Notification) -> bool:
        '''
        Judge one notification.
        Output: False for Shutdown (stop the loop), True otherwise
        '''
        self.stats.bump("notifications")
        if isinstance(notification, ShutdownNotification):
            logger.info("shutdown notification received")
            return False
        if isinstance(notification, MessageNotification):
            self.stats.bump("messages")
            return True
        if isinstance(notification, EventNotification):
            self.stats.bump("events")
            if notification.event.kind == KIND_ENCRYPTED_DIRECT_MESSAGE:
                self._on_direct_message(notification.relay_url, notification.event)
            return True
        logger.warning("unknown notification type %s", type(notification).__name__)
        return True

    def _first_sighting(self, event_id: str) -> bool:
        # the same event may reach us through several relays
        if event_id in self._seen:
            return False
        self._seen.add(event_id)
        self._seen_order.append(event_id)
        if len(self._seen_order) > self._seen_window:
            self._seen.discard(self._seen_order.popleft())
        return True

    def _on_direct_message(self, relay_url: str, ev: Event) -> None:
        if not self._first_sighting(ev.id):
            self.stats.bump("duplicates")
            return
        with self.gate.hold() as session:
            self._process(session, relay_url, ev)

    def _process(self, session: RelayClient, relay_url: str, ev: Event) -> None:
        try:
            plaintext = session.decrypt(ev.pubkey, ev.content)
        except DecryptionError as e:
            self.stats.bump("decrypt_failures")
            logger.warning("failed to decrypt direct message %s from %s: %s", ev.id, ev.pubkey, e)
            return

        try:
            payload = envelope.decode(plaintext)
        except envelope.EnvelopeMalformed as e:
            self.stats.bump("malformed")
            logger.warning("malformed n3x message %s from %s: %s", ev.id, ev.pubkey, e)
            return
        if payload is None:
            self.stats.bump("foreign")
            logger.debug("ignoring non-n3x direct message %s", ev.id)
            return

        msg = DirectMessage(event_id=ev.id, sender=ev.pubkey, created_at=ev.created_at, relay_url=relay_url)

        def reply(order_id: str, status_code: str) -> str:
            return send_confirmation(session, ev.pubkey, order_id, status_code)

        if isinstance(payload, Order):
            self.stats.bump("orders")
            self._call(self.on_order, payload, msg, reply)
        else:
            self.stats.bump("confirmations")
            self._call(self.on_confirmation, payload, msg, reply)

    def _call(self, handler, payload, msg: DirectMessage, reply: Reply) -> None:
        if handler is None:
            logger.info("no handler for %s from %s: %s", type(payload).__name__, msg.sender, payload)
            return
        try:
            handler(payload, msg, reply)
        except Exception:
            # a broken handler must not take the loop down
            self.stats.bump("handler_errors")
            logger.exception("handler failed for %s %s", type(payload).__name__, msg.event_id)
