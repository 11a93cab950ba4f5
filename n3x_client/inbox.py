import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from n3x_client.dispatcher import DirectMessage, Reply
from n3x_common.messages import Confirmation, Order


@dataclass(frozen=True)
class ReceivedOrder:
    order: Order
    msg: DirectMessage

    @property
    def order_id(self) -> str:
        # orders are referred to by the id of the direct message that carried them
        return self.msg.event_id


@dataclass(frozen=True)
class ReceivedConfirmation:
    confirmation: Confirmation
    msg: DirectMessage


class OrderInbox:
    '''
    Default handlers for the dispatcher: keep received orders until the user
    answers them from the menu, and keep the confirmations we got back.
    Handlers only append to bounded deques, so the dispatcher never waits on the user.
    '''
    def __init__(self, maxlen: int = 100, notify: Optional[Callable[[str], None]] = None):
        self._lock = threading.Lock()
        self._orders: Deque[ReceivedOrder] = deque(maxlen=maxlen)
        self._confirmations: Deque[ReceivedConfirmation] = deque(maxlen=maxlen)
        self._notify = notify   # e.g. print, to tell the user something arrived

    def on_order(self, order: Order, msg: DirectMessage, reply: Reply) -> None:
        with self._lock:
            self._orders.append(ReceivedOrder(order, msg))
        if self._notify:
            self._notify(f"New order {msg.event_id} from {msg.sender}: "
                         f"offer {order.offer_id}, quantity {order.quantity}, price {order.price}")

    def on_confirmation(self, confirmation: Confirmation, msg: DirectMessage, reply: Reply) -> None:
        with self._lock:
            self._confirmations.append(ReceivedConfirmation(confirmation, msg))
        if self._notify:
            self._notify(f"Order {confirmation.order_id} answered by {msg.sender}: {confirmation.status_code}")

    def pending(self) -> List[ReceivedOrder]:
        with self._lock:
            return list(self._orders)

    def confirmations(self) -> List[ReceivedConfirmation]:
        with self._lock:
            return list(self._confirmations)

    def take(self, order_id: str) -> Optional[ReceivedOrder]:
        ''' Remove and return a pending order once it has been answered '''
        with self._lock:
            for r in self._orders:
                if r.order_id == order_id:
                    self._orders.remove(r)
                    return r
        return None
