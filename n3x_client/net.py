import logging, socket, threading, time, uuid
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Dict, List, Optional, Sequence, Union

from n3x_common.crypto import Keys, decrypt, encrypt, load_public_key
from n3x_common.events import KIND_ENCRYPTED_DIRECT_MESSAGE, Event, InvalidEvent, build_event, verify_event
from n3x_common.filters import Filter
from n3x_common.protocol import (
    CLOSE, EOSE, EVENT, NOTICE, OK, REQ, ProtocolError, forget, parse_address, recv_json, send_json,
)
from n3x_common.tags import recipient_tags

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5.0


class TransportError(Exception):
    """Raised when a relay operation (connect, publish, query) fails or times out."""
    pass


# What the relay pushes at us. The dispatcher consumes each one exactly once.
@dataclass(frozen=True)
class EventNotification:
    relay_url: str
    event: Event

@dataclass(frozen=True)
class MessageNotification:
    relay_url: str
    message: List[Any]

@dataclass(frozen=True)
class ShutdownNotification:
    pass

Notification = Union[EventNotification, MessageNotification, ShutdownNotification]

_EOSE = object()   # end-of-stored-events marker in query queues


class RelayConnection:
    ''' One TCP connection to one relay, with its own reader thread '''
    def __init__(self, url: str, on_message):
        self.url = url
        self.host, self.port = parse_address(url)
        self.sock: Optional[socket.socket] = None
        self.recv_thread: Optional[threading.Thread] = None
        self.running = False
        self._on_message = on_message   # callback(url, msg) from the reader thread
        self._send_lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self.running and self.sock is not None

    def connect(self, timeout: float = CONNECT_TIMEOUT) -> None:
        sock = socket.create_connection((self.host, self.port), timeout=timeout)
        sock.settimeout(None)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1) # send small frames immediately
        self.sock = sock
        self.running = True
        self.recv_thread = threading.Thread(target=self._recv_loop, daemon=True)
        self.recv_thread.start()

    def send(self, msg: List[Any]) -> None:
        if not self.connected:
            raise TransportError(f"not connected to {self.url}")
        try:
            with self._send_lock:
                send_json(self.sock, msg)
        except OSError as e:
            raise TransportError(f"send to {self.url} failed: {e}") from e

    def close(self) -> None:
        self.running = False
        sock, self.sock = self.sock, None
        if sock is None:
            return
        forget(sock)
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            sock.close()
        except OSError:
            pass

    def _recv_loop(self):
        ''' Thread function to receive messages from the relay '''
        sock = self.sock
        try:
            while self.running:
                self._on_message(self.url, recv_json(sock))
        except (ProtocolError, OSError) as e:
            if self.running:
                logger.warning("lost connection to relay %s: %s", self.url, e)
        finally:
            self.running = False


class RelayClient:
    '''
    The session: our identity plus connections to one or more relays.

    Capabilities used by the rest of the client:
        add_relay / connect, publish_event, send_direct_msg, subscribe,
        next_notification, get_events_of, decrypt, shutdown.
    None of these are thread safe against each other; callers go through SessionGate.
    '''
    def __init__(self, keys: Keys, relays: Sequence[str] = (), publish_timeout: float = 5.0):
        self.keys = keys
        self.publish_timeout = publish_timeout
        self._relays: Dict[str, RelayConnection] = {}
        self._notifications: "Queue[Notification]" = Queue()
        self._lock = threading.Lock()   # guards the waiter tables, reader threads touch them
        self._ok_wait: Dict[str, Queue] = {}
        self._query_wait: Dict[str, Queue] = {}
        self._subscriptions: Dict[str, List[Filter]] = {}
        for url in relays:
            self.add_relay(url)

    # --------- connection ----------
    def add_relay(self, url: str) -> None:
        ''' Register a relay endpoint; the address is validated now, the connection is made by connect() '''
        if url in self._relays:
            return
        try:
            self._relays[url] = RelayConnection(url, self._on_relay_message)
        except ValueError as e:
            raise TransportError(f"bad relay address {url!r}: {e}") from e

    def connect(self) -> None:
        '''
        Connect every registered relay that is not connected yet.
        Raises TransportError if no relay at all is reachable.
        '''
        if not self._relays:
            raise TransportError("no relay configured")
        errors = []
        for url, relay in self._relays.items():
            if relay.connected:
                continue
            try:
                relay.connect()
                logger.info("connected to relay %s", url)
            except OSError as e:
                logger.warning("cannot connect to relay %s: %s", url, e)
                errors.append(f"{url}: {e}")
                continue
            # resubscribe live subscriptions after a reconnect
            for sub_id, filters in list(self._subscriptions.items()):
                relay.send([REQ, sub_id] + [f.to_json() for f in filters])
        if not self._connected():
            raise TransportError("no relay reachable: " + "; ".join(errors))

    def relays(self) -> List[str]:
        return list(self._relays)

    def _connected(self) -> List[RelayConnection]:
        return [r for r in self._relays.values() if r.connected]

    def shutdown(self) -> None:
        ''' Stop the notification stream and close every relay connection '''
        self._notifications.put(ShutdownNotification())
        for relay in self._relays.values():
            relay.close()

    # --------- publishing ----------
    def send_event(self, event: Event) -> str:
        '''
        Send a signed event to every connected relay and wait for acceptance.
        Input:
            - event: signed Event
        Output: the event id, once at least one relay answered OK=true
        Raises TransportError if every relay refused it or none answered in time.
        '''
        relays = self._connected()
        if not relays:
            raise TransportError("not connected to any relay")

        replies: Queue = Queue()
        with self._lock:
            self._ok_wait[event.id] = replies
        try:
            sent = 0
            for relay in relays:
                try:
                    relay.send([EVENT, event.to_json()])
                    sent += 1
                except TransportError as e:
                    logger.warning("%s", e)
            if not sent:
                raise TransportError("event could not be sent to any relay")

            deadline = time.monotonic() + self.publish_timeout
            refusals = []
            while len(refusals) < sent:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    url, accepted, message = replies.get(timeout=remaining)
                except Empty:
                    break
                if accepted:
                    return event.id
                refusals.append(f"{url}: {message}")
            if refusals:
                raise TransportError("event refused: " + "; ".join(refusals))
            raise TransportError(f"no relay confirmed event {event.id} within {self.publish_timeout}s")
        finally:
            with self._lock:
                self._ok_wait.pop(event.id, None)

    def publish_event(self, kind: int, content: str, tags: List[List[str]]) -> str:
        ''' Sign a record with our identity and publish it '''
        return self.send_event(build_event(self.keys, kind, content, tags))

    def send_direct_msg(self, recipient: str, plaintext: str) -> str:
        '''
        Encrypt plaintext for recipient and publish it as a direct message.
        Raises ValueError for a malformed recipient key, TransportError if sending fails.
        '''
        load_public_key(recipient)
        content = encrypt(self.keys.secret_key(), recipient, plaintext)
        return self.publish_event(KIND_ENCRYPTED_DIRECT_MESSAGE, content, recipient_tags(recipient))

    def decrypt(self, sender: str, content: str) -> str:
        return decrypt(self.keys.secret_key(), sender, content)

    # --------- subscriptions and queries ----------
    def subscribe(self, filters: List[Filter]) -> str:
        ''' Open a long-lived subscription; matching events arrive as EventNotification '''
        sub_id = "sub-" + uuid.uuid4().hex[:12]
        with self._lock:
            self._subscriptions[sub_id] = list(filters)
        self._broadcast([REQ, sub_id] + [f.to_json() for f in filters])
        return sub_id

    def next_notification(self, timeout: Optional[float] = None) -> Optional[Notification]:
        ''' Block until the next notification; None if timeout expires first '''
        try:
            return self._notifications.get(timeout=timeout)
        except Empty:
            return None

    def get_events_of(self, filters: List[Filter], timeout: float = 1.0) -> List[Event]:
        '''
        One-shot query.
        Collects stored events until every relay has sent EOSE, or until timeout,
        then returns what has arrived (deduplicated, newest first).
        '''
        sub_id = "q-" + uuid.uuid4().hex[:12]
        inbox: Queue = Queue()
        with self._lock:
            self._query_wait[sub_id] = inbox
        try:
            sent = self._broadcast([REQ, sub_id] + [f.to_json() for f in filters])
            found: Dict[str, Event] = {}
            finished = 0
            deadline = time.monotonic() + timeout
            while finished < sent:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    item = inbox.get(timeout=remaining)
                except Empty:
                    break
                if item is _EOSE:
                    finished += 1
                else:
                    found.setdefault(item.id, item)
            return sorted(found.values(), key=lambda e: (-e.created_at, e.id))
        finally:
            with self._lock:
                self._query_wait.pop(sub_id, None)
            self._broadcast([CLOSE, sub_id], quiet=True)

    def _broadcast(self, msg: List[Any], quiet: bool = False) -> int:
        relays = self._connected()
        if not relays and not quiet:
            raise TransportError("not connected to any relay")
        sent = 0
        for relay in relays:
            try:
                relay.send(msg)
                sent += 1
            except TransportError as e:
                logger.warning("%s", e)
        if not sent and not quiet:
            raise TransportError(f"{msg[0]} could not be sent to any relay")
        return sent

    # --------- incoming (reader threads) ----------
    def _on_relay_message(self, url: str, msg: List[Any]) -> None:
        mtype = msg[0]
        if mtype == EVENT and len(msg) == 3 and isinstance(msg[1], str):
            self._on_event(url, msg[1], msg[2])
            return

        if mtype == OK and len(msg) >= 3 and isinstance(msg[1], str):
            with self._lock:
                q = self._ok_wait.get(msg[1])
            if q:
                q.put((url, bool(msg[2]), msg[3] if len(msg) > 3 else ""))
        elif mtype == EOSE and len(msg) == 2 and isinstance(msg[1], str):
            with self._lock:
                q = self._query_wait.get(msg[1])
            if q:
                q.put(_EOSE)
        elif mtype == NOTICE:
            logger.info("notice from %s: %s", url, msg[1] if len(msg) > 1 else "")
        self._notifications.put(MessageNotification(url, msg))

    def _on_event(self, url: str, sub_id: str, obj: Any) -> None:
        try:
            ev = Event.from_json(obj)
            verify_event(ev)
        except InvalidEvent as e:
            logger.warning("dropping invalid event from %s: %s", url, e)
            return
        with self._lock:
            q = self._query_wait.get(sub_id)
            live = sub_id in self._subscriptions
        if q:
            q.put(ev)
        elif live:
            self._notifications.put(EventNotification(url, ev))
