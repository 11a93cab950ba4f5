"""Shared fixtures: identities and an in-memory relay network."""

from queue import Empty, Queue
from typing import List, Optional

import pytest

from n3x_client.net import EventNotification, ShutdownNotification, TransportError
from n3x_common.crypto import Keys, decrypt, encrypt, load_public_key
from n3x_common.events import KIND_ENCRYPTED_DIRECT_MESSAGE, Event, build_event
from n3x_common.filters import Filter, matches_any
from n3x_relay.state import RelayState

MEMORY_URL = "memory://relay"


class MemoryNetwork:
    """Stores events like a relay and pushes them to matching subscriptions."""

    def __init__(self):
        self.state = RelayState()
        self.subscriptions = []   # (session, filters)
        self.fail_next = None     # TransportError message for the next publish
        self.published: List[Event] = []

    def publish(self, ev: Event) -> str:
        if self.fail_next is not None:
            message, self.fail_next = self.fail_next, None
            raise TransportError(message)
        accepted, message = self.state.store(ev)
        if not accepted:
            raise TransportError(message)
        self.published.append(ev)
        for session, filters in self.subscriptions:
            if matches_any(filters, ev):
                session.deliver(EventNotification(MEMORY_URL, ev))
        return ev.id


class MemorySession:
    """Implements the session surface the client code uses, on top of MemoryNetwork."""

    def __init__(self, network: MemoryNetwork, keys: Keys):
        self.network = network
        self.keys = keys
        self.queue: Queue = Queue()

    def publish_event(self, kind: int, content: str, tags) -> str:
        return self.network.publish(build_event(self.keys, kind, content, tags))

    def send_direct_msg(self, recipient: str, plaintext: str) -> str:
        load_public_key(recipient)
        content = encrypt(self.keys.secret_key(), recipient, plaintext)
        return self.publish_event(KIND_ENCRYPTED_DIRECT_MESSAGE, content, [["p", recipient]])

    def subscribe(self, filters: List[Filter]) -> str:
        self.network.subscriptions.append((self, list(filters)))
        return f"sub-{len(self.network.subscriptions)}"

    def get_events_of(self, filters: List[Filter], timeout: float = 1.0) -> List[Event]:
        return self.network.state.query(filters)

    def decrypt(self, sender: str, content: str) -> str:
        return decrypt(self.keys.secret_key(), sender, content)

    def deliver(self, notification) -> None:
        self.queue.put(notification)

    def next_notification(self, timeout: Optional[float] = None):
        try:
            return self.queue.get(timeout=timeout)
        except Empty:
            return None

    def shutdown(self) -> None:
        self.queue.put(ShutdownNotification())


@pytest.fixture
def alice():
    return Keys.generate()


@pytest.fixture
def bob():
    return Keys.generate()


@pytest.fixture
def network():
    return MemoryNetwork()


@pytest.fixture
def alice_session(network, alice):
    return MemorySession(network, alice)


@pytest.fixture
def bob_session(network, bob):
    return MemorySession(network, bob)
