from dataclasses import dataclass, field
from typing import Dict, List, Tuple
import socket
from threading import Lock

from n3x_common.events import Event, is_parameterized_replaceable
from n3x_common.filters import Filter
from n3x_common.protocol import send_json


@dataclass(eq=False)   # compare by identity
class Connection:   # one connected client
    addr: str
    sock: socket.socket
    subs: Dict[str, List[Filter]] = field(default_factory=dict)   # subscription id -> filters
    send_lock: Lock = field(default_factory=Lock)   # several handler threads may write to one socket

    def send(self, msg: list) -> None:
        with self.send_lock:
            send_json(self.sock, msg)


class RelayState:
    # This class holds stored events and connected clients
    def __init__(self):
        self.lock = Lock()  # guards everything below
        self.events: Dict[str, Event] = {}   # event id -> event
        self.replaceable: Dict[Tuple[str, int, str], str] = {}   # (author, kind, d tag) -> current event id
        self.connections: List[Connection] = []

    def add_connection(self, c: Connection) -> None:
        with self.lock:
            self.connections.append(c)

    def remove(self, c: Connection) -> None:
        with self.lock:
            if c in self.connections:
                self.connections.remove(c)

    def store(self, ev: Event) -> Tuple[bool, str]:
        '''
        This function stores an already verified event.
        Parameterized replaceable events supersede the previous record with
        the same author, kind and "d" tag; a record older than the current one is refused.
        Output: (accepted, message) as sent back in the OK frame
        '''
        with self.lock:
            if ev.id in self.events:
                return True, "duplicate: already have this event"
            if is_parameterized_replaceable(ev.kind):
                key = (ev.pubkey, ev.kind, ev.first_tag("d") or "")
                current_id = self.replaceable.get(key)
                if current_id is not None:
                    current = self.events[current_id]
                    if current.created_at > ev.created_at:
                        return False, "duplicate: have a newer version of this record"
                    del self.events[current_id]
                self.replaceable[key] = ev.id
            self.events[ev.id] = ev
            return True, ""

    def query(self, filters: List[Filter]) -> List[Event]:
        ''' Stored events matching any filter, newest first; each filter's limit applies to its own matches '''
        with self.lock:
            stored = sorted(self.events.values(), key=lambda e: (-e.created_at, e.id))
        found: Dict[str, Event] = {}
        for f in filters:
            hits = [e for e in stored if f.matches(e)]
            if f.limit is not None:
                hits = hits[:f.limit]
            for e in hits:
                found.setdefault(e.id, e)
        return sorted(found.values(), key=lambda e: (-e.created_at, e.id))

    def subscribers(self, ev: Event) -> List[Tuple[Connection, str]]:
        ''' (connection, subscription id) pairs whose live filters match the event '''
        out = []
        with self.lock:
            for c in self.connections:
                for sub_id, filters in c.subs.items():
                    if any(f.matches(ev) for f in filters):
                        out.append((c, sub_id))
        return out

    def set_subscription(self, c: Connection, sub_id: str, filters: List[Filter]) -> None:
        with self.lock:
            c.subs[sub_id] = filters

    def close_subscription(self, c: Connection, sub_id: str) -> None:
        with self.lock:
            c.subs.pop(sub_id, None)
