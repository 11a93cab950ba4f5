import hashlib, json, time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from n3x_common.crypto import Keys, sign, verify

KIND_ENCRYPTED_DIRECT_MESSAGE = 4
KIND_OFFER = 30078   # parameterized replaceable, one record per (author, d tag)


class InvalidEvent(Exception):
    """Raised when an event has the wrong shape, id or signature."""
    pass


# Everything the relay stores and forwards is an Event. The id commits to
# every field but the signature, so relays and peers can check it independently.
@dataclass(frozen=True)
class Event:
    id: str
    pubkey: str          # author, hex public key
    created_at: int      # unix seconds
    kind: int
    tags: List[List[str]] = field(default_factory=list)
    content: str = ""
    sig: str = ""

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(t) for t in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def as_json(self) -> str:
        return json.dumps(self.to_json(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, obj: Any) -> "Event":
        '''
        Build an Event from its JSON object form. Only the shape is checked here;
        use verify_event() to check id and signature.
        '''
        if not isinstance(obj, dict):
            raise InvalidEvent("event must be an object")
        try:
            tags = obj["tags"]
            if not isinstance(tags, list) or not all(
                isinstance(t, list) and all(isinstance(v, str) for v in t) for t in tags
            ):
                raise InvalidEvent("tags must be a list of string lists")
            ev = cls(
                id=obj["id"],
                pubkey=obj["pubkey"],
                created_at=obj["created_at"],
                kind=obj["kind"],
                tags=[list(t) for t in tags],
                content=obj["content"],
                sig=obj["sig"],
            )
        except KeyError as e:
            raise InvalidEvent(f"missing field {e}") from e
        for name in ("id", "pubkey", "content", "sig"):
            if not isinstance(getattr(ev, name), str):
                raise InvalidEvent(f"{name} must be a string")
        for name in ("created_at", "kind"):
            value = getattr(ev, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidEvent(f"{name} must be an integer")
        return ev

    def first_tag(self, name: str) -> Optional[str]:
        for t in self.tags:
            if len(t) >= 2 and t[0] == name:
                return t[1]
        return None


def compute_id(pubkey: str, created_at: int, kind: int, tags: List[List[str]], content: str) -> str:
    ''' sha256 over the canonical array [0, pubkey, created_at, kind, tags, content] '''
    canonical = json.dumps([0, pubkey, created_at, kind, tags, content],
                           separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

def build_event(keys: Keys, kind: int, content: str, tags: Optional[List[List[str]]] = None,
                created_at: Optional[int] = None) -> Event:
    '''
    This function builds and signs an event.
    Input:
        - keys: author identity
        - kind: event kind
        - content: event content string
        - tags: list of [name, value, ...] lists
        - created_at: unix seconds (defaults to now)
    Output: signed Event
    '''
    tags = [list(t) for t in (tags or [])]
    ts = int(time.time()) if created_at is None else int(created_at)
    event_id = compute_id(keys.public_key, ts, kind, tags, content)
    return Event(
        id=event_id,
        pubkey=keys.public_key,
        created_at=ts,
        kind=kind,
        tags=tags,
        content=content,
        sig=sign(keys.secret_key(), event_id),
    )

def verify_event(ev: Event) -> None:
    ''' Raise InvalidEvent unless the id matches the content and the signature matches the author '''
    expected = compute_id(ev.pubkey, ev.created_at, ev.kind, ev.tags, ev.content)
    if ev.id != expected:
        raise InvalidEvent("id does not match event content")
    if not verify(ev.pubkey, ev.id, ev.sig):
        raise InvalidEvent("bad signature")

def is_parameterized_replaceable(kind: int) -> bool:
    return 30000 <= kind < 40000
