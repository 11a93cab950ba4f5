from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from n3x_common.events import KIND_OFFER, Event
from n3x_common.messages import Direction
from n3x_common.tags import APP_ID, APP_TAG, DIRECTION_TAG, RECIPIENT_TAG, direction_tag_value


# Filters are values: equal inputs give equal filters and identical JSON,
# so two independent clients asking for "Sell offers" ask the relay the same thing.
@dataclass(frozen=True)
class Filter:
    ids: Tuple[str, ...] = ()
    authors: Tuple[str, ...] = ()
    kinds: Tuple[int, ...] = ()
    tags: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()   # sorted by tag name
    since: Optional[int] = None
    until: Optional[int] = None
    limit: Optional[int] = None

    @classmethod
    def build(cls, *, ids: Iterable[str] = (), authors: Iterable[str] = (), kinds: Iterable[int] = (),
              tags: Optional[Mapping[str, Iterable[str]]] = None, since: Optional[int] = None,
              until: Optional[int] = None, limit: Optional[int] = None) -> "Filter":
        tag_items = tuple(sorted((name, tuple(values)) for name, values in (tags or {}).items()))
        return cls(
            ids=tuple(ids),
            authors=tuple(authors),
            kinds=tuple(kinds),
            tags=tag_items,
            since=since,
            until=until,
            limit=limit,
        )

    def tag(self, name: str) -> Tuple[str, ...]:
        for n, values in self.tags:
            if n == name:
                return values
        return ()

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.ids:
            out["ids"] = list(self.ids)
        if self.authors:
            out["authors"] = list(self.authors)
        if self.kinds:
            out["kinds"] = list(self.kinds)
        for name, values in self.tags:
            out["#" + name] = list(values)
        if self.since is not None:
            out["since"] = self.since
        if self.until is not None:
            out["until"] = self.until
        if self.limit is not None:
            out["limit"] = self.limit
        return out

    @classmethod
    def from_json(cls, obj: Any) -> "Filter":
        '''
        Parse the JSON object form of a filter, as received by a relay.
        Raises ValueError on unknown keys or wrongly typed values.
        '''
        if not isinstance(obj, dict):
            raise ValueError("filter must be an object")
        kw: Dict[str, Any] = {"tags": {}}
        for key, value in obj.items():
            if key in ("ids", "authors"):
                kw[key] = _str_list(key, value)
            elif key == "kinds":
                if not isinstance(value, list) or not all(_is_int(v) for v in value):
                    raise ValueError("kinds must be a list of integers")
                kw[key] = value
            elif key in ("since", "until", "limit"):
                if not _is_int(value):
                    raise ValueError(f"{key} must be an integer")
                kw[key] = value
            elif key.startswith("#") and len(key) == 2:
                kw["tags"][key[1]] = _str_list(key, value)
            else:
                raise ValueError(f"unsupported filter key {key!r}")
        return cls.build(**kw)

    def matches(self, event: Event) -> bool:
        if self.ids and event.id not in self.ids:
            return False
        if self.authors and event.pubkey not in self.authors:
            return False
        if self.kinds and event.kind not in self.kinds:
            return False
        if self.since is not None and event.created_at < self.since:
            return False
        if self.until is not None and event.created_at > self.until:
            return False
        for name, values in self.tags:
            have = {t[1] for t in event.tags if len(t) >= 2 and t[0] == name}
            if not have.intersection(values):
                return False
        return True


def offer_filter(direction: Optional[Direction] = None, since: Optional[int] = None) -> Filter:
    '''
    Offer-discovery filter: offer kind, our application tag, optionally one direction.
    '''
    tags = {APP_TAG: [APP_ID]}
    if direction is not None:
        tags[DIRECTION_TAG] = [direction_tag_value(direction)]
    return Filter.build(kinds=[KIND_OFFER], tags=tags, since=since)

def inbox_filter(pubkey: str, since: Optional[int] = None) -> Filter:
    ''' Anything addressed to pubkey (orders and confirmations arrive this way) '''
    return Filter.build(tags={RECIPIENT_TAG: [pubkey]}, since=since)

def subscription_filters(pubkey: str, since: int) -> List[Filter]:
    ''' The long-lived subscription: new offers plus our inbox, both from `since` on '''
    return [offer_filter(since=since), inbox_filter(pubkey, since=since)]

def matches_any(filters: Iterable[Filter], event: Event) -> bool:
    return any(f.matches(event) for f in filters)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)

def _str_list(key: str, value: Any) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of strings")
    return value
