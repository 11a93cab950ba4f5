"""Tests for the tag scheme and the filter builder."""

import pytest

from n3x_common.events import KIND_ENCRYPTED_DIRECT_MESSAGE, KIND_OFFER, build_event
from n3x_common.filters import Filter, inbox_filter, offer_filter, subscription_filters
from n3x_common.messages import Direction, Offer
from n3x_common.tags import (
    APP_ID, direction_tag_value, offer_direction, offer_tags, parse_direction, tag_values,
)


def make_offer_event(keys, direction, quantity=1000, price=65000, created_at=100):
    offer = Offer(direction, quantity, price)
    return build_event(keys, KIND_OFFER, offer.content_json(), offer_tags(direction), created_at=created_at)


class TestDirectionParsing:

    @pytest.mark.parametrize("text,expected", [
        ("buy", Direction.BUY),
        ("Buy", Direction.BUY),
        ("BUYING", Direction.BUY),
        ("  buying\n", Direction.BUY),
        ("sell", Direction.SELL),
        ("Selling", Direction.SELL),
        ("SELL", Direction.SELL),
    ])
    def test_synonyms(self, text, expected):
        assert parse_direction(text) is expected

    @pytest.mark.parametrize("text", ["", "b", "bought", "sold", "buy sell", "1", "purchase"])
    def test_unknown_words(self, text):
        assert parse_direction(text) is None

    @pytest.mark.parametrize("direction", list(Direction))
    def test_tag_value_parses_back(self, direction):
        assert parse_direction(direction_tag_value(direction)) is direction

    def test_tag_values_are_canonical(self):
        assert direction_tag_value(Direction.BUY) == "Buy"
        assert direction_tag_value(Direction.SELL) == "Sell"


class TestOfferTags:

    def test_exactly_one_app_and_direction_tag(self):
        assert offer_tags(Direction.SELL) == [["d", APP_ID], ["x", "Sell"]]
        assert APP_ID == "n3x"

    def test_offer_direction_reads_tags_back(self, alice):
        ev = make_offer_event(alice, Direction.BUY)
        assert offer_direction(ev) is Direction.BUY
        assert tag_values(ev, "d") == ["n3x"]

    def test_offer_without_direction_tag_is_not_an_offer(self, alice):
        ev = build_event(alice, KIND_OFFER, "{}", [["d", APP_ID]])
        assert offer_direction(ev) is None

    def test_offer_with_two_direction_tags_is_not_an_offer(self, alice):
        ev = build_event(alice, KIND_OFFER, "{}", [["d", APP_ID], ["x", "Buy"], ["x", "Sell"]])
        assert offer_direction(ev) is None


class TestFilterBuilder:

    def test_offer_filter_json(self):
        f = offer_filter(Direction.SELL, since=1700000000)
        assert f.to_json() == {"kinds": [30078], "#d": ["n3x"], "#x": ["Sell"], "since": 1700000000}

    def test_offer_filter_without_direction(self):
        assert offer_filter().to_json() == {"kinds": [30078], "#d": ["n3x"]}

    def test_filters_are_deterministic(self):
        a = offer_filter(Direction.BUY, since=5)
        b = offer_filter(Direction.BUY, since=5)
        assert a == b
        assert a.to_json() == b.to_json()

    def test_tag_order_does_not_matter(self):
        a = Filter.build(tags={"x": ["Buy"], "d": ["n3x"]})
        b = Filter.build(tags={"d": ["n3x"], "x": ["Buy"]})
        assert a == b
        assert list(a.to_json()) == list(b.to_json())

    def test_subscription_filters(self, alice):
        offers, inbox = subscription_filters(alice.public_key, since=42)
        assert offers == offer_filter(since=42)
        assert inbox.to_json() == {"#p": [alice.public_key], "since": 42}

    def test_json_round_trip(self):
        f = offer_filter(Direction.SELL, since=7)
        assert Filter.from_json(f.to_json()) == f

    @pytest.mark.parametrize("obj", [
        [],
        {"kinds": ["30078"]},
        {"#d": "n3x"},
        {"since": "yesterday"},
        {"since": True},
        {"search": "btc"},
    ])
    def test_from_json_rejects_bad_filters(self, obj):
        with pytest.raises(ValueError):
            Filter.from_json(obj)


class TestFilterMatching:

    def test_sell_offer_found_by_sell_filter_only(self, alice):
        ev = make_offer_event(alice, Direction.SELL)
        assert offer_filter(Direction.SELL).matches(ev)
        assert not offer_filter(Direction.BUY).matches(ev)
        assert offer_filter().matches(ev)

    @pytest.mark.parametrize("direction", list(Direction))
    def test_published_direction_always_matches_same_direction(self, alice, direction):
        ev = make_offer_event(alice, direction)
        assert offer_filter(direction).matches(ev)
        assert not offer_filter(direction.opposite()).matches(ev)

    def test_since_floor(self, alice):
        ev = make_offer_event(alice, Direction.BUY, created_at=100)
        assert offer_filter(since=100).matches(ev)
        assert not offer_filter(since=101).matches(ev)

    def test_other_app_not_matched(self, alice):
        ev = build_event(alice, KIND_OFFER, "{}", [["d", "other"], ["x", "Buy"]])
        assert not offer_filter(Direction.BUY).matches(ev)

    def test_inbox_filter(self, alice, bob):
        dm = build_event(bob, KIND_ENCRYPTED_DIRECT_MESSAGE, "x?iv=y", [["p", alice.public_key]])
        assert inbox_filter(alice.public_key).matches(dm)
        assert not inbox_filter(bob.public_key).matches(dm)
        assert not offer_filter().matches(dm)

    def test_authors_and_ids(self, alice, bob):
        ev = make_offer_event(alice, Direction.BUY)
        assert Filter.build(authors=[alice.public_key]).matches(ev)
        assert not Filter.build(authors=[bob.public_key]).matches(ev)
        assert Filter.build(ids=[ev.id]).matches(ev)
        assert not Filter.build(until=99).matches(ev)
