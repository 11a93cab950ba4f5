"""Tests for the publisher: offer records, orders, confirmations, failure surfacing."""

import json

import pytest

from n3x_client.gate import SessionGate
from n3x_client.publisher import PublishError, Publisher
from n3x_client.ui import offer_records
from n3x_common.crypto import decrypt
from n3x_common.envelope import decode
from n3x_common.events import KIND_ENCRYPTED_DIRECT_MESSAGE, KIND_OFFER
from n3x_common.filters import offer_filter
from n3x_common.messages import Confirmation, Direction, Order


@pytest.fixture
def publisher(alice_session):
    return Publisher(SessionGate(alice_session))


class TestPublishOffer:

    def test_offer_record_shape(self, publisher, network, alice):
        record_id = publisher.publish_offer(Direction.SELL, 1000, 65000)

        ev = network.published[-1]
        assert ev.id == record_id
        assert ev.kind == KIND_OFFER
        assert ev.pubkey == alice.public_key
        assert ev.tags == [["d", "n3x"], ["x", "Sell"]]
        assert json.loads(ev.content) == {"quantity": 1000, "price": 65000}

    def test_sell_offer_discoverable_by_sell_filter_only(self, publisher, network):
        publisher.publish_offer(Direction.SELL, 1000, 65000)

        sells = network.state.query([offer_filter(Direction.SELL)])
        buys = network.state.query([offer_filter(Direction.BUY)])
        assert len(sells) == 1
        assert buys == []
        (record,) = offer_records(sells)
        assert record.offer.direction is Direction.SELL
        assert (record.offer.quantity, record.offer.price) == (1000, 65000)

    def test_later_offer_replaces_earlier(self, publisher, network):
        publisher.publish_offer(Direction.BUY, 1, 1)
        latest = publisher.publish_offer(Direction.SELL, 2, 2)

        found = network.state.query([offer_filter()])
        assert [e.id for e in found] == [latest]

    def test_negative_price_is_allowed(self, publisher):
        assert publisher.publish_offer(Direction.BUY, 10, -5)

    @pytest.mark.parametrize("quantity,price", [(-1, 1), (2 ** 64, 1), (1, 2 ** 63), (1.5, 1), (True, 1)])
    def test_bad_amounts_rejected_before_sending(self, publisher, network, quantity, price):
        with pytest.raises(ValueError):
            publisher.publish_offer(Direction.BUY, quantity, price)
        assert network.published == []

    def test_transport_failure_surfaces_as_publish_error(self, publisher, network):
        network.fail_next = "relay refused"
        with pytest.raises(PublishError, match="relay refused"):
            publisher.publish_offer(Direction.BUY, 1, 1)
        # the gate is released and the next call works
        assert publisher.publish_offer(Direction.BUY, 1, 1)


class TestDirectMessages:

    def test_order_is_encrypted_envelope_for_recipient(self, publisher, network, bob):
        event_id = publisher.send_order(bob.public_key, "abc123", 500, 64000)

        ev = network.published[-1]
        assert ev.id == event_id
        assert ev.kind == KIND_ENCRYPTED_DIRECT_MESSAGE
        assert ev.tags == [["p", bob.public_key]]
        assert "n3x_header" not in ev.content

        plaintext = decrypt(bob.secret_key(), ev.pubkey, ev.content)
        assert decode(plaintext) == Order(offer_id="abc123", quantity=500, price=64000)

    def test_confirmation(self, publisher, network, bob):
        publisher.send_confirmation(bob.public_key, "order-1", "accepted")

        ev = network.published[-1]
        assert decode(decrypt(bob.secret_key(), ev.pubkey, ev.content)) == Confirmation("order-1", "accepted")

    def test_bad_recipient_rejected(self, publisher, network):
        with pytest.raises(ValueError):
            publisher.send_order("not-a-key", "abc", 1, 1)
        assert network.published == []

    def test_send_failure_surfaces_as_publish_error(self, publisher, network, bob):
        network.fail_next = "timeout"
        with pytest.raises(PublishError):
            publisher.send_order(bob.public_key, "abc", 1, 1)
