"""Tests for identities, direct-message encryption and event signing."""

import pytest

from n3x_common.crypto import (
    DecryptionError, Keys, decrypt, encrypt, is_valid_public_key, load_public_key,
)
from n3x_common.events import (
    KIND_OFFER, Event, InvalidEvent, build_event, compute_id, verify_event,
)


class TestKeys:

    def test_public_key_is_compressed_hex(self, alice):
        assert len(alice.public_key) == 66
        assert alice.public_key[:2] in ("02", "03")
        assert is_valid_public_key(alice.public_key)

    def test_secret_hex_round_trip(self, alice):
        again = Keys.from_secret_hex(alice.secret_hex())
        assert again.public_key == alice.public_key

    @pytest.mark.parametrize("text", ["", "zz", "05" + "11" * 32, "abc123", "04" + "11" * 64])
    def test_invalid_public_keys(self, text):
        assert not is_valid_public_key(text)
        with pytest.raises(ValueError):
            load_public_key(text)


class TestDirectMessageEncryption:

    def test_recipient_can_decrypt(self, alice, bob):
        content = encrypt(alice.secret_key(), bob.public_key, "n3x_header{}")
        assert "?iv=" in content
        assert decrypt(bob.secret_key(), alice.public_key, content) == "n3x_header{}"

    def test_sender_can_decrypt_own_message(self, alice, bob):
        content = encrypt(alice.secret_key(), bob.public_key, "hello ✓")
        assert decrypt(alice.secret_key(), bob.public_key, content) == "hello ✓"

    def test_fresh_iv_per_message(self, alice, bob):
        assert encrypt(alice.secret_key(), bob.public_key, "x") != encrypt(alice.secret_key(), bob.public_key, "x")

    @pytest.mark.parametrize("content", [
        "",
        "plain text",
        "AAAA?iv=AAAA",
        "not base64!?iv=AAAAAAAAAAAAAAAAAAAAAA==",
        "AAAAAAAAAAAAAAAAAAAAAA==?iv=AAAAAAAAAAAAAAAAAAAAAA==?iv=x",
    ])
    def test_garbage_raises_decryption_error(self, alice, bob, content):
        with pytest.raises(DecryptionError):
            decrypt(bob.secret_key(), alice.public_key, content)

    def test_bad_sender_key_raises_decryption_error(self, alice, bob):
        content = encrypt(alice.secret_key(), bob.public_key, "x")
        with pytest.raises(DecryptionError):
            decrypt(bob.secret_key(), "not-a-key", content)


class TestEvents:

    def test_build_and_verify(self, alice):
        ev = build_event(alice, KIND_OFFER, '{"quantity":1,"price":2}', [["d", "n3x"]], created_at=10)
        assert ev.pubkey == alice.public_key
        assert ev.id == compute_id(alice.public_key, 10, KIND_OFFER, [["d", "n3x"]], ev.content)
        verify_event(ev)

    def test_json_round_trip_keeps_signature_valid(self, alice):
        ev = build_event(alice, KIND_OFFER, "ünïcode", [["d", "n3x"], ["x", "Buy"]])
        again = Event.from_json(ev.to_json())
        assert again == ev
        verify_event(again)

    def test_tampered_content_fails(self, alice):
        ev = build_event(alice, KIND_OFFER, "a")
        bad = Event.from_json(dict(ev.to_json(), content="b"))
        with pytest.raises(InvalidEvent):
            verify_event(bad)

    def test_foreign_signature_fails(self, alice, bob):
        ev = build_event(alice, KIND_OFFER, "a")
        forged = build_event(bob, KIND_OFFER, "a", created_at=ev.created_at)
        bad = Event.from_json(dict(ev.to_json(), sig=forged.sig))
        with pytest.raises(InvalidEvent):
            verify_event(bad)

    @pytest.mark.parametrize("patch", [
        {"kind": "30078"},
        {"created_at": True},
        {"tags": [["d", 1]]},
        {"tags": "d"},
        {"content": None},
    ])
    def test_shape_checks(self, alice, patch):
        obj = dict(build_event(alice, KIND_OFFER, "a").to_json(), **patch)
        with pytest.raises(InvalidEvent):
            Event.from_json(obj)

    def test_missing_field(self, alice):
        obj = build_event(alice, KIND_OFFER, "a").to_json()
        del obj["sig"]
        with pytest.raises(InvalidEvent):
            Event.from_json(obj)
