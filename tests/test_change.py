"""Tests for the change detector."""

from lora_dashboard.change import ChangeDetector, fingerprint


def test_first_payload_is_a_change() -> None:
    detector = ChangeDetector()
    assert detector.last_digest is None
    assert detector.has_changed('{"id":"P1"}') is True
    assert detector.last_digest == fingerprint('{"id":"P1"}')


def test_identical_payload_is_not_a_change() -> None:
    detector = ChangeDetector()
    detector.has_changed('{"id":"P1","battery":40}')
    assert detector.has_changed('{"id":"P1","battery":40}') is False


def test_digest_follows_latest_payload() -> None:
    """A→B→A counts every step as a change."""
    detector = ChangeDetector()
    assert detector.has_changed("a") is True
    assert detector.has_changed("b") is True
    assert detector.has_changed("a") is True
    assert detector.last_digest == fingerprint("a")


def test_str_and_bytes_share_a_digest() -> None:
    assert fingerprint("héllo") == fingerprint("héllo".encode("utf-8"))
