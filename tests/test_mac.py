"""
Unit tests for Maksekeskus notification MAC verification.
"""
from __future__ import annotations

import hashlib
import hmac

from storefront.deps import compute_mac, verify_mac

SECRET = "testsecret"
PAYLOAD = '{"transaction":"tx-1","status":"COMPLETED"}'


def _reference_mac(payload: str, secret: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha512).hexdigest().upper()


def test_compute_mac_is_uppercase_hex_sha512():
    mac = compute_mac(PAYLOAD, SECRET)
    assert mac == _reference_mac(PAYLOAD, SECRET)
    assert len(mac) == 128
    assert mac == mac.upper()


def test_valid_mac_accepted():
    assert verify_mac(PAYLOAD, _reference_mac(PAYLOAD, SECRET), SECRET) is True


def test_lowercase_mac_accepted():
    assert verify_mac(PAYLOAD, _reference_mac(PAYLOAD, SECRET).lower(), SECRET) is True


def test_padded_mac_rejected():
    mac = _reference_mac(PAYLOAD, SECRET)
    assert verify_mac(PAYLOAD, "  " + mac, SECRET) is False
    assert verify_mac(PAYLOAD, mac + "\n", SECRET) is False


def test_wrong_secret_rejected():
    assert verify_mac(PAYLOAD, _reference_mac(PAYLOAD, "other"), SECRET) is False


def test_tampered_payload_rejected():
    mac = _reference_mac(PAYLOAD, SECRET)
    assert verify_mac(PAYLOAD.replace("COMPLETED", "CANCELLED"), mac, SECRET) is False


def test_missing_inputs_rejected():
    mac = _reference_mac(PAYLOAD, SECRET)
    assert verify_mac(PAYLOAD, "", SECRET) is False
    assert verify_mac(PAYLOAD, mac, "") is False
    assert verify_mac(None, mac, SECRET) is False  # type: ignore[arg-type]
    assert verify_mac(PAYLOAD, None, SECRET) is False  # type: ignore[arg-type]


def test_non_ascii_mac_rejected_without_error():
    assert verify_mac(PAYLOAD, "ÄÖÜ" * 10, SECRET) is False


def test_unicode_payload_signed_as_utf8():
    payload = '{"merchant_data":"{\\"customer_email\\":\\"jüri@näide.ee\\"}"}'
    assert verify_mac(payload, _reference_mac(payload, SECRET), SECRET) is True
