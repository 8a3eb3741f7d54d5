"""Tests for the AES-GCM token cipher."""

import pytest

from src.core.crypto import decrypt, decrypt_token, derive_key, encrypt, encrypt_token
from src.core.exceptions import ConfigurationError, DecryptionError

KEY = derive_key("primary-secret", "salt-a")
OTHER_KEY = derive_key("another-secret", "salt-a")


@pytest.mark.parametrize(
    "plaintext",
    ["ya29.a0AfH6SMB", "", "1//0gLx-refresh-token", "ünïcødé ✓", "x" * 4096],
)
def test_round_trip(plaintext):
    assert decrypt(encrypt(plaintext, KEY), KEY) == plaintext


def test_wrong_key_fails():
    envelope = encrypt("secret-access-token", KEY)
    with pytest.raises(DecryptionError):
        decrypt(envelope, OTHER_KEY)


def test_envelope_shape():
    envelope = encrypt("token", KEY)
    iv_hex, ct_hex = envelope.split(":")
    assert len(bytes.fromhex(iv_hex)) == 12
    # 5 bytes of plaintext plus the 16-byte GCM tag
    assert len(bytes.fromhex(ct_hex)) == 5 + 16


def test_fresh_iv_per_call():
    assert encrypt("same", KEY) != encrypt("same", KEY)


def test_different_salt_gives_different_key():
    assert derive_key("primary-secret", "salt-a") != derive_key("primary-secret", "salt-b")


@pytest.mark.parametrize(
    "envelope",
    ["", "no-separator", "a:b:c", "zz:00", "00112233445566778899aabb:", "0011:aabbccdd"],
)
def test_malformed_envelope(envelope):
    with pytest.raises(DecryptionError):
        decrypt(envelope, KEY)


def test_tampered_ciphertext():
    iv_hex, ct_hex = encrypt("token", KEY).split(":")
    flipped = f"{int(ct_hex[0], 16) ^ 1:x}" + ct_hex[1:]
    with pytest.raises(DecryptionError):
        decrypt(f"{iv_hex}:{flipped}", KEY)


def test_empty_secret_is_configuration_error():
    with pytest.raises(ConfigurationError):
        derive_key("", "salt")


def test_configured_wrappers_round_trip():
    assert decrypt_token(encrypt_token("refresh-123")) == "refresh-123"
