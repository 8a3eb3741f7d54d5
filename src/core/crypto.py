"""Token encryption helpers: AES-256-GCM with a PBKDF2-derived key.

Envelope format is ``hex(nonce) + ":" + hex(ciphertext)``; the ciphertext part
carries the GCM tag, so a wrong key or a tampered envelope fails loudly instead
of returning garbage.

There is no key rotation: changing ``TOKEN_ENCRYPTION_KEY`` makes every stored
credential undecryptable and each organization has to reconnect Google.
"""

import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from src.core.config import settings
from src.core.exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
KDF_ITERATIONS = 390_000


@lru_cache(maxsize=8)
def derive_key(secret: str, salt: str) -> bytes:
    """Stretch the configured secret into a 256-bit AES key."""
    if not secret:
        raise ConfigurationError(
            "TOKEN_ENCRYPTION_KEY env var is required for token encryption."
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt.encode(),
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(secret.encode())


def encrypt(plaintext: str, key: bytes) -> str:
    """Encrypt *plaintext* into a self-contained ``iv:ciphertext`` envelope."""
    nonce = os.urandom(NONCE_LENGTH)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode(), None)
    return f"{nonce.hex()}:{ciphertext.hex()}"


def decrypt(envelope: str, key: bytes) -> str:
    """Decrypt an envelope produced by :func:`encrypt`.

    Raises ``DecryptionError`` for malformed envelopes, wrong keys and
    corrupted ciphertext.
    """
    if not envelope or envelope.count(":") != 1:
        raise DecryptionError("Malformed token envelope")

    nonce_hex, ciphertext_hex = envelope.split(":")
    try:
        nonce = bytes.fromhex(nonce_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
    except ValueError as e:
        raise DecryptionError("Token envelope is not valid hex") from e

    if len(nonce) != NONCE_LENGTH or not ciphertext:
        raise DecryptionError("Malformed token envelope")

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise DecryptionError("Token could not be decrypted (wrong key or corrupted data)") from e

    try:
        return plaintext.decode()
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted token is not valid UTF-8") from e


def _configured_key() -> bytes:
    return derive_key(settings.token_encryption_key, settings.token_encryption_salt)


def encrypt_token(plaintext: str) -> str:
    """Encrypt an OAuth token for storage."""
    return encrypt(plaintext, _configured_key())


def decrypt_token(envelope: str) -> str:
    """Decrypt an OAuth token from storage."""
    return decrypt(envelope, _configured_key())
