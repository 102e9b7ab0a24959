"""AES-256-GCM encryption of tenant application credentials.

Wire format (versionless): ``base64(nonce[12] || tag[16] || ciphertext)``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
from collections.abc import Iterable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tuttiud.errors.exceptions import DecryptionFailedError

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


def derive_encryption_key(key_material: str) -> bytes:
    """Return the 32-byte AES key for ``key_material``.

    Material that decodes as base64 to exactly 32 bytes is used directly;
    anything else (an operator passphrase) is hashed with SHA-256.
    """
    if not key_material:
        raise ValueError("Missing encryption key material")

    try:
        decoded = base64.b64decode(key_material, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == KEY_SIZE:
        return decoded

    return hashlib.sha256(key_material.encode("utf-8")).digest()


class CredentialCipher:
    """Encrypt and decrypt a single secret string.

    ``previous_key_materials`` are only ever used to decrypt, so blobs written
    before a key rotation stay readable until they are re-encrypted.
    """

    def __init__(self, key_material: str, previous_key_materials: Iterable[str] = ()) -> None:
        self._key = derive_encryption_key(key_material)
        self._previous_keys = [derive_encryption_key(m) for m in previous_key_materials if m]

    def encrypt(self, secret: str) -> str:
        """Encrypt ``secret`` under the current key with a fresh random nonce."""
        nonce = os.urandom(NONCE_SIZE)
        # AESGCM appends the tag to the ciphertext; the wire format puts it first
        sealed = AESGCM(self._key).encrypt(nonce, secret.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """Decrypt ``blob`` or raise :class:`DecryptionFailedError`."""
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionFailedError(details="Encrypted payload is not valid base64") from exc

        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionFailedError(details="Encrypted payload is too short")

        nonce = raw[:NONCE_SIZE]
        tag = raw[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = raw[NONCE_SIZE + TAG_SIZE:]

        for key in [self._key, *self._previous_keys]:
            try:
                plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
            except InvalidTag:
                continue
            return plaintext.decode("utf-8")

        raise DecryptionFailedError(details="Authentication tag did not verify")


def encrypt_value(secret: str, key_material: str) -> str:
    """Encrypt ``secret`` with ``key_material`` (single-key convenience)."""
    return CredentialCipher(key_material).encrypt(secret)


def decrypt_value(blob: str, key_material: str) -> str:
    """Decrypt ``blob`` with ``key_material`` (single-key convenience)."""
    return CredentialCipher(key_material).decrypt(blob)
