# src/hirechat/services/crypto.py
"""Encryption at rest for remote chat session credentials."""

from __future__ import annotations

import base64
import binascii
import os
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from hirechat.services.errors import CredentialIntegrityError

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from hirechat.services.chat_client import ChatConfig

KEY_LENGTH_BYTES = 32
IV_LENGTH_BYTES = 12
TAG_LENGTH_BYTES = 16


def decode_key(encoded: str) -> bytes:
    """Decode a configured encryption key given as hex or base64.

    Raises:
        ValueError: If the value decodes to anything but a 32-byte key.
    """
    cleaned = encoded.strip()
    errors: list[str] = []
    candidates = []
    try:
        candidates.append(bytes.fromhex(cleaned))
    except ValueError as err:
        errors.append(f"hex: {err}")
    try:
        padding = "=" * (-len(cleaned) % 4)
        candidates.append(base64.urlsafe_b64decode(cleaned + padding))
    except (binascii.Error, ValueError) as err:
        errors.append(f"base64: {err}")
    try:
        candidates.append(base64.b64decode(cleaned, validate=True))
    except (binascii.Error, ValueError) as err:
        errors.append(f"base64: {err}")

    for candidate in candidates:
        if len(candidate) == KEY_LENGTH_BYTES:
            return candidate

    joined = "; ".join(errors) if errors else f"key must be {KEY_LENGTH_BYTES} bytes"
    raise ValueError(f"Invalid chat encryption key: {joined}")


class CredentialVault:
    """Authenticated encryption of session credentials with AES-256-GCM.

    Blobs are laid out as ``iv (12 bytes) || tag (16 bytes) || ciphertext``.
    The key is loaded once at startup and never changes afterwards.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH_BYTES:
            raise ValueError(f"Chat encryption key must be {KEY_LENGTH_BYTES} bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_config(cls, config: ChatConfig) -> CredentialVault:
        """Build a vault from the key held by the chat configuration."""
        if not config.encryption_key:
            raise ValueError("Chat encryption key is not configured")
        return cls(decode_key(config.encryption_key))

    def encrypt(self, plaintext: str) -> bytes:
        """Encrypt ``plaintext`` under a fresh random IV.

        Args:
            plaintext: Session credential to protect

        Returns:
            Concatenated IV, authentication tag and ciphertext
        """
        iv = os.urandom(IV_LENGTH_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag; move it in front of the ciphertext.
        ciphertext, tag = sealed[:-TAG_LENGTH_BYTES], sealed[-TAG_LENGTH_BYTES:]
        return iv + tag + ciphertext

    def decrypt(self, blob: bytes) -> str:
        """Decrypt a blob produced by :meth:`encrypt`.

        Raises:
            CredentialIntegrityError: If the blob is truncated, was tampered
                with, or was sealed under a different key
        """
        if len(blob) < IV_LENGTH_BYTES + TAG_LENGTH_BYTES:
            raise CredentialIntegrityError("Encrypted credential is truncated")

        iv = blob[:IV_LENGTH_BYTES]
        tag = blob[IV_LENGTH_BYTES:IV_LENGTH_BYTES + TAG_LENGTH_BYTES]
        ciphertext = blob[IV_LENGTH_BYTES + TAG_LENGTH_BYTES:]
        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as err:
            raise CredentialIntegrityError(
                "Encrypted credential failed authentication"
            ) from err

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as err:
            raise CredentialIntegrityError("Decrypted credential is not valid text") from err
