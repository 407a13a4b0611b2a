"""AES-256-GCM encryption for OAuth tokens held in memory."""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12  # 96-bit nonce for GCM
TAG_SIZE = 16


class TokenCipher:
    """Encrypts tokens as ``hex(nonce):hex(ciphertext):hex(tag)``."""

    def __init__(self, hex_key: str) -> None:
        try:
            key = bytes.fromhex(hex_key)
        except ValueError:
            raise ValueError("Encryption key must be a hex string")
        if len(key) != 32:
            raise ValueError(
                f"Encryption key must be 32 bytes (64 hex characters), got {len(key)} bytes"
            )
        self._aead = AESGCM(key)

    def encrypt(self, text: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, text.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return f"{nonce.hex()}:{ciphertext.hex()}:{tag.hex()}"

    def decrypt(self, encrypted_text: str) -> str:
        parts = encrypted_text.split(":")
        if len(parts) != 3:
            raise ValueError("Invalid encrypted text format")

        try:
            nonce, ciphertext, tag = (bytes.fromhex(part) for part in parts)
        except ValueError:
            raise ValueError("Invalid encrypted text format")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise ValueError("Encrypted text failed authentication")
        return plaintext.decode("utf-8")


def generate_key() -> str:
    """Generate a new random key in the format expected by TokenCipher."""
    return AESGCM.generate_key(bit_length=256).hex()
