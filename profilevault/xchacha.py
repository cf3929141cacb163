from __future__ import annotations

"""XChaCha20-Poly1305 sealing backed by PyCryptodomex.

``Cryptodome.Cipher.ChaCha20_Poly1305`` switches to the extended (XChaCha)
construction when given a 24-byte nonce, which makes random nonces safe
without a counter. The 16-byte tag is appended to the ciphertext.
"""

from Cryptodome.Cipher import ChaCha20_Poly1305

from .constants import KEY_SIZE, NONCE_SIZE, TAG_SIZE
from .errors import AuthenticationFailure


class XChaCha20Poly1305:
    """Minimal XChaCha20-Poly1305 helper (combined ciphertext || tag)."""

    def __init__(self, key: bytes | bytearray):
        if len(key) != KEY_SIZE:
            raise ValueError("Key must be 32 bytes for XChaCha20-Poly1305")
        self._key = key

    def _cipher(self, nonce: bytes):
        if len(nonce) != NONCE_SIZE:
            raise ValueError("Nonce must be 24 bytes for XChaCha20-Poly1305")
        return ChaCha20_Poly1305.new(key=self._key, nonce=nonce)

    def seal(self, nonce: bytes, plaintext: bytes, *, associated_data: bytes = b"") -> bytes:
        """Encrypt and authenticate ``plaintext``; returns ciphertext followed by the tag."""
        cipher = self._cipher(nonce)
        if associated_data:
            cipher.update(associated_data)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return ciphertext + tag

    def open(self, nonce: bytes, sealed: bytes, *, associated_data: bytes = b"") -> bytes:
        """Verify the tag and decrypt. No plaintext is returned unless the tag matches."""
        cipher = self._cipher(nonce)
        if len(sealed) < TAG_SIZE:
            raise AuthenticationFailure()
        if associated_data:
            cipher.update(associated_data)
        try:
            return cipher.decrypt_and_verify(sealed[:-TAG_SIZE], sealed[-TAG_SIZE:])
        except ValueError:
            raise AuthenticationFailure() from None


__all__ = ["XChaCha20Poly1305"]
