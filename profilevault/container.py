from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Tuple

from .constants import (
    HEADER_SIZE,
    MAGIC,
    NONCE_SIZE,
    SALT_SIZE,
    SUPPORTED_VERSIONS,
    VERSION_CURRENT,
    VERSION_LEGACY,
)
from .errors import FormatError, UnsupportedVersionError


_HEADER_STRUCT = struct.Struct(">4sB16s24sQQ")
# Fields (big endian):
# magic[4], version u8, salt[16], nonce[24], timestamp u64, ciphertext_len u64
assert _HEADER_STRUCT.size == HEADER_SIZE

# Bytes of the header bound as AEAD associated data in version 2
# (everything up to and including the timestamp).
_AAD_SIZE = HEADER_SIZE - 8


@dataclass
class ContainerHeader:
    version: int
    salt: bytes
    nonce: bytes
    timestamp: int
    ciphertext_length: int

    def associated_data(self) -> bytes:
        if self.version == VERSION_LEGACY:
            return b""
        return pack_header(self)[:_AAD_SIZE]


def pack_header(header: ContainerHeader) -> bytes:
    if len(header.salt) != SALT_SIZE:
        raise ValueError(f"Salt must be {SALT_SIZE} bytes")
    if len(header.nonce) != NONCE_SIZE:
        raise ValueError(f"Nonce must be {NONCE_SIZE} bytes")
    return _HEADER_STRUCT.pack(
        MAGIC,
        header.version,
        header.salt,
        header.nonce,
        header.timestamp,
        header.ciphertext_length,
    )


def encode(salt: bytes, nonce: bytes, timestamp: int, ciphertext: bytes, *, version: int = VERSION_CURRENT) -> bytes:
    """Frame ``ciphertext`` behind the fixed header."""
    header = ContainerHeader(
        version=version,
        salt=salt,
        nonce=nonce,
        timestamp=timestamp,
        ciphertext_length=len(ciphertext),
    )
    return pack_header(header) + ciphertext


def read_header(data: bytes) -> ContainerHeader:
    """Parse and check the fixed header (magic, version); the length field is not checked here."""
    if len(data) < HEADER_SIZE:
        raise FormatError("Backup too short: truncated header")
    magic, version, salt, nonce, timestamp, clen = _HEADER_STRUCT.unpack(data[:HEADER_SIZE])
    if magic != MAGIC:
        raise FormatError("Bad backup magic")
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersionError(f"Unsupported backup version: {version}")
    return ContainerHeader(
        version=version,
        salt=salt,
        nonce=nonce,
        timestamp=timestamp,
        ciphertext_length=clen,
    )


def decode(data: bytes) -> Tuple[ContainerHeader, bytes]:
    """Split a container into its header and ciphertext.

    The declared ciphertext length must match the remaining bytes exactly,
    which catches both truncation and trailing garbage.
    """
    header = read_header(data)
    remaining = len(data) - HEADER_SIZE
    if header.ciphertext_length != remaining:
        raise FormatError(
            f"Ciphertext length mismatch: header declares {header.ciphertext_length} bytes, found {remaining}"
        )
    return header, data[HEADER_SIZE:]
