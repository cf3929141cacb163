from __future__ import annotations

from dataclasses import dataclass

from Cryptodome.Protocol.KDF import scrypt

from .constants import (
    DEFAULT_SCRYPT_N,
    DEFAULT_SCRYPT_P,
    DEFAULT_SCRYPT_R,
    KEY_SIZE,
    SALT_SIZE,
)
from .errors import KeyDerivationError


@dataclass(frozen=True)
class KdfParams:
    """scrypt cost parameters.

    Not stored in the container: backup and restore must be given the same
    values.
    """

    n: int = DEFAULT_SCRYPT_N
    r: int = DEFAULT_SCRYPT_R
    p: int = DEFAULT_SCRYPT_P

    def __post_init__(self) -> None:
        if self.n < 2 or self.n & (self.n - 1):
            raise ValueError("scrypt N must be a power of two greater than 1")
        if self.r < 1:
            raise ValueError("scrypt r must be >= 1")
        if self.p < 1:
            raise ValueError("scrypt p must be >= 1")


DEFAULT_KDF_PARAMS = KdfParams()


def derive_key(passphrase: bytes, salt: bytes, params: KdfParams = DEFAULT_KDF_PARAMS) -> bytearray:
    """Stretch ``passphrase`` and a 16-byte ``salt`` into a 32-byte key.

    Blocks for the whole cost function. The result is a ``bytearray`` so the
    caller can ``wipe`` it when done.
    """
    if len(salt) != SALT_SIZE:
        raise ValueError(f"Salt must be {SALT_SIZE} bytes")
    try:
        key = scrypt(bytes(passphrase), salt, KEY_SIZE, N=params.n, r=params.r, p=params.p)
    except (MemoryError, ValueError) as exc:
        # parameters are validated by KdfParams; failures here come from the backend (allocation)
        raise KeyDerivationError(f"scrypt failed (N={params.n}, r={params.r}, p={params.p}): {exc}") from exc
    return bytearray(key)


def wipe(buf: bytearray) -> None:
    """Overwrite ``buf`` with zeros.

    Best effort only: the crypto backend and the interpreter may hold copies
    this cannot reach.
    """
    for i in range(len(buf)):
        buf[i] = 0
