"""
profilevault: password-protected, tamper-evident backups of a directory tree.

Features:

- Directory tree packed into a gzip-compressed tar stream (slash-normalized names,
  mode bits preserved); extraction confines every entry to the destination root.
- scrypt key derivation with explicit, caller-supplied cost parameters.
- XChaCha20-Poly1305 (PyCryptodomex) with the container header bound as associated data.
- Fixed-layout "GPBK" container with strict length validation, written atomically.

Wrong passphrase and tampering both surface as ``AuthenticationFailure``;
structural damage (truncation, bad magic, length mismatch) as ``FormatError``.
"""

__version__ = "0.1"

from .service import backup, backup_to_file, open_container, restore, restore_file
from .encryption import DEFAULT_KDF_PARAMS, KdfParams
from .errors import (
    ArchiveError,
    AuthenticationFailure,
    FormatError,
    KeyDerivationError,
    OperationCancelled,
    UnsafePathError,
    UnsupportedVersionError,
    VaultError,
)

__all__ = [
    "backup",
    "backup_to_file",
    "open_container",
    "restore",
    "restore_file",
    "KdfParams",
    "DEFAULT_KDF_PARAMS",
    "VaultError",
    "FormatError",
    "UnsupportedVersionError",
    "AuthenticationFailure",
    "KeyDerivationError",
    "ArchiveError",
    "UnsafePathError",
    "OperationCancelled",
]
