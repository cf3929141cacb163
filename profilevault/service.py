from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional, Protocol, Union

from . import archive, container
from .constants import CONTAINER_FILE_MODE, NONCE_SIZE, SALT_SIZE, VERSION_CURRENT
from .encryption import DEFAULT_KDF_PARAMS, KdfParams, derive_key, wipe
from .errors import OperationCancelled
from .xchacha import XChaCha20Poly1305


_LOGGER = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


def _check_cancel(cancel: Optional[CancelToken], stage: str) -> None:
    # Key derivation cannot be interrupted; callers may only cancel between stages.
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"Cancelled before {stage}")


def backup(
    source_dir: PathLike,
    passphrase: bytes,
    *,
    params: KdfParams = DEFAULT_KDF_PARAMS,
    cancel: Optional[CancelToken] = None,
    now: Optional[int] = None,
) -> bytes:
    """Archive ``source_dir`` and return an encrypted container.

    A fresh salt (hence a fresh key) and a fresh nonce are drawn per call,
    so two backups of the same tree never produce the same bytes.
    """
    _check_cancel(cancel, "archiving")
    payload = archive.pack(os.fspath(source_dir))
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    header = container.ContainerHeader(
        version=VERSION_CURRENT,
        salt=salt,
        nonce=nonce,
        timestamp=int(time.time()) if now is None else now,
        ciphertext_length=0,
    )
    _check_cancel(cancel, "key derivation")
    _LOGGER.debug("deriving key (N=%d, r=%d, p=%d)", params.n, params.r, params.p)
    key = derive_key(passphrase, salt, params)
    try:
        ciphertext = XChaCha20Poly1305(key).seal(nonce, payload, associated_data=header.associated_data())
    finally:
        wipe(key)
    return container.encode(salt, nonce, header.timestamp, ciphertext, version=header.version)


def write_atomic(out_path: PathLike, data: bytes, *, mode: int = CONTAINER_FILE_MODE) -> Path:
    """Write ``data`` to a temp file beside ``out_path`` and rename it into place."""
    out = Path(out_path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{out.name}-", suffix=".tmp", dir=str(out.parent))
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, out)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    return out


def backup_to_file(
    source_dir: PathLike,
    out_path: PathLike,
    passphrase: bytes,
    *,
    params: KdfParams = DEFAULT_KDF_PARAMS,
    cancel: Optional[CancelToken] = None,
) -> Path:
    """Back up ``source_dir`` into ``out_path``; returns the written path."""
    data = backup(source_dir, passphrase, params=params, cancel=cancel)
    out = write_atomic(out_path, data)
    _LOGGER.debug("wrote %d byte backup to %s", len(data), out)
    return out


def open_container(
    data: bytes,
    passphrase: bytes,
    *,
    params: KdfParams = DEFAULT_KDF_PARAMS,
    cancel: Optional[CancelToken] = None,
) -> bytes:
    """Decode and decrypt a container, returning the plaintext archive bytes."""
    header, ciphertext = container.decode(data)
    _check_cancel(cancel, "key derivation")
    _LOGGER.debug("deriving key (N=%d, r=%d, p=%d)", params.n, params.r, params.p)
    key = derive_key(passphrase, header.salt, params)
    try:
        return XChaCha20Poly1305(key).open(header.nonce, ciphertext, associated_data=header.associated_data())
    finally:
        wipe(key)


def restore(
    data: bytes,
    passphrase: bytes,
    dest_dir: PathLike,
    *,
    params: KdfParams = DEFAULT_KDF_PARAMS,
    cancel: Optional[CancelToken] = None,
) -> None:
    """Decrypt ``data`` and recreate the archived tree under ``dest_dir``.

    Nothing is written under ``dest_dir`` unless the container decodes, the
    tag verifies and every archive entry passes the path checks.
    """
    payload = open_container(data, passphrase, params=params, cancel=cancel)
    archive.unpack(payload, os.fspath(dest_dir))


def restore_file(
    in_path: PathLike,
    dest_dir: PathLike,
    passphrase: bytes,
    *,
    params: KdfParams = DEFAULT_KDF_PARAMS,
    cancel: Optional[CancelToken] = None,
) -> None:
    data = Path(in_path).read_bytes()
    restore(data, passphrase, dest_dir, params=params, cancel=cancel)
