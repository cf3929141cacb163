from __future__ import annotations

import os
import stat
import tempfile
import threading
import unittest
from pathlib import Path
from typing import Dict, Tuple

from profilevault import archive, container
from profilevault.service import backup, backup_to_file, open_container, restore, restore_file, write_atomic
from profilevault.constants import HEADER_SIZE, MAGIC, VERSION_CURRENT, VERSION_LEGACY
from profilevault.encryption import KdfParams, derive_key, wipe
from profilevault.errors import (
    ArchiveError,
    AuthenticationFailure,
    FormatError,
    OperationCancelled,
    UnsupportedVersionError,
)
from profilevault.xchacha import XChaCha20Poly1305


# Cheap cost parameters keep the suite fast; production defaults are far higher.
FAST = KdfParams(n=1 << 10, r=8, p=1)
PASS = b"correct horse battery staple"

_TS_OFFSET = len(MAGIC) + 1 + 16 + 24
_LEN_OFFSET = _TS_OFFSET + 8


def _create_sample_tree(base: Path) -> None:
    (base / "docs").mkdir()
    (base / "docs" / "notes").mkdir()
    (base / "docs" / "a.txt").write_text("hello world\n" * 50, encoding="utf-8")
    (base / "docs" / "notes" / "b.bin").write_bytes(os.urandom(4096))
    (base / "docs" / "notes" / "empty.txt").write_bytes(b"")
    (base / "notes.md").write_text("# Title\nSome content\n", encoding="utf-8")
    (base / "empty_dir").mkdir()
    os.chmod(base / "docs" / "notes" / "b.bin", 0o600)
    os.chmod(base / "notes.md", 0o640)
    os.chmod(base / "docs" / "notes", 0o750)


def _snapshot(root: Path) -> Dict[str, Tuple[str, int, bytes]]:
    snap: Dict[str, Tuple[str, int, bytes]] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for d in dirnames:
            full = Path(dirpath) / d
            rel = full.relative_to(root).as_posix()
            snap[rel] = ("dir", stat.S_IMODE(full.stat().st_mode), b"")
        for f in filenames:
            full = Path(dirpath) / f
            rel = full.relative_to(root).as_posix()
            snap[rel] = ("file", stat.S_IMODE(full.stat().st_mode), full.read_bytes())
    return snap


def _flip(data: bytes, offset: int) -> bytes:
    buf = bytearray(data)
    buf[offset] ^= 0x01
    return bytes(buf)


class BackupRestoreTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        self.src = self.tmp / "src"
        self.src.mkdir()
        _create_sample_tree(self.src)

    def test_roundtrip_preserves_paths_contents_and_modes(self):
        data = backup(self.src, PASS, params=FAST)
        dest = self.tmp / "restored"
        restore(data, PASS, dest, params=FAST)
        self.assertEqual(_snapshot(self.src), _snapshot(dest))

    def test_file_roundtrip(self):
        out = backup_to_file(self.src, self.tmp / "profiles.gpbk", PASS, params=FAST)
        self.assertEqual(out, self.tmp / "profiles.gpbk")
        self.assertEqual(stat.S_IMODE(out.stat().st_mode), 0o600)
        dest = self.tmp / "restored"
        restore_file(out, dest, PASS, params=FAST)
        self.assertEqual(_snapshot(self.src), _snapshot(dest))

    def test_container_layout(self):
        data = backup(self.src, PASS, params=FAST, now=1_700_000_000)
        self.assertEqual(data[:4], b"GPBK")
        self.assertEqual(data[4], VERSION_CURRENT)
        self.assertEqual(int.from_bytes(data[_TS_OFFSET:_LEN_OFFSET], "big"), 1_700_000_000)
        self.assertEqual(int.from_bytes(data[_LEN_OFFSET:HEADER_SIZE], "big"), len(data) - HEADER_SIZE)

    def test_wrong_passphrase(self):
        data = backup(self.src, PASS, params=FAST)
        dest = self.tmp / "restored"
        with self.assertRaises(AuthenticationFailure):
            restore(data, b"not the passphrase", dest, params=FAST)
        self.assertFalse(dest.exists())

    def test_mismatched_kdf_params_fail_authentication(self):
        data = backup(self.src, PASS, params=FAST)
        with self.assertRaises(AuthenticationFailure):
            open_container(data, PASS, params=KdfParams(n=1 << 11, r=8, p=1))

    def test_ciphertext_tamper_detected(self):
        data = backup(self.src, PASS, params=FAST)
        for offset in (HEADER_SIZE, HEADER_SIZE + (len(data) - HEADER_SIZE) // 2, len(data) - 1):
            with self.subTest(offset=offset):
                with self.assertRaises(AuthenticationFailure):
                    open_container(_flip(data, offset), PASS, params=FAST)

    def test_header_tamper_detected(self):
        data = backup(self.src, PASS, params=FAST)
        # salt, nonce and timestamp are all bound as associated data
        for offset in (5, 5 + 16, _TS_OFFSET + 7):
            with self.subTest(offset=offset):
                with self.assertRaises(AuthenticationFailure):
                    open_container(_flip(data, offset), PASS, params=FAST)

    def test_truncation_is_format_error(self):
        data = backup(self.src, PASS, params=FAST)
        for cut in (1, 17, len(data) - HEADER_SIZE):
            with self.subTest(cut=cut):
                with self.assertRaises(FormatError):
                    restore(data[:-cut], PASS, self.tmp / "restored", params=FAST)
        with self.assertRaises(FormatError):
            container.decode(data[: HEADER_SIZE - 1])
        self.assertFalse((self.tmp / "restored").exists())

    def test_length_field_mismatch(self):
        data = backup(self.src, PASS, params=FAST)
        clen = int.from_bytes(data[_LEN_OFFSET:HEADER_SIZE], "big")
        for bad in (clen + 1, clen - 1, 0):
            with self.subTest(declared=bad):
                forged = data[:_LEN_OFFSET] + bad.to_bytes(8, "big") + data[HEADER_SIZE:]
                with self.assertRaises(FormatError):
                    open_container(forged, PASS, params=FAST)

    def test_trailing_garbage_rejected(self):
        data = backup(self.src, PASS, params=FAST)
        with self.assertRaises(FormatError):
            container.decode(data + b"\x00")

    def test_bad_magic_and_unknown_version(self):
        data = backup(self.src, PASS, params=FAST)
        with self.assertRaises(FormatError):
            container.decode(b"XXXX" + data[4:])
        with self.assertRaises(UnsupportedVersionError):
            container.decode(data[:4] + bytes([0x7F]) + data[5:])

    def test_two_backups_differ_but_restore_equal(self):
        first = backup(self.src, PASS, params=FAST)
        second = backup(self.src, PASS, params=FAST)
        self.assertNotEqual(first, second)
        h1, _ = container.decode(first)
        h2, _ = container.decode(second)
        self.assertNotEqual(h1.salt, h2.salt)
        self.assertNotEqual(h1.nonce, h2.nonce)
        d1, d2 = self.tmp / "r1", self.tmp / "r2"
        restore(first, PASS, d1, params=FAST)
        restore(second, PASS, d2, params=FAST)
        self.assertEqual(_snapshot(d1), _snapshot(d2))
        self.assertEqual(_snapshot(self.src), _snapshot(d1))

    def test_empty_directory(self):
        empty = self.tmp / "empty"
        empty.mkdir()
        data = backup(empty, PASS, params=FAST)
        dest = self.tmp / "restored"
        restore(data, PASS, dest, params=FAST)
        self.assertTrue(dest.is_dir())
        self.assertEqual(list(dest.iterdir()), [])

    def test_legacy_version_without_associated_data(self):
        payload = archive.pack(str(self.src))
        salt, nonce = os.urandom(16), os.urandom(24)
        key = derive_key(PASS, salt, FAST)
        try:
            ct = XChaCha20Poly1305(key).seal(nonce, payload)
        finally:
            wipe(key)
        data = container.encode(salt, nonce, 1_600_000_000, ct, version=VERSION_LEGACY)
        self.assertEqual(data[4], VERSION_LEGACY)
        dest = self.tmp / "restored"
        restore(data, PASS, dest, params=FAST)
        self.assertEqual(_snapshot(self.src), _snapshot(dest))
        # timestamp is informational only in the legacy format
        forged = data[:_TS_OFFSET] + (0).to_bytes(8, "big") + data[_LEN_OFFSET:]
        self.assertEqual(open_container(forged, PASS, params=FAST), payload)

    def test_missing_source_is_archive_error(self):
        with self.assertRaises(ArchiveError):
            backup(self.tmp / "does-not-exist", PASS, params=FAST)

    def test_cancel_before_start(self):
        ev = threading.Event()
        ev.set()
        with self.assertRaises(OperationCancelled):
            backup(self.src, PASS, params=FAST, cancel=ev)
        data = backup(self.src, PASS, params=FAST, cancel=threading.Event())
        dest = self.tmp / "restored"
        with self.assertRaises(OperationCancelled):
            restore(data, PASS, dest, params=FAST, cancel=ev)
        self.assertFalse(dest.exists())


class AtomicWriteTests(unittest.TestCase):
    def test_replaces_target_and_leaves_no_temp_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            target = root / "out.gpbk"
            target.write_bytes(b"old")
            write_atomic(target, b"new contents")
            self.assertEqual(target.read_bytes(), b"new contents")
            self.assertEqual(sorted(p.name for p in root.iterdir()), ["out.gpbk"])

    def test_failed_write_leaves_previous_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            target = root / "out.gpbk"
            target.write_bytes(b"old")
            with self.assertRaises(TypeError):
                write_atomic(target, "not bytes")  # type: ignore[arg-type]
            self.assertEqual(target.read_bytes(), b"old")
            self.assertEqual(sorted(p.name for p in root.iterdir()), ["out.gpbk"])


class KeyDerivationTests(unittest.TestCase):
    def test_deterministic_and_salted(self):
        salt = b"\x01" * 16
        k1 = derive_key(PASS, salt, FAST)
        k2 = derive_key(PASS, salt, FAST)
        k3 = derive_key(PASS, b"\x02" * 16, FAST)
        self.assertEqual(len(k1), 32)
        self.assertEqual(k1, k2)
        self.assertNotEqual(k1, k3)

    def test_wipe_zeroes_buffer(self):
        key = derive_key(PASS, b"\x03" * 16, FAST)
        wipe(key)
        self.assertEqual(bytes(key), b"\x00" * 32)

    def test_invalid_params(self):
        for kwargs in ({"n": 1000}, {"n": 1}, {"r": 0}, {"p": 0}):
            with self.subTest(**kwargs):
                with self.assertRaises(ValueError):
                    KdfParams(**kwargs)

    def test_salt_length_checked(self):
        with self.assertRaises(ValueError):
            derive_key(PASS, b"short", FAST)


class CipherTests(unittest.TestCase):
    def test_seal_open_and_associated_data(self):
        key = os.urandom(32)
        nonce = os.urandom(24)
        box = XChaCha20Poly1305(key)
        sealed = box.seal(nonce, b"payload", associated_data=b"hdr")
        self.assertEqual(len(sealed), len(b"payload") + 16)
        self.assertEqual(box.open(nonce, sealed, associated_data=b"hdr"), b"payload")
        with self.assertRaises(AuthenticationFailure):
            box.open(nonce, sealed, associated_data=b"other")
        with self.assertRaises(AuthenticationFailure):
            box.open(nonce, sealed[:10])

    def test_wrong_key_and_tamper_share_one_error(self):
        nonce = os.urandom(24)
        sealed = XChaCha20Poly1305(os.urandom(32)).seal(nonce, b"payload")
        with self.assertRaises(AuthenticationFailure) as wrong_key:
            XChaCha20Poly1305(os.urandom(32)).open(nonce, sealed)
        self.assertTrue(str(wrong_key.exception))

    def test_size_checks(self):
        with self.assertRaises(ValueError):
            XChaCha20Poly1305(b"\x00" * 16)
        with self.assertRaises(ValueError):
            XChaCha20Poly1305(b"\x00" * 32).seal(b"\x00" * 12, b"x")


if __name__ == "__main__":
    unittest.main()
