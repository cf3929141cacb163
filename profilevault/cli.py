from __future__ import annotations

import argparse
import getpass as _getpass
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from profilevault import archive, container
from profilevault.service import backup_to_file, open_container, restore_file
from profilevault.constants import ENTRY_DIR, VERSION_LEGACY
from profilevault.encryption import KdfParams
from profilevault.errors import (
    ArchiveError,
    AuthenticationFailure,
    FormatError,
    UnsafePathError,
    UnsupportedVersionError,
    VaultError,
)


def _read_passphrase(given: Optional[str], *, confirm: bool = False) -> bytes:
    """Return the passphrase from ``--pass`` or an interactive prompt."""
    if given is not None:
        if not given:
            raise ValueError("empty passphrase")
        return given.encode("utf-8")
    pw = _getpass.getpass("Passphrase: ")
    if confirm:
        again = _getpass.getpass("Confirm passphrase: ")
        if again != pw:
            raise ValueError("passphrases do not match")
    if not pw:
        raise ValueError("empty passphrase")
    return pw.encode("utf-8")


def _kdf_params(args: argparse.Namespace) -> KdfParams:
    return KdfParams(n=args.scrypt_n, r=args.scrypt_r, p=args.scrypt_p)


def cmd_backup(source: str, output: str, *, password: Optional[str] = None, params: Optional[KdfParams] = None, quiet: bool = False) -> bool:
    """Create an encrypted backup of ``source``.

    Args:
        source: Directory to back up (its contents; the directory itself is not stored).
        output: Container path to write (replaced atomically).
        password: Passphrase; prompted for (twice) when omitted.
        params: scrypt cost parameters; the same values are needed to restore.
    """
    passphrase = _read_passphrase(password, confirm=True)
    t0 = time.time()
    out = backup_to_file(source, output, passphrase, params=params or KdfParams())
    if not quiet:
        dt = max(0.000001, time.time() - t0)
        print(f"Done: {out.stat().st_size} bytes in {dt:.1f}s")
    print(f"backup written to {out}")
    return True


def cmd_restore(backup: str, outdir: str, *, password: Optional[str] = None, params: Optional[KdfParams] = None) -> bool:
    """Restore a backup into ``outdir`` (created if missing)."""
    passphrase = _read_passphrase(password)
    restore_file(backup, outdir, passphrase, params=params or KdfParams())
    print("restore completed")
    return True


def cmd_verify(backup: str, *, password: Optional[str] = None, params: Optional[KdfParams] = None) -> bool:
    """Decrypt and parse a backup without extracting it.

    Prints:
        "OK" when the container authenticates and the archive parses, "FAIL" otherwise.
    """
    passphrase = _read_passphrase(password)
    data = Path(backup).read_bytes()
    try:
        payload = open_container(data, passphrase, params=params or KdfParams())
        archive.list_entries(payload)
    except (FormatError, AuthenticationFailure, ArchiveError) as exc:
        print("FAIL")
        print(f"  {exc}", file=sys.stderr)
        return False
    print("OK")
    return True


def cmd_list(backup: str, *, password: Optional[str] = None, params: Optional[KdfParams] = None) -> bool:
    """List archive entries as ``kind<TAB>mode<TAB>size<TAB>path``."""
    passphrase = _read_passphrase(password)
    payload = open_container(Path(backup).read_bytes(), passphrase, params=params or KdfParams())
    for e in archive.list_entries(payload):
        if e.kind == ENTRY_DIR:
            print(f"dir\t{e.mode:04o}\t-\t{e.path}/")
        else:
            print(f"file\t{e.mode:04o}\t{e.size}\t{e.path}")
    return True


def cmd_info(backup: str) -> bool:
    """Show container header fields; no passphrase needed."""
    data = Path(backup).read_bytes()
    hdr = container.read_header(data)
    created = time.strftime("%Y-%m-%d %H:%M:%S UTC", time.gmtime(hdr.timestamp))
    print(f"Backup: {backup}")
    print(f"  Version: {hdr.version}{' (legacy, header not authenticated)' if hdr.version == VERSION_LEGACY else ''}")
    print(f"  Created: {created} ({hdr.timestamp})")
    print(f"  Salt: {hdr.salt.hex()}")
    print(f"  Nonce: {hdr.nonce.hex()}")
    print(f"  Ciphertext: {hdr.ciphertext_length} bytes")
    try:
        container.decode(data)
    except FormatError as exc:
        print(f"Warning: {exc}", file=sys.stderr)
        return False
    return True


def _add_kdf_args(p: argparse.ArgumentParser) -> None:
    defaults = KdfParams()
    p.add_argument("--scrypt-n", type=int, default=defaults.n, help=f"scrypt N, a power of two (default {defaults.n})")
    p.add_argument("--scrypt-r", type=int, default=defaults.r, help=f"scrypt r (default {defaults.r})")
    p.add_argument("--scrypt-p", type=int, default=defaults.p, help=f"scrypt p (default {defaults.p})")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="profilevault",
        description="Encrypted directory backups",
        epilog="scrypt parameters are not stored in the backup; restore with the values used to create it.",
    )
    ap.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_backup = sub.add_parser("backup", help="Create an encrypted backup of a directory")
    ap_backup.add_argument("source", help="Directory to back up")
    ap_backup.add_argument("output", help="Output backup file")
    ap_backup.add_argument("--pass", dest="password", help="Passphrase (prompted for when omitted)")
    ap_backup.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    _add_kdf_args(ap_backup)

    ap_restore = sub.add_parser("restore", help="Restore a backup into a directory")
    ap_restore.add_argument("backup", help="Backup file")
    ap_restore.add_argument("outdir", help="Destination directory")
    ap_restore.add_argument("--pass", dest="password", help="Passphrase (prompted for when omitted)")
    _add_kdf_args(ap_restore)

    ap_verify = sub.add_parser("verify", help="Check that a backup decrypts and parses")
    ap_verify.add_argument("backup", help="Backup file")
    ap_verify.add_argument("--pass", dest="password", help="Passphrase (prompted for when omitted)")
    _add_kdf_args(ap_verify)

    ap_list = sub.add_parser("list", help="List backup contents")
    ap_list.add_argument("backup", help="Backup file")
    ap_list.add_argument("--pass", dest="password", help="Passphrase (prompted for when omitted)")
    _add_kdf_args(ap_list)

    ap_info = sub.add_parser("info", help="Show backup header information")
    ap_info.add_argument("backup", help="Backup file")

    args = ap.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.cmd == "backup":
            cmd_backup(args.source, args.output, password=args.password, params=_kdf_params(args), quiet=args.quiet)
        elif args.cmd == "restore":
            cmd_restore(args.backup, args.outdir, password=args.password, params=_kdf_params(args))
        elif args.cmd == "verify":
            ok = cmd_verify(args.backup, password=args.password, params=_kdf_params(args))
            sys.exit(0 if ok else 1)
        elif args.cmd == "list":
            cmd_list(args.backup, password=args.password, params=_kdf_params(args))
        elif args.cmd == "info":
            ok = cmd_info(args.backup)
            sys.exit(0 if ok else 1)
        else:
            raise RuntimeError("Unknown command")
    except AuthenticationFailure:
        print("Error: wrong passphrase or corrupted backup", file=sys.stderr)
        sys.exit(2)
    except UnsupportedVersionError as e:
        print(f"Error: {e}. This backup was written by a newer version.", file=sys.stderr)
        sys.exit(2)
    except FormatError as e:
        print(f"Error: not a valid backup ({e}); the file may be truncated or damaged.", file=sys.stderr)
        sys.exit(2)
    except UnsafePathError as e:
        print(f"Error: refusing to restore: {e}", file=sys.stderr)
        sys.exit(2)
    except VaultError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (ValueError, RuntimeError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
