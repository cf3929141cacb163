from __future__ import annotations

"""Directory tree <-> gzip-compressed tar stream.

``pack`` records directories and regular files below a root (the root itself
is not stored) with slash-separated relative names, mode bits and mtimes.
``unpack`` treats the stream as untrusted: every member name is validated and
confined to the destination before anything is written.
"""

import gzip
import io
import logging
import os
import shutil
import stat
import tarfile
import zlib
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .constants import ENTRY_DIR, ENTRY_FILE, STAGING_DIR_MODE
from .errors import ArchiveError, UnsafePathError
from .pathutil import confine, local_parts, norm_path


_LOGGER = logging.getLogger(__name__)

_MALFORMED = (tarfile.TarError, zlib.error, EOFError, gzip.BadGzipFile)


@dataclass
class ArchiveEntry:
    kind: int  # 0=file, 1=dir
    path: str
    mode: int
    size: int = 0
    mtime: Optional[int] = None


def _raise(exc: OSError) -> None:
    raise exc


def _tarinfo(arc_path: str, st: os.stat_result, kind: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name=arc_path)
    info.type = tarfile.DIRTYPE if kind == ENTRY_DIR else tarfile.REGTYPE
    info.mode = stat.S_IMODE(st.st_mode)
    info.mtime = int(st.st_mtime)
    info.size = st.st_size if kind == ENTRY_FILE else 0
    return info


def _arc_name(full: str, root: str) -> str:
    """Archive name for ``full``; refuses names that ``unpack`` would reject."""
    arc = os.path.relpath(full, root).replace(os.sep, "/")
    try:
        ok = "/".join(local_parts(arc)) == arc
    except UnsafePathError:
        ok = False
    if not ok:
        raise ArchiveError(f"Cannot store {full!r}: name would not restore as {arc!r}")
    return arc


def pack(root: str) -> bytes:
    """Serialize the tree under ``root`` into archive bytes.

    Enumeration follows ``os.walk`` order, so two packs of the same tree may
    differ byte-wise while describing the same content. Symlinks and special
    files are not stored.
    """
    if not os.path.isdir(root):
        raise ArchiveError(f"Not a directory: {root}")
    buf = io.BytesIO()
    count = 0
    try:
        with tarfile.open(fileobj=buf, mode="w:gz", format=tarfile.PAX_FORMAT) as tar:
            for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
                # do not descend through symlinked directories
                dirnames[:] = [d for d in dirnames if not os.path.islink(os.path.join(dirpath, d))]
                for d in dirnames:
                    full = os.path.join(dirpath, d)
                    arc = _arc_name(full, root)
                    tar.addfile(_tarinfo(arc, os.stat(full), ENTRY_DIR))
                    count += 1
                for f in filenames:
                    full = os.path.join(dirpath, f)
                    st = os.lstat(full)
                    if not stat.S_ISREG(st.st_mode):
                        _LOGGER.debug("skipping non-regular file %s", full)
                        continue
                    arc = _arc_name(full, root)
                    with open(full, "rb") as fh:
                        tar.addfile(_tarinfo(arc, os.fstat(fh.fileno()), ENTRY_FILE), fh)
                    count += 1
    except OSError as exc:
        raise ArchiveError(f"Failed to read {getattr(exc, 'filename', None) or root}: {exc}") from exc
    except tarfile.TarError as exc:
        raise ArchiveError(f"Failed to build archive: {exc}") from exc
    _LOGGER.debug("packed %d entries from %s", count, root)
    return buf.getvalue()


def _open(data: bytes) -> tarfile.TarFile:
    try:
        return tarfile.open(fileobj=io.BytesIO(data), mode="r:gz")
    except _MALFORMED as exc:
        raise ArchiveError(f"Malformed archive: {exc}") from exc


def _scan(tar: tarfile.TarFile) -> List[Tuple[tarfile.TarInfo, ArchiveEntry]]:
    """Read and validate every member header; unknown member types are dropped."""
    out: List[Tuple[tarfile.TarInfo, ArchiveEntry]] = []
    try:
        members = tar.getmembers()
    except _MALFORMED as exc:
        raise ArchiveError(f"Malformed archive: {exc}") from exc
    for m in members:
        if m.name.strip("/") in ("", "."):
            continue  # root entry
        path = norm_path(m.name)
        if m.isdir():
            kind = ENTRY_DIR
        elif m.isreg():
            kind = ENTRY_FILE
        else:
            _LOGGER.warning("skipping unsupported archive member %s (type %r)", m.name, m.type)
            continue
        out.append((m, ArchiveEntry(kind=kind, path=path, mode=m.mode & 0o7777, size=m.size if kind == ENTRY_FILE else 0, mtime=int(m.mtime))))
    return out


def list_entries(data: bytes) -> List[ArchiveEntry]:
    """Parse ``data`` and return its entries without touching the filesystem."""
    with _open(data) as tar:
        return [e for _m, e in _scan(tar)]


def _safe_utime(path: str, mtime: Optional[int]) -> None:
    if mtime is None:
        return
    try:
        os.utime(path, (mtime, mtime))
    except OSError as exc:
        _LOGGER.warning("failed to set timestamps on %s: %s", path, exc)


def unpack(data: bytes, dest: str) -> None:
    """Recreate the archived tree under ``dest``.

    All member names are checked before the first write; a name that would
    land outside ``dest`` raises ``UnsafePathError`` and nothing is extracted.
    Directory modes are applied last (deepest first) so restrictive modes do
    not block file creation.
    """
    with _open(data) as tar:
        scanned = _scan(tar)
        targets = [confine(dest, e.path) for _m, e in scanned]

        os.makedirs(dest, exist_ok=True)
        dirs: List[Tuple[str, ArchiveEntry]] = []
        for (_m, e), target in zip(scanned, targets):
            if e.kind == ENTRY_DIR:
                os.makedirs(target, mode=STAGING_DIR_MODE, exist_ok=True)
                dirs.append((target, e))

        for (m, e), target in zip(scanned, targets):
            if e.kind != ENTRY_FILE:
                continue
            os.makedirs(os.path.dirname(target), mode=STAGING_DIR_MODE, exist_ok=True)
            if os.path.islink(target):
                raise UnsafePathError(f"Refusing to write through symlink: {e.path}")
            try:
                src = tar.extractfile(m)
                if src is None:
                    raise ArchiveError(f"Missing data for {e.path}")
                with src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
            except _MALFORMED as exc:
                raise ArchiveError(f"Malformed archive data for {e.path}: {exc}") from exc
            os.chmod(target, e.mode)
            _safe_utime(target, e.mtime)

        for target, e in sorted(dirs, key=lambda item: item[0].count(os.sep), reverse=True):
            os.chmod(target, e.mode)
            _safe_utime(target, e.mtime)
    _LOGGER.debug("unpacked %d entries into %s", len(scanned), dest)
