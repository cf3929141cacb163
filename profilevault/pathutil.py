from __future__ import annotations

import os
from typing import List

from .errors import UnsafePathError


def norm_path(p: str) -> str:
    """Normalize an archive path to its canonical forward-slash form.

    Archive names always use ``/`` as the separator; any other character,
    backslash and colon included, is part of a name component.

    Rules:
    - Reject absolute paths
    - Remove empty and '.' segments
    - Reject '..' segments, NUL bytes and names that normalize to nothing
    """
    if "\x00" in p:
        raise UnsafePathError(f"Path contains NUL: {p!r}")
    if p.startswith("/"):
        raise UnsafePathError(f"Absolute path not allowed: {p!r}")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise UnsafePathError(f"Path may not contain '..': {p!r}")
    if not parts:
        raise UnsafePathError(f"Empty path: {p!r}")
    return "/".join(parts)


def _check_component(q: str, arc_path: str) -> None:
    # components must name exactly one entry on the local filesystem
    for sep in (os.sep, os.altsep):
        if sep and sep != "/" and sep in q:
            raise UnsafePathError(f"Path component contains {sep!r}: {arc_path!r}")
    if os.name == "nt" and os.path.splitdrive(q)[0]:
        raise UnsafePathError(f"Drive-qualified path not allowed: {arc_path!r}")


def local_parts(arc_path: str) -> List[str]:
    """Split ``arc_path`` into components that are safe to join on this platform."""
    parts = norm_path(arc_path).split("/")
    for q in parts:
        _check_component(q, arc_path)
    return parts


def confine(root: str, arc_path: str) -> str:
    """Resolve ``arc_path`` under ``root`` and ensure it stays strictly inside it."""
    parts = local_parts(arc_path)
    base = os.path.realpath(root)
    target = os.path.realpath(os.path.join(base, *parts))
    if target == base or os.path.commonpath([base, target]) != base:
        raise UnsafePathError(f"Path escapes destination: {arc_path!r}")
    return target
