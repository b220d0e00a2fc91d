from __future__ import annotations

import errno
import os
from pathlib import Path
from typing import Collection, Optional

ELLIPSIS = "…"
MAX_BASENAME_BYTES = 255


def path_exists(path: Path) -> Optional[bool]:
    """Like ``Path.exists`` but survives names the OS refuses to stat.

    Returns None when the answer cannot be known because the parent is gone.
    """
    try:
        os.lstat(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        if exc.errno != errno.ENAMETOOLONG:
            raise
        return _listed_in_parent(path)
    return True


def _listed_in_parent(path: Path) -> Optional[bool]:
    try:
        with os.scandir(path.parent) as entries:
            return any(entry.name == path.name for entry in entries)
    except FileNotFoundError:
        return None


def truncate_filename(path: Path, max_bytes: int = MAX_BASENAME_BYTES) -> Path:
    """Shorten the stem so the basename fits in ``max_bytes`` UTF-8 bytes, keeping the extension."""
    if len(path.name.encode("utf-8")) <= max_bytes:
        return path
    suffix = path.suffix
    reserved = len(suffix.encode("utf-8")) + len(ELLIPSIS.encode("utf-8"))
    allowed = max(0, max_bytes - reserved)
    truncated = path.stem.encode("utf-8")[:allowed].decode("utf-8", errors="ignore").rstrip(" .")
    return path.with_name(f"{truncated}{ELLIPSIS}{suffix}")


def unique_destination(path: Path, taken: Collection[Path] = ()) -> tuple[Path, int]:
    """First free variant of ``path``: the path itself, then ``Stem (1).ext``, ``Stem (2).ext``...

    Paths in ``taken`` count as occupied even when nothing is on disk yet.
    Returns the path and the suffix number used (0 when unchanged).
    """
    number = 0
    candidate = path
    while candidate in taken or path_exists(candidate):
        number += 1
        candidate = path.with_name(f"{path.stem} ({number}){path.suffix}")
    return candidate, number


def safe_rename(src: Path, dst: Path) -> None:
    """Rename ``src`` to ``dst``, retrying relative to directory handles for over-long paths."""
    try:
        src.rename(dst)
    except OSError as exc:
        if exc.errno != errno.ENAMETOOLONG:
            raise
        _rename_via_dir_fds(src, dst)


def _rename_via_dir_fds(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    fds = []
    try:
        for directory in (src.parent, dst.parent):
            fds.append(os.open(directory, os.O_RDONLY))
        os.rename(src.name, dst.name, src_dir_fd=fds[0], dst_dir_fd=fds[1])
    finally:
        for fd in fds:
            os.close(fd)
