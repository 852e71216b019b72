"""Last cursor position per file, kept in one shared database file.

The database is ``<config>/cursor.bin``:

* header: magic ``eCUR``, version byte, little-endian u32 entry count;
* entries: u32 length followed by the entry body, which is
  ``[path_len:u32][path][line:u32][col:u32]``.

Positions are not tied to the file's modification time; callers clamp a
loaded position to the buffer.  Entries for files that no longer exist are
dropped whenever the database is rewritten.
"""

from __future__ import annotations

import os
import struct
from pathlib import Path
from typing import Optional

from .fileio import config_dir, resolve_absolute
from .records import Pos

try:
    import fcntl
except ImportError:  # pragma: no cover - platforms without flock
    fcntl = None  # type: ignore[assignment]

CURSOR_MAGIC = b"eCUR"
CURSOR_VERSION = 1
CURSOR_MAX_ENTRIES = 10_000

_HEADER_LEN = 4 + 1 + 4
_U32_MASK = 0xFFFFFFFF


def default_cursor_db() -> Path:
    """Location of the shared cursor-position database."""
    return config_dir() / "cursor.bin"


def _pack_u32(value: int) -> bytes:
    return struct.pack("<I", value & _U32_MASK)


def _read_u32(data: bytes, pos: int) -> int:
    """Read a little-endian u32 at ``pos``; raise ValueError if truncated."""
    if pos + 4 > len(data):
        raise ValueError("truncated data")
    (value,) = struct.unpack_from("<I", data, pos)
    return value


def _flock(fh, exclusive: bool) -> bool:
    if fcntl is None:
        return True
    try:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
    except OSError:
        return False
    return True


def _unlock(fh) -> None:
    if fcntl is None:
        return
    try:
        fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
    except OSError:
        pass


def _path_exists(path: bytes) -> bool:
    try:
        return Path(path.decode("utf-8")).exists()
    except (UnicodeDecodeError, OSError, ValueError):
        return False


def _collect_cursor_entries(data: bytes, exclude_path: bytes) -> list[bytes]:
    """Length-prefixed entries for other files that still exist."""
    if (
        len(data) < _HEADER_LEN
        or data[:4] != CURSOR_MAGIC
        or data[4] != CURSOR_VERSION
    ):
        return []
    count = min(_read_u32(data, 5), CURSOR_MAX_ENTRIES)
    pos = _HEADER_LEN
    kept: list[bytes] = []
    for _ in range(count):
        if pos + 4 > len(data):
            break
        length = _read_u32(data, pos)
        body_start = pos + 4
        entry_end = body_start + length
        if entry_end > len(data):
            break
        if body_start + 4 > len(data):
            pos = entry_end
            continue
        path_len = _read_u32(data, body_start)
        path_start = body_start + 4
        if path_start + path_len > len(data):
            break
        entry_path = data[path_start:path_start + path_len]
        if entry_path != exclude_path and _path_exists(entry_path):
            kept.append(data[pos:entry_end])
        pos = entry_end
    return kept


def _save(file_path, cursor: Pos, db: Path) -> bool:
    path_bytes = os.fsencode(resolve_absolute(file_path))
    entry = (
        _pack_u32(len(path_bytes))
        + path_bytes
        + _pack_u32(cursor.line)
        + _pack_u32(cursor.col)
    )

    db.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(db, os.O_RDWR | os.O_CREAT, 0o644)
    with os.fdopen(fd, "r+b") as fh:
        if not _flock(fh, exclusive=True):
            return False
        try:
            existing = fh.read()
            kept = _collect_cursor_entries(existing, path_bytes)
            out = bytearray(CURSOR_MAGIC)
            out += struct.pack("<B", CURSOR_VERSION)
            out += _pack_u32(len(kept) + 1)
            for blob in kept:
                out += blob
            out += _pack_u32(len(entry)) + entry
            fh.seek(0)
            fh.truncate()
            fh.write(out)
            fh.flush()
        finally:
            _unlock(fh)
    return True


def save_cursor_position(
    file_path: str | os.PathLike,
    cursor: Pos,
    db_path: str | os.PathLike | None = None,
) -> bool:
    """Remember ``cursor`` for ``file_path``.

    Failures are swallowed; the return value tells whether the database
    was written.
    """
    db = Path(db_path) if db_path is not None else default_cursor_db()
    try:
        return _save(file_path, cursor, db)
    except (OSError, ValueError, struct.error):
        return False


def _load(file_path, db: Path) -> Optional[Pos]:
    target = os.fsencode(resolve_absolute(file_path))
    with open(db, "rb") as fh:
        _flock(fh, exclusive=False)
        try:
            data = fh.read()
        finally:
            _unlock(fh)

    if len(data) < _HEADER_LEN or data[:4] != CURSOR_MAGIC:
        return None
    if data[4] != CURSOR_VERSION:
        return None

    count = _read_u32(data, 5)
    pos = _HEADER_LEN
    for _ in range(min(count, CURSOR_MAX_ENTRIES)):
        length = _read_u32(data, pos)
        start = pos + 4
        if start + length > len(data):
            return None
        path_len = _read_u32(data, start)
        path_start = start + 4
        if path_start + path_len > len(data):
            return None
        entry_path = data[path_start:path_start + path_len]
        if entry_path == target:
            after = path_start + path_len
            return Pos(_read_u32(data, after), _read_u32(data, after + 4))
        pos = start + length
    return None


def load_cursor_position(
    file_path: str | os.PathLike,
    db_path: str | os.PathLike | None = None,
) -> Optional[Pos]:
    """Return the position saved for ``file_path``, or None if there is none."""
    db = Path(db_path) if db_path is not None else default_cursor_db()
    try:
        return _load(file_path, db)
    except (OSError, ValueError):
        return None