"""Persistent undo/redo history shared by all files in one database file.

The database is ``<config>/undo.bin``:

* header: magic ``eUND``, version byte, little-endian u32 entry count;
* entries: u32 length followed by the entry body.

An entry body holds the file's absolute path, its modification time when
the history was saved, and the undo and redo stacks.  A history is only
restored while the file's modification time still matches.  When saving,
entries for other files are copied through unchanged unless their file
was deleted or modified since.
"""

from __future__ import annotations

import os
import struct
from pathlib import Path
from typing import Iterable, Optional

from .fileio import config_dir, resolve_absolute
from .records import OpKind, Operation, OperationGroup, Pos

try:
    import fcntl
except ImportError:  # pragma: no cover - platforms without flock
    fcntl = None  # type: ignore[assignment]

UNDO_MAGIC = b"eUND"
UNDO_VERSION = 1
MAX_GROUPS = 100_000
MAX_ENTRIES = 10_000

_HEADER_LEN = 4 + 1 + 4
_U32_MASK = 0xFFFFFFFF
_U64_MASK = 0xFFFFFFFFFFFFFFFF
_NANOS = 1_000_000_000


def default_undo_db() -> Path:
    """Location of the shared undo database."""
    return config_dir() / "undo.bin"


class _Reader:
    """Sequential little-endian reader that raises ValueError on truncation."""

    def __init__(self, data: bytes, pos: int = 0) -> None:
        self.data = data
        self.pos = pos

    def take(self, n: int) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise ValueError("truncated data")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def _unpack(self, fmt: str, size: int) -> int:
        (value,) = struct.unpack(fmt, self.take(size))
        return value

    def u8(self) -> int:
        return self._unpack("<B", 1)

    def u32(self) -> int:
        return self._unpack("<I", 4)

    def u64(self) -> int:
        return self._unpack("<Q", 8)

    def i64(self) -> int:
        return self._unpack("<q", 8)


def _pack_u32(value: int) -> bytes:
    return struct.pack("<I", value & _U32_MASK)


def _serialize_group(group: OperationGroup) -> bytes:
    out = bytearray()
    for value in (
        group.cursor_before.line,
        group.cursor_before.col,
        group.cursor_after.line,
        group.cursor_after.col,
        len(group.ops),
    ):
        out += _pack_u32(value)
    for op in group.ops:
        out += struct.pack("<BQ", int(op.kind), op.pos & _U64_MASK)
        out += _pack_u32(len(op.data))
        out += op.data
    return bytes(out)


def serialize_groups(groups: Iterable[OperationGroup]) -> bytes:
    """Encode a stack of groups: a u32 count followed by each group."""
    groups = list(groups)
    return _pack_u32(len(groups)) + b"".join(_serialize_group(g) for g in groups)


def _read_group(reader: _Reader) -> OperationGroup:
    cb_line, cb_col, ca_line, ca_col = (reader.u32() for _ in range(4))
    op_count = reader.u32()
    if op_count > MAX_GROUPS:
        raise ValueError(f"too many operations in group: {op_count}")
    ops = []
    for _ in range(op_count):
        kind = reader.u8()
        pos = reader.u64()
        length = reader.u32()
        data = reader.take(length)
        try:
            op_kind = OpKind(kind)
        except ValueError as exc:
            raise ValueError(f"unknown operation kind: {kind}") from exc
        ops.append(Operation(op_kind, pos, data))
    return OperationGroup(ops, Pos(cb_line, cb_col), Pos(ca_line, ca_col))


def _read_groups(reader: _Reader) -> list[OperationGroup]:
    count = reader.u32()
    if count > MAX_GROUPS:
        raise ValueError(f"too many groups: {count}")
    return [_read_group(reader) for _ in range(count)]


def deserialize_groups(data: bytes) -> list[OperationGroup]:
    """Decode a stack written by serialize_groups; raise ValueError if malformed."""
    return _read_groups(_Reader(bytes(data)))


def _mtime_stamp(path: str | os.PathLike) -> tuple[int, int]:
    """Modification time as (seconds, nanoseconds) since the epoch."""
    ns = os.stat(path).st_mtime_ns
    if ns < 0:
        return (0, 0)
    secs, nanos = divmod(ns, _NANOS)
    return (secs, nanos)


def _entry_header(data: bytes, start: int) -> Optional[tuple[bytes, int, int]]:
    reader = _Reader(data, start)
    try:
        path = reader.take(reader.u32())
        secs = reader.i64()
        nanos = reader.u32()
    except ValueError:
        return None
    return (path, secs, nanos)


def _entry_mtime_valid(path: bytes, secs: int, nanos: int) -> bool:
    try:
        path_str = path.decode("utf-8")
        return _mtime_stamp(path_str) == (secs, nanos)
    except (UnicodeDecodeError, OSError, ValueError):
        return False


def _collect_kept_entries(data: bytes, exclude_path: bytes) -> list[bytes]:
    """Entry bodies for other files whose recorded mtime is still current."""
    if len(data) < _HEADER_LEN or data[:4] != UNDO_MAGIC or data[4] != UNDO_VERSION:
        return []
    reader = _Reader(data, 5)
    count = min(reader.u32(), MAX_ENTRIES)
    kept = []
    for _ in range(count):
        try:
            length = reader.u32()
        except ValueError:
            break
        start = reader.pos
        if start + length > len(data):
            break
        body = data[start:start + length]
        reader.pos = start + length
        header = _entry_header(data, start)
        if header is None:
            continue
        path, secs, nanos = header
        if path != exclude_path and _entry_mtime_valid(path, secs, nanos):
            kept.append(body)
    return kept


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


def _save(file_path, undo, redo, db: Path) -> bool:
    path_bytes = os.fsencode(resolve_absolute(file_path))
    secs, nanos = _mtime_stamp(file_path)

    entry = (
        _pack_u32(len(path_bytes))
        + path_bytes
        + struct.pack("<qI", secs, nanos)
        + serialize_groups(undo)
        + serialize_groups(redo)
    )

    db.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(db, os.O_RDWR | os.O_CREAT, 0o644)
    with os.fdopen(fd, "r+b") as fh:
        if not _flock(fh, exclusive=True):
            return False
        try:
            existing = fh.read()
            kept = _collect_kept_entries(existing, path_bytes)
            out = bytearray(UNDO_MAGIC)
            out += struct.pack("<B", UNDO_VERSION)
            out += _pack_u32(len(kept) + 1)
            for body in kept:
                out += _pack_u32(len(body)) + body
            out += _pack_u32(len(entry)) + entry
            fh.seek(0)
            fh.truncate()
            fh.write(out)
            fh.flush()
        finally:
            _unlock(fh)
    return True


def save_undo_history(
    file_path: str | os.PathLike,
    undo: Iterable[OperationGroup],
    redo: Iterable[OperationGroup],
    db_path: str | os.PathLike | None = None,
) -> bool:
    """Store the undo and redo stacks for ``file_path``.

    Failures are swallowed, as history is a convenience; the return value
    tells whether the database was written.
    """
    db = Path(db_path) if db_path is not None else default_undo_db()
    try:
        return _save(file_path, list(undo), list(redo), db)
    except (OSError, ValueError, struct.error):
        return False


def _load(file_path, db: Path) -> Optional[tuple[list[OperationGroup], list[OperationGroup]]]:
    target = os.fsencode(resolve_absolute(file_path))
    with open(db, "rb") as fh:
        _flock(fh, exclusive=False)
        try:
            data = fh.read()
        finally:
            _unlock(fh)

    if len(data) < _HEADER_LEN or data[:4] != UNDO_MAGIC:
        return None
    reader = _Reader(data, 4)
    if reader.u8() != UNDO_VERSION:
        return None

    count = reader.u32()
    for _ in range(min(count, MAX_ENTRIES)):
        length = reader.u32()
        start = reader.pos
        if start + length > len(data):
            return None
        entry_path = reader.take(reader.u32())
        if entry_path == target:
            stored = (reader.i64(), reader.u32())
            if _mtime_stamp(file_path) != stored:
                return None
            undo = _read_groups(reader)
            redo = _read_groups(reader)
            return (undo, redo)
        reader.pos = start + length
    return None


def load_undo_history(
    file_path: str | os.PathLike,
    db_path: str | os.PathLike | None = None,
) -> Optional[tuple[list[OperationGroup], list[OperationGroup]]]:
    """Return ``(undo, redo)`` saved for ``file_path``.

    Returns None if there is no entry, the database is unreadable or
    corrupt, or the file was modified since the history was saved.
    """
    db = Path(db_path) if db_path is not None else default_undo_db()
    try:
        return _load(file_path, db)
    except (OSError, ValueError):
        return None