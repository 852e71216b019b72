"""File reading and writing, lock files and small file queries."""

from __future__ import annotations

import os
from pathlib import Path

_BINARY_CHECK_LEN = 8192


class LockError(Exception):
    """Raised when a lock file cannot be taken."""


def config_dir() -> Path:
    """Directory for the editor's persistent state: ``$HOME/.config/e``."""
    return Path(os.environ.get("HOME", "/tmp")) / ".config" / "e"


def _default_locks_dir() -> Path:
    return config_dir() / "locks"


def read_file(path: str | os.PathLike) -> bytes:
    """Return the raw bytes of a file."""
    return Path(path).read_bytes()


def write_file(path: str | os.PathLike, data: bytes) -> None:
    """Write ``data`` with trailing whitespace stripped and a final newline."""
    cleaned = clean_for_write(data)
    with open(path, "wb") as f:
        f.write(cleaned)
        f.flush()


def clean_for_write(data: bytes) -> bytes:
    """Strip trailing whitespace from each line and ensure a trailing newline.

    Leading empty lines are dropped: a separator is only emitted once some
    text has been produced.
    """
    text = data.decode("utf-8", errors="replace")
    parts: list[str] = []
    have_text = False
    for line in text.split("\n"):
        if have_text:
            parts.append("\n")
        stripped = line.rstrip()
        parts.append(stripped)
        have_text = have_text or bool(stripped)
    out = "".join(parts)
    if not out.endswith("\n"):
        out += "\n"
    return out.encode("utf-8")


def encode_path(path: str | os.PathLike) -> str:
    """Encode a path for use as a file name: ``/`` becomes ``%2F``, ``%`` becomes ``%25``."""
    return os.fspath(path).replace("%", "%25").replace("/", "%2F")


def resolve_absolute(path: str | os.PathLike) -> Path:
    """Absolute form of ``path``, resolving the parent if the file does not exist."""
    p = Path(path)
    try:
        return p.resolve(strict=True)
    except OSError:
        pass
    parent = p.parent
    try:
        abs_parent = parent.resolve(strict=True)
    except OSError:
        abs_parent = Path.cwd() / parent
    return abs_parent / p.name


def lock_path(path: str | os.PathLike, locks_dir: str | os.PathLike | None = None) -> Path:
    """Path of the lock file for ``path``: ``<locks_dir>/<encoded>.elock``."""
    directory = Path(locks_dir) if locks_dir is not None else _default_locks_dir()
    return directory / f"{encode_path(path)}.elock"


def acquire_lock(path: str | os.PathLike, locks_dir: str | os.PathLike | None = None) -> None:
    """Create the lock file for ``path``; raise LockError if it already exists."""
    directory = Path(locks_dir) if locks_dir is not None else _default_locks_dir()
    lock = lock_path(resolve_absolute(path), directory)
    if lock.exists():
        raise LockError(
            f"Lock file exists: {lock} (another e instance may be editing this file)"
        )
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise LockError(f"Failed to create locks dir: {exc}") from exc
    try:
        with open(lock, "xb"):
            pass
    except FileExistsError as exc:
        raise LockError(
            f"Lock file exists: {lock} (another e instance may be editing this file)"
        ) from exc
    except OSError as exc:
        raise LockError(f"Failed to create lock file: {exc}") from exc


def release_lock(path: str | os.PathLike, locks_dir: str | os.PathLike | None = None) -> None:
    """Remove the lock file for ``path``, ignoring errors."""
    lock = lock_path(resolve_absolute(path), locks_dir)
    try:
        lock.unlink()
    except OSError:
        pass


def is_likely_binary(data: bytes) -> bool:
    """True if the first 8 KiB contain a NUL byte."""
    return b"\x00" in data[:_BINARY_CHECK_LEN]


def file_size(path: str | os.PathLike) -> int:
    """Size of the file in bytes."""
    return os.stat(path).st_size


def file_mtime(path: str | os.PathLike) -> float | None:
    """Modification time as a POSIX timestamp, or None if unavailable."""
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None