# edcore

This library holds the parts of a small terminal text editor that do not
need a screen. It covers file I/O, per-file edit locks, persistent undo
and cursor history, and regex search. It uses only the standard library.

## Modules

### `edcore.records`

Plain value types:

- `Pos(line, col)`: a zero-based position. It is frozen and ordered.
- `OpKind`: `INSERT` (0) or `DELETE` (1).
- `Operation(kind, pos, data)`: inserts or deletes `data` (bytes) at byte
  offset `pos`. A negative offset raises `ValueError`.
- `OperationGroup(ops, cursor_before, cursor_after)`: the operations that
  are undone or redone together.

### `edcore.fileio`

- `read_file(path)` returns the raw bytes.
- `write_file(path, data)` writes `clean_for_write(data)`.
- `clean_for_write(data)` does three things:
  - strips trailing whitespace from every line;
  - drops leading blank lines;
  - ensures a single final newline.
- `is_likely_binary(data)` is true when the first 8 KiB contain a NUL byte.
- `file_size(path)` returns the size in bytes.
- `file_mtime(path)` returns a POSIX timestamp, or `None` when the file
  cannot be read.
- `config_dir()` returns `$HOME/.config/e`, or `/tmp/.config/e` when
  `HOME` is unset.
- `resolve_absolute(path)` returns an absolute path. It also works for
  files that do not exist yet.
- `encode_path(path)` and `lock_path(path, locks_dir=None)` compute the
  lock file name: `/` becomes `%2F`, `%` becomes `%25`, and `.elock` is
  appended.
- `acquire_lock(path, locks_dir=None)` creates the lock file. It raises
  `LockError` if the lock already exists or cannot be created.
- `release_lock(path, locks_dir=None)` removes the lock file and ignores
  errors.

Locks go in `config_dir() / "locks"` unless you pass `locks_dir`.

### `edcore.undo_history`

All files share one binary database, `undo.bin` in the config directory.
You can pass `db_path` to use another file.

- `save_undo_history(file_path, undo, redo, db_path=None)` stores both
  stacks together with the file's current modification time. While
  rewriting, it drops the entries of other files that were modified or
  deleted since their history was saved. It returns `True` when the
  database was written and swallows failures.
- `load_undo_history(file_path, db_path=None)` returns `(undo, redo)`. It
  returns `None` in any of these cases:
  - there is no entry for the file;
  - the database is corrupt;
  - the file's modification time no longer matches.
- `serialize_groups(groups)` and `deserialize_groups(data)` encode and
  decode a single stack. Decoding raises `ValueError` on malformed input.

The database is locked with `flock` while it is read or rewritten.

### `edcore.cursor_history`

Cursor positions are kept in `cursor.bin` in the config directory.

- `save_cursor_position(file_path, cursor, db_path=None)` stores the
  position and drops the entries of files that no longer exist. It
  returns `True` when the database was written.
- `load_cursor_position(file_path, db_path=None)` returns a `Pos`, or
  `None` if there is no entry.

Positions are not checked against the file's contents. Clamp them to
your buffer before you use them.

### `edcore.find`

These functions take the buffer as a sequence of lines: `str`, or UTF-8
`bytes`. Lines that are not valid UTF-8 are skipped. Results are
`(start, end)` pairs of `Pos` in character columns.

- `compile_pattern(pattern)` compiles with smart case: the match ignores
  case when the pattern has no uppercase letter. It returns `None` for an
  invalid regex.
- `search_forward(lines, regex, start)` finds the first match at or
  after `start`. If there is none, it wraps to the top.
- `search_backward(lines, regex, start)` finds the last match that ends
  before `start`. If there is none, it wraps to the bottom.
- `FindState` keeps the current pattern, the matches on the visible lines
  and the current match. Its methods are:
  - `update_highlights`
  - `refresh_viewport_matches`
  - `find_next`
  - `find_prev`
  - `exit`
  - `clear`
  - `status_text`

  `status_text()` returns text such as `Find: foo (3 matches)`.

## Example

```python
from pathlib import Path

from edcore import fileio, find
from edcore.records import Pos

path = Path("notes.txt")
fileio.write_file(path, b"hello   \nworld")
assert fileio.read_file(path) == b"hello\nworld\n"

lines = fileio.read_file(path).decode().split("\n")
state = find.FindState()
state.update_highlights("WORLD", lines, 0, 20, Pos(0, 0))
print(state.status_text())        # Find: WORLD (0 matches)

regex = find.compile_pattern("world")
print(find.search_forward(lines, regex, Pos(0, 0)))
# (Pos(line=1, col=0), Pos(line=1, col=5))
```

## What it does not do

This is a library only. It has no:

- command to run;
- terminal screen, rendering or key handling;
- text buffer type;
- undo stack that applies operations;
- replace command.

`find` works on whatever list of lines you give it. The undo module
stores and restores stacks of `OperationGroup` but does not apply them.

## Running the tests

    pip install -e ".[test]"
    pytest