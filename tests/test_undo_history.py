import os
from pathlib import Path

import pytest

from edcore.records import OpKind, Operation, OperationGroup, Pos
from edcore.undo_history import (
    default_undo_db,
    deserialize_groups,
    load_undo_history,
    save_undo_history,
    serialize_groups,
)


def _group_insert_hello():
    return OperationGroup(
        [Operation(OpKind.INSERT, 0, b"hello")], Pos(0, 0), Pos(0, 5)
    )


def _group_delete_lo():
    return OperationGroup(
        [Operation(OpKind.DELETE, 3, b"lo")], Pos(0, 5), Pos(0, 3)
    )


def _test_stack():
    return [_group_insert_hello(), _group_delete_lo()]


def _group_insert_x():
    return OperationGroup([Operation(OpKind.INSERT, 0, b"x")], Pos(0, 0), Pos(0, 1))


def _touch_later(path: Path) -> None:
    st = os.stat(path)
    later = st.st_mtime_ns + 5_000_000_000
    os.utime(path, ns=(later, later))


def test_default_undo_db_under_home(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert default_undo_db() == tmp_path / ".config" / "e" / "undo.bin"


def test_serialize_empty_stack():
    assert serialize_groups([]) == b"\x00\x00\x00\x00"


def test_serialize_single_group_layout():
    expected = (
        b"\x01\x00\x00\x00"
        + b"\x00" * 12
        + b"\x05\x00\x00\x00"
        + b"\x01\x00\x00\x00"
        + b"\x00"
        + b"\x00" * 8
        + b"\x05\x00\x00\x00"
        + b"hello"
    )
    assert serialize_groups([_group_insert_hello()]) == expected


def test_serialize_roundtrip():
    groups = _test_stack()
    assert deserialize_groups(serialize_groups(groups)) == groups


def test_deserialize_empty_raises():
    with pytest.raises(ValueError):
        deserialize_groups(b"")


def test_deserialize_truncated_group_raises():
    with pytest.raises(ValueError):
        deserialize_groups(b"\x01\x00\x00\x00")


def test_deserialize_bad_kind_raises():
    data = bytearray(serialize_groups([_group_insert_hello()]))
    data[24] = 7
    with pytest.raises(ValueError):
        deserialize_groups(bytes(data))


def test_deserialize_too_many_groups_raises():
    with pytest.raises(ValueError):
        deserialize_groups((100_001).to_bytes(4, "little"))


def test_roundtrip(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hel")

    assert save_undo_history(path, _test_stack(), [], db) is True
    loaded = load_undo_history(path, db)
    assert loaded is not None
    undo, redo = loaded
    assert len(undo) == 2
    assert redo == []
    assert undo[0].cursor_before == Pos(0, 0)
    assert undo[0].cursor_after == Pos(0, 5)
    assert len(undo[0].ops) == 1
    assert undo[1].cursor_before == Pos(0, 5)
    assert undo[1].cursor_after == Pos(0, 3)
    assert undo == _test_stack()


def test_db_header(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hel")
    save_undo_history(path, _test_stack(), [], db)
    data = db.read_bytes()
    assert data[:5] == b"eUND\x01"
    assert data[5:9] == b"\x01\x00\x00\x00"


def test_with_redo(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hel")

    save_undo_history(path, [_group_insert_hello()], [_group_delete_lo()], db)
    undo, redo = load_undo_history(path, db)
    assert len(undo) == 1
    assert len(redo) == 1
    assert redo[0] == _group_delete_lo()


def test_mtime_mismatch(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hello")

    save_undo_history(path, _test_stack(), [], db)
    path.write_bytes(b"changed")
    _touch_later(path)
    assert load_undo_history(path, db) is None


def test_corrupt_db(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hello")
    db.write_bytes(b"garbage data here")
    assert load_undo_history(path, db) is None


def test_empty_stacks(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hello")
    save_undo_history(path, [], [], db)
    assert load_undo_history(path, db) == ([], [])


def test_bad_magic(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hello")
    db.write_bytes(b"BADMagic")
    assert load_undo_history(path, db) is None


def test_bad_version(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hello")
    db.write_bytes(b"eUND" + bytes([99]))
    assert load_undo_history(path, db) is None


def test_bad_version_full_header(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hello")
    db.write_bytes(b"eUND" + bytes([99]) + b"\x00\x00\x00\x00")
    assert load_undo_history(path, db) is None


def test_multiple_files(tmp_path):
    path_a = tmp_path / "a.txt"
    path_b = tmp_path / "b.txt"
    db = tmp_path / "undo.bin"
    path_a.write_bytes(b"aaa")
    path_b.write_bytes(b"bbb")

    save_undo_history(path_a, _test_stack(), [], db)
    save_undo_history(path_b, [_group_insert_x()], [], db)

    assert len(load_undo_history(path_a, db)[0]) == 2
    assert len(load_undo_history(path_b, db)[0]) == 1


def test_update_replaces_entry(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hello")

    save_undo_history(path, _test_stack(), [], db)
    save_undo_history(path, [_group_insert_x()], [], db)

    undo, _ = load_undo_history(path, db)
    assert undo == [_group_insert_x()]
    assert db.read_bytes()[5:9] == b"\x01\x00\x00\x00"


def test_prunes_stale_entries(tmp_path):
    path_a = tmp_path / "a.txt"
    path_b = tmp_path / "b.txt"
    db = tmp_path / "undo.bin"
    path_a.write_bytes(b"aaa")
    path_b.write_bytes(b"bbb")

    save_undo_history(path_a, _test_stack(), [], db)
    save_undo_history(path_b, _test_stack(), [], db)
    size_before = db.stat().st_size

    path_a.write_bytes(b"modified")
    _touch_later(path_a)

    save_undo_history(path_b, _test_stack(), [], db)
    size_after = db.stat().st_size
    assert size_after < size_before

    assert load_undo_history(path_a, db) is None
    assert len(load_undo_history(path_b, db)[0]) == 2


def test_prunes_deleted_file(tmp_path):
    path_a = tmp_path / "a.txt"
    path_b = tmp_path / "b.txt"
    db = tmp_path / "undo.bin"
    path_a.write_bytes(b"aaa")
    path_b.write_bytes(b"bbb")

    save_undo_history(path_a, _test_stack(), [], db)
    save_undo_history(path_b, _test_stack(), [], db)

    path_a.unlink()
    save_undo_history(path_b, _test_stack(), [], db)

    path_a.write_bytes(b"aaa")
    assert load_undo_history(path_a, db) is None


def test_no_db_file(tmp_path):
    path = tmp_path / "test.txt"
    path.write_bytes(b"hello")
    assert load_undo_history(path, tmp_path / "nonexistent.bin") is None


def test_save_missing_file_fails(tmp_path):
    db = tmp_path / "undo.bin"
    assert save_undo_history(tmp_path / "missing.txt", _test_stack(), [], db) is False
    assert not db.exists()


def test_save_creates_parent_dirs(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "nested" / "dir" / "undo.bin"
    path.write_bytes(b"hello")
    assert save_undo_history(path, _test_stack(), [], db) is True
    assert load_undo_history(path, db) == (_test_stack(), [])


def test_save_over_garbage_db(tmp_path):
    path = tmp_path / "test.txt"
    db = tmp_path / "undo.bin"
    path.write_bytes(b"hello")
    db.write_bytes(b"garbage data here")
    assert save_undo_history(path, [_group_insert_x()], [], db) is True
    assert load_undo_history(path, db) == ([_group_insert_x()], [])


def test_default_db_used(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    path = tmp_path / "test.txt"
    path.write_bytes(b"hello")
    assert save_undo_history(path, _test_stack(), [_group_insert_x()]) is True
    assert (tmp_path / "home" / ".config" / "e" / "undo.bin").exists()
    assert load_undo_history(path) == (_test_stack(), [_group_insert_x()])