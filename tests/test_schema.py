"""
Tests for fsbox.schema — box creation, destruction and scoped opening.
"""

import os
import sqlite3
import sys

import pytest

from fsbox.errors import SchemaError, StoreOpenError
from fsbox.schema import box_exists, create_box, destroy_box, open_box


@pytest.fixture
def box(tmp_path):
    return tmp_path / "box.sqlite"


def _objects(path):
    conn = sqlite3.connect(str(path))
    try:
        rows = conn.execute(
            "SELECT type, name FROM sqlite_master WHERE name NOT LIKE 'sqlite_%'"
        ).fetchall()
    finally:
        conn.close()
    return set(rows)


def _entries(path):
    conn = sqlite3.connect(str(path))
    try:
        return conn.execute("SELECT inode, name, parent_inode FROM entries").fetchall()
    finally:
        conn.close()


class TestCreate:
    def test_tables_and_indexes(self, box):
        assert create_box(box)
        assert _objects(box) == {
            ("table", "entries"),
            ("table", "files"),
            ("table", "extended_attributes"),
            ("index", "names"),
            ("index", "listing"),
        }

    def test_root_entry(self, box):
        assert create_box(box)
        assert _entries(box) == [(1, "/", 1)]

    def test_idempotent(self, box):
        assert create_box(box)
        assert create_box(box)
        assert _entries(box) == [(1, "/", 1)]

    def test_keeps_existing_rows(self, box):
        assert create_box(box)
        conn = sqlite3.connect(str(box))
        conn.execute("INSERT INTO entries(inode, name, parent_inode) VALUES (2, 'a', 1)")
        conn.commit()
        conn.close()
        assert create_box(box)
        assert len(_entries(box)) == 2

    def test_missing_directory(self, tmp_path):
        outcome = create_box(tmp_path / "no" / "such" / "box.sqlite")
        assert not outcome
        assert outcome.kind == "store_open"

    def test_corrupt_file(self, box):
        box.write_bytes(os.urandom(16) + b"\x00" * 4080)
        outcome = create_box(box)
        assert not outcome
        assert isinstance(outcome.error, StoreOpenError)

    def test_failing_step_keeps_earlier_ones(self, box):
        conn = sqlite3.connect(str(box))
        conn.execute("CREATE TABLE listing (x INT)")
        conn.commit()
        conn.close()

        outcome = create_box(box)
        assert not outcome
        assert isinstance(outcome.error, SchemaError)
        assert "listing index" in str(outcome.error)

        objects = _objects(box)
        assert ("table", "entries") in objects
        assert ("index", "names") in objects
        assert _entries(box) == []

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_umask_applied_and_restored(self, box):
        previous = os.umask(0o022)
        try:
            assert create_box(box, umask=0o077)
            assert box.stat().st_mode & 0o077 == 0
            assert os.umask(0o022) == 0o022
        finally:
            os.umask(previous)

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_default_umask_hides_from_others(self, box):
        assert create_box(box)
        assert box.stat().st_mode & 0o007 == 0


class TestDestroy:
    def test_removes_file(self, box):
        assert create_box(box)
        assert destroy_box(box)
        assert not box.exists()

    def test_removes_leftover_journal(self, box):
        assert create_box(box)
        journal = box.with_name(box.name + "-journal")
        journal.write_bytes(b"")
        assert destroy_box(box)
        assert not journal.exists()

    def test_missing_file(self, box):
        outcome = destroy_box(box)
        assert not outcome
        assert outcome.kind == "store_open"

    def test_recreate_after_destroy(self, box):
        assert create_box(box)
        assert destroy_box(box)
        assert create_box(box)
        assert _entries(box) == [(1, "/", 1)]


class TestOpen:
    def test_missing_file_not_created(self, box):
        with pytest.raises(StoreOpenError):
            with open_box(box):
                pass
        assert not box_exists(box)

    def test_corrupt_file(self, box):
        box.write_bytes(b"this is not sqlite" * 300)
        with pytest.raises(StoreOpenError):
            with open_box(box):
                pass

    def test_rows_by_name(self, box):
        assert create_box(box)
        with open_box(box, readonly=True) as conn:
            row = conn.execute("SELECT * FROM entries").fetchone()
        assert row["name"] == "/"

    def test_readonly_rejects_writes(self, box):
        assert create_box(box)
        with open_box(box, readonly=True) as conn:
            with pytest.raises(sqlite3.OperationalError):
                conn.execute("DELETE FROM files")

    def test_box_exists(self, box, tmp_path):
        assert not box_exists(box)
        assert create_box(box)
        assert box_exists(box)
        assert not box_exists(tmp_path)
