"""
Tests for the MCP tools in fsbox.mcp.tools.

Tests use direct function calls (not MCP protocol) via a mock FastMCP.
"""

import sqlite3

import pytest

from fsbox.config import BoxConfig
from fsbox.mcp.tools import register_box_tools


# ---------------------------------------------------------------------------
# Mock FastMCP
# ---------------------------------------------------------------------------


class MockMCP:
    """Minimal FastMCP mock that captures tool registrations."""

    def __init__(self):
        self.tools = {}

    def tool(self):
        def decorator(fn):
            self.tools[fn.__name__] = fn
            return fn
        return decorator


@pytest.fixture
def mcp_env(tmp_path):
    """Register all tools against a location and create one box in it."""
    location = tmp_path / "boxes"
    location.mkdir()
    config = BoxConfig(location=str(location))
    mcp = MockMCP()
    register_box_tools(mcp, config)
    box = str(location / "box.sqlite")
    assert mcp.tools["box_create"](box=box)["status"] == "ok"
    return {"mcp": mcp, "box": box, "location": location, "tmp_path": tmp_path}


def call(env, tool_name, **kwargs):
    """Call a registered MCP tool by name."""
    return env["mcp"].tools[tool_name](**kwargs)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestToolCount:
    def test_13_tools_registered(self, mcp_env):
        assert len(mcp_env["mcp"].tools) == 13

    def test_all_tool_names(self, mcp_env):
        assert set(mcp_env["mcp"].tools) == {
            "box_create", "box_destroy",
            "box_upsert_entry", "box_delete_entry",
            "box_upsert_file", "box_delete_file",
            "box_set_xattr", "box_delete_xattr",
            "box_bulk_load", "box_truncate", "box_raw_exec",
            "box_read", "box_list",
        }

    def test_unset_location_refused(self):
        from fsbox.errors import ConfigurationError
        with pytest.raises(ConfigurationError):
            register_box_tools(MockMCP(), BoxConfig())


# ---------------------------------------------------------------------------
# Lifecycle and confinement
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_reply_uses_relative_path(self, mcp_env):
        r = call(mcp_env, "box_create", box=mcp_env["box"])
        assert r == {"status": "ok", "box": "box.sqlite"}

    def test_destroy(self, mcp_env):
        assert call(mcp_env, "box_destroy", box=mcp_env["box"])["status"] == "ok"
        r = call(mcp_env, "box_destroy", box=mcp_env["box"])
        assert r["status"] == "error"
        assert r["kind"] == "store_open"

    def test_outside_location(self, mcp_env):
        r = call(mcp_env, "box_create", box=str(mcp_env["tmp_path"] / "evil.sqlite"))
        assert r["status"] == "error"
        assert r["kind"] == "configuration"
        assert not (mcp_env["tmp_path"] / "evil.sqlite").exists()

    def test_traversal(self, mcp_env):
        r = call(mcp_env, "box_create", box=f"{mcp_env['location']}/../evil.sqlite")
        assert r["kind"] == "configuration"


# ---------------------------------------------------------------------------
# Mutations and reads
# ---------------------------------------------------------------------------


class TestMutations:
    def test_upsert_and_read(self, mcp_env):
        box = mcp_env["box"]
        r = call(
            mcp_env, "box_upsert_entry", box=box, inode=2, name="a.c4gh",
            parent_inode=1, size=200, is_dir=False, decrypted_size="76",
        )
        assert r["status"] == "ok"
        r = call(mcp_env, "box_upsert_file", box=box, inode=2,
                 mountpoint="vol", rel_path="00/2", header_hex="cafe", payload_size=76)
        assert r["status"] == "ok"
        assert call(mcp_env, "box_set_xattr", box=box, inode=2,
                    name="user.k", value="v")["status"] == "ok"

        r = call(mcp_env, "box_read", box=box, inode=2)
        assert r["status"] == "ok"
        assert r["entry"]["decrypted_size"] == "76"
        assert r["file"]["header"] == "cafe"
        assert r["xattrs"] == {"user.k": "v"}

    def test_read_missing(self, mcp_env):
        r = call(mcp_env, "box_read", box=mcp_env["box"], inode=99)
        assert r["status"] == "not_found"

    def test_constraint(self, mcp_env):
        box = mcp_env["box"]
        call(mcp_env, "box_upsert_entry", box=box, inode=2, name="a", parent_inode=1)
        r = call(mcp_env, "box_upsert_entry", box=box, inode=3, name="a", parent_inode=1)
        assert r["status"] == "error"
        assert r["kind"] == "constraint"

    def test_validation(self, mcp_env):
        r = call(mcp_env, "box_upsert_entry", box=mcp_env["box"],
                 inode=2, name=None, parent_inode=1)
        assert r["kind"] == "validation"

    def test_int_outside_64_bit_range(self, mcp_env):
        r = call(mcp_env, "box_upsert_entry", box=mcp_env["box"],
                 inode=2 ** 63, name="big", parent_inode=1)
        assert r["status"] == "error"
        assert r["kind"] == "validation"

    def test_unencodable_name(self, mcp_env):
        r = call(mcp_env, "box_upsert_entry", box=mcp_env["box"],
                 inode=2, name="\ud800", parent_inode=1)
        assert r["status"] == "error"
        assert r["kind"] == "engine"

    def test_bad_hex(self, mcp_env):
        r = call(mcp_env, "box_upsert_file", box=mcp_env["box"], inode=2, header_hex="xyz")
        assert r["status"] == "error"
        assert r["kind"] == "validation"

    def test_delete_entry_and_list(self, mcp_env):
        box = mcp_env["box"]
        for inode, name, parent in ((2, "a", 1), (3, "b", 1), (4, "c", 2)):
            call(mcp_env, "box_upsert_entry", box=box, inode=inode, name=name,
                 parent_inode=parent)
        r = call(mcp_env, "box_list", box=box)
        assert r["count"] == 2
        assert [e["inode"] for e in r["entries"]] == [2, 3]

        assert call(mcp_env, "box_delete_entry", box=box, inode=2)["status"] == "ok"
        assert call(mcp_env, "box_list", box=box)["count"] == 1
        assert call(mcp_env, "box_list", box=box, parent_inode=2)["count"] == 0

    def test_delete_file_and_xattr_noop(self, mcp_env):
        box = mcp_env["box"]
        assert call(mcp_env, "box_delete_file", box=box, inode=7)["status"] == "ok"
        assert call(mcp_env, "box_delete_xattr", box=box, inode=7, name="x")["status"] == "ok"


# ---------------------------------------------------------------------------
# Bulk and maintenance
# ---------------------------------------------------------------------------


class TestBulkAndMaintenance:
    @pytest.fixture
    def source(self, mcp_env):
        path = mcp_env["location"] / "staging.db"
        conn = sqlite3.connect(str(path))
        conn.execute(
            "CREATE TABLE staged (inode INT8, mountpoint TEXT, rel_path TEXT, "
            "header BYTEA, payload_size INT8, prepend BYTEA, append BYTEA)"
        )
        conn.executemany(
            "INSERT INTO staged VALUES (?,?,?,?,?,?,?)",
            [(i, "vol", f"p{i}", b"\x00" * 8, i, None, None) for i in range(2, 7)],
        )
        conn.commit()
        conn.close()
        return str(path)

    def test_bulk_load_files(self, mcp_env, source):
        r = call(mcp_env, "box_bulk_load", box=mcp_env["box"], kind="files",
                 source=source, query="SELECT * FROM staged")
        assert r["status"] == "ok", r
        assert call(mcp_env, "box_read", box=mcp_env["box"], inode=3)["status"] == "not_found"

    def test_bulk_load_wrong_kind(self, mcp_env, source):
        r = call(mcp_env, "box_bulk_load", box=mcp_env["box"], kind="things",
                 source=source, query="SELECT * FROM staged")
        assert r["kind"] == "validation"

    def test_bulk_load_layout_mismatch(self, mcp_env, source):
        r = call(mcp_env, "box_bulk_load", box=mcp_env["box"], kind="entries",
                 source=source, query="SELECT * FROM staged")
        assert r["kind"] == "format_mismatch"

    def test_bulk_load_source_outside_location(self, mcp_env):
        r = call(mcp_env, "box_bulk_load", box=mcp_env["box"], kind="files",
                 source=str(mcp_env["tmp_path"] / "outside.db"), query="SELECT 1")
        assert r["kind"] == "configuration"

    def test_truncate(self, mcp_env):
        box = mcp_env["box"]
        call(mcp_env, "box_upsert_entry", box=box, inode=2, name="a", parent_inode=1)
        assert call(mcp_env, "box_truncate", box=box, table="entries")["status"] == "ok"
        assert call(mcp_env, "box_list", box=box)["count"] == 0
        assert call(mcp_env, "box_read", box=box, inode=1)["entry"]["name"] == "/"

    def test_truncate_unknown_table(self, mcp_env):
        r = call(mcp_env, "box_truncate", box=mcp_env["box"], table="sqlite_master")
        assert r["kind"] == "validation"

    def test_raw_exec_is_unchecked(self, mcp_env):
        r = call(mcp_env, "box_raw_exec", box=mcp_env["box"], sql="DELETE FROM files")
        assert r["status"] == "ok"
        assert r["checked"] is False

    def test_raw_exec_engine_message(self, mcp_env):
        r = call(mcp_env, "box_raw_exec", box=mcp_env["box"], sql="DROP TABLE nowhere")
        assert r["status"] == "error"
        assert r["message"] == "no such table: nowhere"
