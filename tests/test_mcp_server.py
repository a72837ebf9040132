"""
Tests for fsbox.mcp.server — argument parsing and server construction.
"""

import pytest

from fsbox.config import BoxConfig
from fsbox.errors import ConfigurationError
from fsbox.mcp.server import build_parser, config_from_args


class TestParser:
    def test_location_flag(self, tmp_path):
        args = build_parser().parse_args(["--location", str(tmp_path)])
        assert config_from_args(args).location == str(tmp_path)

    def test_location_overrides_config_file(self, tmp_path):
        cfg = tmp_path / "fsbox.json"
        cfg.write_text('{"location": "/srv/from-file", "umask": "077"}')
        args = build_parser().parse_args(
            ["--config", str(cfg), "--location", str(tmp_path)]
        )
        config = config_from_args(args)
        assert config.location == str(tmp_path)
        assert config.umask == 0o077


class TestCreateServer:
    def test_builds_fastmcp(self, tmp_path):
        pytest.importorskip("mcp")
        from fsbox.mcp.server import create_server
        server = create_server(BoxConfig(location=str(tmp_path)))
        assert server.name == "fsbox"

    def test_refuses_without_location(self):
        pytest.importorskip("mcp")
        from fsbox.mcp.server import create_server
        with pytest.raises(ConfigurationError):
            create_server(BoxConfig())
