"""
Tests for fsbox.config — BoxConfig defaults, validation and JSON loading.
"""

import json
import pytest

from fsbox.config import BoxConfig, load_config
from fsbox.errors import ConfigurationError


class TestDefaults:
    def test_values(self):
        cfg = BoxConfig()
        assert cfg.location is None
        assert cfg.data_dir is None
        assert cfg.umask == 0o007
        assert cfg.busy_timeout == 0.0

    def test_defaults_invalid_without_location(self):
        assert BoxConfig().validate() == ["location: can't be empty"]

    def test_int_timeout_normalized(self):
        assert BoxConfig(location="/srv/boxes", busy_timeout=5).busy_timeout == 5.0


class TestValidation:
    def test_valid(self):
        assert BoxConfig(location="/srv/boxes").validate() == []

    def test_relative_location(self):
        errors = BoxConfig(location="boxes").validate()
        assert len(errors) == 1
        assert "absolute" in errors[0]

    @pytest.mark.parametrize("location", ["/var/lib/pg", "/var/lib/pg/boxes"])
    def test_location_inside_data_dir(self, location):
        errors = BoxConfig(location=location, data_dir="/var/lib/pg").validate()
        assert len(errors) == 1
        assert "data directory" in errors[0]

    def test_sibling_of_data_dir_allowed(self):
        cfg = BoxConfig(location="/var/lib/pg-boxes", data_dir="/var/lib/pg")
        assert cfg.validate() == []

    def test_umask_range(self):
        errors = BoxConfig(location="/srv", umask=0o1000).validate()
        assert any(e.startswith("umask") for e in errors)

    def test_timeout_range(self):
        errors = BoxConfig(location="/srv", busy_timeout=-1.0).validate()
        assert any(e.startswith("busy_timeout") for e in errors)

    def test_timeout_type(self):
        errors = BoxConfig(location="/srv", busy_timeout="soon").validate()
        assert any("expected float" in e for e in errors)

    def test_ensure_valid_raises(self):
        with pytest.raises(ConfigurationError, match="Config validation failed"):
            BoxConfig().ensure_valid()

    def test_ensure_valid_returns_self(self):
        cfg = BoxConfig(location="/srv/boxes")
        assert cfg.ensure_valid() is cfg


class TestFromDict:
    def test_unknown_keys_ignored(self):
        cfg = BoxConfig.from_dict({"location": "/srv", "colour": "blue"})
        assert cfg.location == "/srv"

    def test_octal_string_umask(self):
        assert BoxConfig.from_dict({"umask": "027"}).umask == 0o027


class TestLoadConfig:
    def test_none_gives_defaults(self):
        assert load_config() == BoxConfig()

    def test_from_file(self, tmp_path):
        path = tmp_path / "fsbox.json"
        path.write_text(json.dumps({
            "location": "/srv/boxes", "umask": "077", "busy_timeout": 2,
        }))
        cfg = load_config(str(path))
        assert cfg == BoxConfig(location="/srv/boxes", umask=0o077, busy_timeout=2.0)

    def test_missing_file_falls_back(self, tmp_path):
        assert load_config(str(tmp_path / "none.json")) == BoxConfig()

    def test_bad_json_falls_back(self, tmp_path):
        path = tmp_path / "fsbox.json"
        path.write_text("{not json")
        assert load_config(str(path)) == BoxConfig()

    def test_strict_raises(self, tmp_path):
        path = tmp_path / "fsbox.json"
        path.write_text(json.dumps({"location": "relative/dir"}))
        with pytest.raises(ConfigurationError):
            load_config(str(path), strict=True)
