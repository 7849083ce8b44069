"""Tests for settings loading and debug dumps."""

import json
import os
import time

import pytest

from imagegen.core import config
from imagegen.core.debug import cleanup_old_dumps, dump_protocol_failure, get_debug_dir
from imagegen.core.exceptions import ConfigurationException, ProtocolMismatchException


class TestSettings:
    def test_defaults(self):
        assert config.get_setting("locale") == "en"
        assert config.get_setting("missing", "fallback") == "fallback"

    def test_file_then_environment(self, tmp_path, monkeypatch):
        (tmp_path / "settings.json").write_text(json.dumps({"port": 8080, "locale": "fr"}))
        monkeypatch.setenv("IMAGEGEN_PORT", "9090")
        config.reload()
        assert config.get_setting("locale") == "fr"
        assert config.get_setting("port") == 9090

    def test_env_coercion(self, monkeypatch):
        monkeypatch.setenv("IMAGEGEN_HEADLESS", "false")
        monkeypatch.setenv("IMAGEGEN_LOGIN_GRACE", "1.5")
        config.reload()
        assert config.get_setting("headless") is False
        assert config.get_setting("login_grace") == 1.5

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("IMAGEGEN_PORT", "lots")
        with pytest.raises(ConfigurationException):
            config.reload()

    def test_bad_json(self, tmp_path):
        (tmp_path / "settings.json").write_text("{nope")
        with pytest.raises(ConfigurationException):
            config.reload()

    def test_save_settings(self, tmp_path):
        config.save_settings({"locale": "de"})
        assert json.loads((tmp_path / "settings.json").read_text()) == {"locale": "de"}
        assert config.get_setting("locale") == "de"


class TestDebugDumps:
    def test_dump_written(self):
        path = dump_protocol_failure("generate", ProtocolMismatchException("payload"), b"raw body")
        info = json.loads(path.read_text())
        assert info["kind"] == "generate"
        assert info["error_type"] == "ProtocolMismatchException"
        assert info["details"]["field"] == "payload"
        assert info["body"] == "raw body"

    def test_dumps_disabled(self, monkeypatch):
        monkeypatch.setenv("IMAGEGEN_DEBUG_DUMPS", "0")
        config.reload()
        assert dump_protocol_failure("generate", ValueError("x"), "body") is None
        assert not get_debug_dir().exists()

    def test_cleanup_removes_old_days(self):
        old = get_debug_dir() / "2020-01-01"
        old.mkdir(parents=True)
        (old / "generate_1.json").write_text("{}")
        stale = time.time() - 30 * 24 * 3600
        os.utime(old, (stale, stale))
        fresh = dump_protocol_failure("tokens", ValueError("x"), "body").parent

        cleanup_old_dumps(max_age_days=7)

        assert not old.exists()
        assert fresh.exists()
