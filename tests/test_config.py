"""Tests for LinkDeck configuration and logging setup."""

import json
import logging
from pathlib import Path

import pytest

from linkdeck.config import DEFAULT_SERVER_URL, LinkDeckConfig, ViewState
from linkdeck.log import setup_logging


class TestLinkDeckConfig:
    """Tests for persistent settings."""

    def test_defaults_when_missing(self) -> None:
        config = LinkDeckConfig.load()
        assert config.server_url == DEFAULT_SERVER_URL
        assert config.confirm_deletes is True

    def test_config_path_under_home(self, isolated_home: Path) -> None:
        assert LinkDeckConfig.get_config_path() == isolated_home / ".linkdeck" / "config.json"

    def test_save_and_load(self) -> None:
        config = LinkDeckConfig(server_url="http://deck.local:9000", export_format="yaml")
        config.save_view_state(last_group_id=3, active_tab="tab-admin")

        loaded = LinkDeckConfig.load()
        assert loaded.server_url == "http://deck.local:9000"
        assert loaded.export_format == "yaml"
        assert loaded.view_state == ViewState(last_group_id=3, active_tab="tab-admin")

    def test_unknown_keys_ignored(self) -> None:
        path = LinkDeckConfig.get_config_path()
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"theme": "nord", "legacy": 1, "view_state": {"old": True}}))
        loaded = LinkDeckConfig.load()
        assert loaded.theme == "nord"
        assert loaded.view_state == ViewState()

    def test_invalid_json_gives_defaults(self) -> None:
        path = LinkDeckConfig.get_config_path()
        path.parent.mkdir(parents=True)
        path.write_text("{")
        assert LinkDeckConfig.load() == LinkDeckConfig()

    def test_env_overrides_server(self, monkeypatch: pytest.MonkeyPatch) -> None:
        LinkDeckConfig(server_url="http://saved:1").save()
        monkeypatch.setenv("LINKDECK_SERVER", "http://env:2")
        assert LinkDeckConfig.load().server_url == "http://env:2"

    def test_set_value(self) -> None:
        config = LinkDeckConfig()
        config.set_value("confirm_deletes", "off")
        config.set_value("log_level", "debug")
        config.set_value("export_dir", "")
        assert config.confirm_deletes is False
        assert config.log_level == "DEBUG"
        assert config.export_dir is None

    @pytest.mark.parametrize(
        "key,value",
        [("confirm_deletes", "maybe"), ("export_format", "xml"), ("log_level", "LOUD")],
    )
    def test_set_value_rejects(self, key: str, value: str) -> None:
        with pytest.raises(ValueError):
            LinkDeckConfig().set_value(key, value)

    def test_set_unknown_key(self) -> None:
        with pytest.raises(KeyError):
            LinkDeckConfig().set_value("view_state", "x")

    def test_reset(self) -> None:
        config = LinkDeckConfig(theme="nord", confirm_deletes=False)
        config.reset()
        assert config == LinkDeckConfig()


class TestLogging:
    """Tests for logging setup."""

    def test_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "linkdeck.log"
        setup_logging("info", log_file)
        logging.getLogger("linkdeck.test").info("hello")
        for handler in logging.getLogger("linkdeck").handlers:
            handler.flush()
        assert "hello" in log_file.read_text()
        assert logging.getLogger("linkdeck").level == logging.INFO

    def test_replaces_handlers(self) -> None:
        setup_logging("warning")
        setup_logging("error")
        logger = logging.getLogger("linkdeck")
        assert len(logger.handlers) == 1
        assert logger.level == logging.ERROR
