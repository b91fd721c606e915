import io
import json
import logging
import os

from radioflasher.config import ConfigManager
from radioflasher.logging_utils import SingleLineStatusHandler


def test_values_persist_between_instances(tmp_path):
    home = str(tmp_path / "home")
    config = ConfigManager(home_path=home)
    config.set_value("cache-ttl", 120)
    config.set_value("fastboot-path", "/opt/platform-tools")

    reloaded = ConfigManager(home_path=home)
    assert reloaded.cache_ttl == 120
    assert reloaded.get_value("fastboot-path") == "/opt/platform-tools"


def test_setting_none_removes_key(config):
    config.set_value("catalog-url", "https://example.org/radio.json")
    config.set_value("catalog-url", None)
    assert "catalog-url" not in config.list_all()


def test_defaults_and_invalid_numbers(config):
    assert config.command_timeout == 60
    assert config.wait_timeout == 30
    config.set_value("wait-timeout", "soon")
    assert config.wait_timeout == 30
    assert config.download_dir == os.path.join(config.home_path, "downloads")
    assert config.backup_dir == os.path.join(config.home_path, "backups")


def test_invalid_json_resets_configuration(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    (home / "config.json").write_text("{not json")
    config = ConfigManager(home_path=str(home))
    assert config.list_all() == {}


def test_local_catalog_is_read_from_home(config):
    assert config.get_local_catalog() is None
    os.makedirs(config.home_path, exist_ok=True)
    with open(config.local_catalog_path, "w") as f:
        json.dump({"guacamole": []}, f)
    assert config.get_local_catalog() == {"guacamole": []}


def _record(message, status=None):
    record = logging.LogRecord("Test", logging.INFO, __file__, 1, message, None, None)
    if status:
        record.status = status
    return record


def test_status_handler_rewrites_active_line():
    stream = io.StringIO()
    handler = SingleLineStatusHandler(stream)
    handler.emit(_record("Waiting 1s", "start"))
    handler.emit(_record("Waiting 2s", "update"))
    handler.emit(_record("Done", "end"))
    handler.emit(_record("Next"))
    assert stream.getvalue() == "Waiting 1s\rWaiting 2s\rDone      \nNext\n"


def test_plain_record_closes_status_line():
    stream = io.StringIO()
    handler = SingleLineStatusHandler(stream)
    handler.emit(_record("Working", "start"))
    handler.emit(_record("Interrupted"))
    assert stream.getvalue() == "Working\nInterrupted\n"
