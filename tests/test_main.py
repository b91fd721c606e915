import argparse
import asyncio
import logging

import pytest

from conftest import IMAGE_BODY, FakeAdb, FakeResponse, build_service, make_record
from radioflasher.main import create_parser, handle_config, run_command

RECORDS = [
    make_record("11.1.2.2", region="EU", changelog="Band 20 handover fix"),
    make_record("12.1.0.4"),
]


@pytest.fixture
def service(config, fastboot, downloader):
    return build_service(config, fastboot, FakeAdb(), downloader, RECORDS)


def run(service, *argv):
    args = create_parser().parse_args(list(argv))
    return asyncio.run(run_command(args, service))


class TestParser:
    def test_search_options(self):
        args = create_parser().parse_args(["search", "guacamole", "-r", "EU", "--version", "11", "-o"])
        assert args.codename == "guacamole"
        assert args.region == "EU"
        assert args.version_filter == "11"
        assert args.official is True

    def test_flash_needs_exactly_one_source(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["flash"])
        with pytest.raises(SystemExit):
            parser.parse_args(["flash", "-i", "x", "-f", "radio.img"])
        args = parser.parse_args(["flash", "-f", "radio.img", "-p", "modem", "--no-reboot"])
        assert args.file == "radio.img"
        assert args.partition == "modem"
        assert args.no_reboot is True

    def test_invalid_partition_and_reboot_mode_are_rejected(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["flash", "-f", "boot.img", "-p", "boot"])
        with pytest.raises(SystemExit):
            parser.parse_args(["reboot", "edl"])


def test_config_set_and_unset(config, caplog):
    caplog.set_level(logging.INFO)
    args = argparse.Namespace(set=["cache-ttl=120", "catalog-url=https://catalog.example.org/radio.json"], unset=None)
    assert handle_config(args, config) == 0
    assert config.cache_ttl == 120
    assert "catalog-url: https://catalog.example.org/radio.json" in caplog.text

    assert handle_config(argparse.Namespace(set=None, unset=["catalog-url"]), config) == 0
    assert config.get_value("catalog-url") is None

    assert handle_config(argparse.Namespace(set=["colour=blue"], unset=None), config) == 1


def test_devices_command(service, caplog):
    caplog.set_level(logging.INFO)
    assert run(service, "devices") == 0
    assert "ABC123\tbootloader" in caplog.text


def test_search_command(service, caplog):
    caplog.set_level(logging.INFO)
    assert run(service, "search", "guacamole", "-r", "EU") == 0
    assert "11.1.2.2" in caplog.text
    assert run(service, "search", "guacamole", "-q", "handover", "-s", "date") == 0
    assert run(service, "search", "sargo") == 1


def test_info_command_reports_unknown_firmware(service, caplog):
    assert run(service, "info", "guacamole-global-12.1.0.4") == 0
    assert run(service, "info", "nope") == 1
    assert "not found" in caplog.text


def test_updates_command(service, caplog):
    caplog.set_level(logging.INFO)
    assert run(service, "updates", "guacamole", "11.1.2.2") == 0
    assert "12.1.0.4 available" in caplog.text


def test_flash_command_without_prompt(service, fastboot, session):
    session.routes[RECORDS[1].download_url] = FakeResponse(IMAGE_BODY)
    fastboot.version_after_flash = "12.1.0.4"

    assert run(service, "flash", "-i", "guacamole-global-12.1.0.4", "-y", "--no-reboot") == 0
    assert ["-s", "ABC123", "reboot"] not in fastboot.calls
    assert service.orchestrator.get_session("ABC123").new_version == "12.1.0.4"


def test_flash_command_reports_failure(service, fastboot, session, caplog):
    session.routes[RECORDS[1].download_url] = FakeResponse(b"truncated")
    assert run(service, "flash", "-i", "guacamole-global-12.1.0.4", "-y") == 1
    assert "Checksum mismatch" in caplog.text
