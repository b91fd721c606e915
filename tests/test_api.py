import asyncio

import pytest

from conftest import IMAGE_BODY, FakeAdb, FakeResponse, build_service, make_record
from radioflasher.api import RadioFlasherService
from radioflasher.constants import DESTRUCTIVE_WARNING, UNLOCK_WARNING
from radioflasher.device_tool import Fastboot
from radioflasher.errors import InvalidParameterError

RECORDS = [
    make_record("11.1.2.2", region="EU"),
    make_record("12.1.0.4"),
]


@pytest.fixture
def service(config, fastboot, downloader):
    return build_service(config, fastboot, FakeAdb(), downloader, RECORDS)


def test_detect_device_payload(service):
    result = asyncio.run(service.detect_device())
    assert result["success"] is True
    assert result["connected"] is True
    assert result["deviceInfo"]["codename"] == "guacamole"
    assert result["deviceInfo"]["bootloaderLocked"] is False


def test_ambiguous_device_becomes_error_payload(service, fastboot):
    fastboot.devices.append("DEF456")
    result = asyncio.run(service.detect_device())
    assert result["success"] is False
    assert result["code"] == "DeviceAmbiguous"
    assert result["details"]["devices"] == ["ABC123", "DEF456"]


def test_search_payload_shape(service):
    result = asyncio.run(service.search_firmware("guacamole", region="EU"))
    assert result["success"] is True
    assert result["totalCount"] == 1
    assert result["firmware"][0]["id"] == "guacamole-eu-11.1.2.2"


def test_missing_parameters_are_reported(service):
    assert asyncio.run(service.search_firmware(""))["code"] == "InvalidParameter"
    assert asyncio.run(service.check_for_updates("guacamole", None))["code"] == "InvalidParameter"
    assert asyncio.run(service.validate_firmware_url(""))["code"] == "InvalidParameter"
    assert asyncio.run(service.get_device_support(None))["code"] == "InvalidParameter"
    assert asyncio.run(service.validate_for_operation(""))["code"] == "InvalidParameter"


def test_update_and_compatible_payloads(service):
    async def scenario():
        return (
            await service.check_for_updates("guacamole", "11.1.2.2"),
            await service.get_compatible_firmware("guacamole", "11.0.5.1"),
            await service.get_latest_firmware("sargo"),
        )

    updates, compatible, latest = asyncio.run(scenario())
    assert updates["hasUpdate"] is True
    assert updates["latestFirmware"]["version"] == "12.1.0.4"
    assert [f["version"] for f in compatible["firmware"]] == ["12.1.0.4", "11.1.2.2"]
    assert latest == {"success": True, "firmware": None}


def test_supported_devices_and_validation(service):
    supported = asyncio.run(service.list_supported_devices())
    assert "guacamole" in supported["supportedDevices"]

    support = asyncio.run(service.get_device_support("ne2213"))
    assert support["isSupported"] is True
    assert support["deviceSupport"]["radio_flash"] is False

    validation = asyncio.run(service.validate_for_operation("radio_flash"))
    assert validation["validation"]["valid"] is True
    assert validation["validation"]["device"]["id"] == "ABC123"


def test_destructive_commands_carry_warnings(service, fastboot):
    erase = asyncio.run(service.erase_partition("modem"))
    assert erase["success"] is True
    assert erase["message"] == DESTRUCTIVE_WARNING

    unlock = asyncio.run(service.unlock_bootloader())
    assert unlock["message"] == UNLOCK_WARNING

    fastboot.responses[("erase", "radio")] = ("", "FAILED (remote: 'not allowed')\n", 1)
    failed = asyncio.run(service.erase_partition("radio"))
    assert failed["success"] is False
    assert failed["code"] == "TransportFailure"


def test_execute_command_rejects_unsafe_arguments(service, fastboot):
    result = asyncio.run(service.execute_command(["getvar", "all;reboot"]))
    assert result["code"] == "InvalidParameter"
    assert fastboot.calls == []

    result = asyncio.run(service.execute_command(["getvar", "product"]))
    assert result["success"] is True
    assert "guacamole" in result["output"]


def test_list_devices_and_wait(service):
    devices = asyncio.run(service.list_devices())
    assert devices == {"success": True, "bootloader": ["ABC123"], "debug": [], "count": 1}
    assert asyncio.run(service.wait_for_device(0.01))["success"] is True


def test_flash_through_service(service, fastboot, session):
    session.routes[RECORDS[1].download_url] = FakeResponse(IMAGE_BODY)
    fastboot.version_after_flash = "12.1.0.4"

    async def scenario():
        source = await service.resolve_source(firmware_id="guacamole-global-12.1.0.4")
        final = await service.start_flash("ABC123", source).wait()
        return final, await service.get_flash_session("ABC123")

    final, state = asyncio.run(scenario())
    assert final.success is True
    assert state["session"]["stage"] == "complete"
    assert state["session"]["newVersion"] == "12.1.0.4"


def test_resolve_source_rejects_unknown_firmware(service):
    with pytest.raises(InvalidParameterError):
        asyncio.run(service.resolve_source(firmware_id="nope"))


def test_create_wires_components(config):
    config.set_value("fastboot-path", "/opt/platform-tools")
    service = RadioFlasherService.create(config)
    assert isinstance(service.fastboot, Fastboot)
    assert service.fastboot.tool_path == "/opt/platform-tools"
    assert service.orchestrator.detector is service.detector
    assert service.catalog.cache.ttl == config.cache_ttl
