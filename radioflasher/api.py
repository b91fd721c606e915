"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Service Facade Module

Builds one instance of every component and exposes the operations a route
layer or the CLI needs. Every operation except start_flash returns a payload
dictionary with a "success" key, errors become {"success": False, "error",
"code"}.
"""

import functools
import logging

from radioflasher.cache import TTLCache
from radioflasher.catalog import FirmwareCatalog
from radioflasher.compatibility import CompatibilityEvaluator
from radioflasher.config import ConfigManager
from radioflasher.device import DeviceDetector
from radioflasher.device_tool import Adb, Fastboot
from radioflasher.download import FirmwareDownloader
from radioflasher.errors import (
    InvalidParameterError,
    RadioFlasherError,
)
from radioflasher.firmware import FlashOrchestrator, FlashSource, FlashStream
from radioflasher.utils import validate_argument

logger = logging.getLogger("RadioFlasher")


def payload(func):
    """Turns RadioFlasherError raised by an operation into an error payload."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except RadioFlasherError as e:
            logger.debug(f"{func.__name__} failed: {e.code}: {e.message}")
            return e.to_dict()

    return wrapper


def _result(result) -> dict:
    data = result.to_dict()
    if not result.success and "code" not in data:
        data["code"] = "TransportFailure"
    return data


class RadioFlasherService:
    def __init__(
        self,
        config: ConfigManager,
        fastboot: Fastboot,
        adb: Adb,
        downloader: FirmwareDownloader,
        catalog: FirmwareCatalog,
        evaluator: CompatibilityEvaluator,
        detector: DeviceDetector,
        orchestrator: FlashOrchestrator,
    ):
        self.config = config
        self.fastboot = fastboot
        self.adb = adb
        self.downloader = downloader
        self.catalog = catalog
        self.evaluator = evaluator
        self.detector = detector
        self.orchestrator = orchestrator

    @classmethod
    def create(cls, config: ConfigManager | None = None) -> "RadioFlasherService":
        config = config or ConfigManager()
        fastboot = Fastboot(config.get_value("fastboot-path"), timeout=config.command_timeout)
        adb = Adb(config.get_value("adb-path"), timeout=config.command_timeout)
        downloader = FirmwareDownloader(config.download_dir)
        catalog = FirmwareCatalog(config, downloader, TTLCache(config.cache_ttl))
        evaluator = CompatibilityEvaluator(catalog)
        detector = DeviceDetector(fastboot, adb)
        orchestrator = FlashOrchestrator(config, fastboot, adb, detector, evaluator, downloader)
        return cls(config, fastboot, adb, downloader, catalog, evaluator, detector, orchestrator)

    # Device

    @payload
    async def detect_device(self, device_id=None):
        device = await self.detector.detect_device(device_id)
        return {
            "success": True,
            "connected": device is not None,
            "deviceInfo": device.to_dict() if device else None,
        }

    @payload
    async def is_oneplus_device(self, device_id=None):
        return {"success": True, "isOnePlus": await self.detector.is_oneplus_device(device_id)}

    @payload
    async def list_supported_devices(self):
        devices = self.detector.list_supported_devices()
        return {
            "success": True,
            "supportedDevices": [d.codename for d in devices],
            "devices": [d.to_dict() for d in devices],
        }

    @payload
    async def get_device_support(self, codename):
        if not codename:
            raise InvalidParameterError("Device codename is required")
        support = self.detector.get_device_support(codename)
        return {
            "success": True,
            "deviceSupport": support.to_dict() if support else None,
            "isSupported": support is not None,
            "warnings": self.detector.get_warning_messages(codename),
        }

    @payload
    async def validate_for_operation(self, operation, device_id=None):
        if not operation:
            raise InvalidParameterError("Operation type is required")
        validation = await self.detector.validate_for_operation(operation, device_id)
        device = validation["device"]
        return {
            "success": True,
            "validation": {**validation, "device": device.to_dict() if device else None},
        }

    # Catalog

    @payload
    async def search_firmware(self, codename, region=None, version=None, official_only=False):
        result = await self.catalog.search(codename, region, version, official_only)
        return {"success": True, **result.to_dict()}

    @payload
    async def search_advanced(
        self, codename, query=None, region=None, version=None, official_only=False, sort_by=None, limit=None
    ):
        result = await self.catalog.search_advanced(
            codename, query, region, version, official_only, sort_by, limit
        )
        return {"success": True, **result.to_dict(), "hasMore": False}

    @payload
    async def get_firmware_details(self, firmware_id):
        record = await self.catalog.get_firmware_details(firmware_id)
        return {"success": True, "firmware": record.to_dict() if record else None}

    @payload
    async def get_latest_firmware(self, codename, official_only=False):
        record = await self.catalog.latest(codename, official_only)
        return {"success": True, "firmware": record.to_dict() if record else None}

    @payload
    async def get_popular_firmware(self, codename, limit=5):
        records = await self.catalog.popular(codename, limit)
        return {
            "success": True,
            "firmware": [r.to_dict() for r in records],
            "totalCount": len(records),
        }

    @payload
    async def get_compatible_firmware(self, codename, current_version=None):
        records = await self.evaluator.get_compatible_firmware(codename, current_version)
        return {
            "success": True,
            "firmware": [r.to_dict() for r in records],
            "totalCount": len(records),
        }

    @payload
    async def check_for_updates(self, codename, current_version):
        info = await self.catalog.check_for_updates(current_version, codename)
        return {"success": True, **info.to_dict()}

    @payload
    async def validate_firmware_url(self, url):
        if not url:
            raise InvalidParameterError("URL is required")
        valid = await self.catalog.validate_firmware_url(url)
        return {
            "success": True,
            "valid": valid,
            "message": "URL is accessible" if valid else "URL is not accessible",
        }

    @payload
    async def initialize_cache(self):
        count = await self.catalog.initialize_cache()
        return {"success": True, "message": "Cache initialized", "records": count}

    @payload
    async def clear_cache(self):
        await self.catalog.clear_cache()
        return {"success": True, "message": "Cache cleared"}

    # Flashing

    async def resolve_source(self, firmware_id=None, image_path=None, partition="radio") -> FlashSource:
        record = None
        if firmware_id:
            record = await self.catalog.get_firmware_details(firmware_id)
            if record is None:
                raise InvalidParameterError(f"Unknown firmware id: {firmware_id}")
        source = FlashSource(record=record, image_path=image_path, partition=partition)
        source.validate()
        return source

    def start_flash(
        self,
        device_id: str,
        source: FlashSource,
        require_backup: bool = False,
        reboot: bool = True,
    ) -> FlashStream:
        """Starts a session, rejections raise RadioFlasherError synchronously."""
        return self.orchestrator.start_flash(device_id, source, require_backup, reboot)

    @payload
    async def get_flash_session(self, device_id):
        session = self.orchestrator.get_session(device_id)
        return {"success": True, "session": session.to_dict() if session else None}

    @payload
    async def get_current_version(self, device_id=None):
        version = await self.orchestrator.get_current_version(device_id)
        return {"success": True, "currentVersion": version}

    @payload
    async def backup_current(self, device_id=None, partition="radio"):
        path = await self.orchestrator.backup_current(device_id, partition)
        return {"success": True, "backupPath": path, "message": "Radio backup created"}

    # Transport passthroughs

    @payload
    async def check_installation(self):
        fastboot, adb = await self.fastboot.check_installation(), await self.adb.check_installation()
        return {"success": True, "fastboot": fastboot, "adb": adb}

    @payload
    async def list_devices(self):
        fastboot_devices = await self.fastboot.list_devices()
        adb_devices = await self.adb.list_devices()
        return {
            "success": True,
            "bootloader": fastboot_devices,
            "debug": adb_devices,
            "count": len(fastboot_devices) + len(adb_devices),
        }

    @payload
    async def wait_for_device(self, timeout=None):
        timeout = self.config.wait_timeout if timeout is None else float(timeout)
        found = await self.fastboot.wait_for_device(timeout)
        return {
            "success": found,
            "message": "Device found" if found else "Device not found within timeout",
        }

    @payload
    async def get_bootloader_info(self, device_id=None):
        return {"success": True, "info": await self.fastboot.get_bootloader_info(device_id)}

    @payload
    async def execute_command(self, args, device_id=None):
        if not args:
            raise InvalidParameterError("Command is required")
        args = [validate_argument(arg, "command argument") for arg in args]
        return _result(await self.fastboot.execute(args, device_id))

    @payload
    async def flash_partition(self, partition, image_path, device_id=None):
        return _result(await self.fastboot.flash_partition(partition, image_path, device_id))

    @payload
    async def erase_partition(self, partition, device_id=None):
        return _result(await self.fastboot.erase_partition(partition, device_id))

    @payload
    async def format_partition(self, partition, filesystem="ext4", device_id=None):
        return _result(await self.fastboot.format_partition(partition, filesystem, device_id))

    @payload
    async def unlock_bootloader(self, device_id=None):
        return _result(await self.fastboot.unlock_bootloader(device_id))

    @payload
    async def reboot(self, mode="system", device_id=None):
        return _result(await self.fastboot.reboot(mode, device_id))

    @payload
    async def get_partition_info(self, partition, device_id=None):
        return {"success": True, "partitionInfo": await self.fastboot.get_partition_info(partition, device_id)}
