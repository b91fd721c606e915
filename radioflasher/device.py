"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Device Detection Module
"""

import asyncio
import logging
from dataclasses import dataclass, field, asdict

from radioflasher.constants import (
    COMMON_WARNINGS,
    ONEPLUS_MARKERS,
    OPERATIONS,
    SUPPORTED_DEVICES,
)
from radioflasher.device_tool import Adb, Fastboot
from radioflasher.errors import DeviceAmbiguousError, InvalidParameterError

logger = logging.getLogger("Device")

BOOTLOADER = "bootloader"
DEBUG = "debug"
DISCONNECTED = "disconnected"


@dataclass
class Device:
    id: str
    codename: str | None
    connection_mode: str = DISCONNECTED
    bootloader_locked: bool = True
    secure_boot: bool = False
    market_name: str | None = None
    radio_version: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "codename": self.codename,
            "connectionMode": self.connection_mode,
            "bootloaderLocked": self.bootloader_locked,
            "secureBoot": self.secure_boot,
            "marketName": self.market_name,
            "radioVersion": self.radio_version,
        }


@dataclass
class DeviceSupport:
    codename: str
    market_name: str
    rom_flash: bool
    radio_flash: bool
    root: bool
    warnings: list = field(default_factory=list)

    def supports(self, operation: str) -> bool:
        return bool(getattr(self, operation, False))

    def to_dict(self) -> dict:
        return asdict(self)


class DeviceDetector:
    """
    Finds the attached device in bootloader or debug mode and matches it
    against the supported device registry. Devices are never cached, every
    call asks the transports again.
    """

    def __init__(self, fastboot: Fastboot, adb: Adb, registry: dict | None = None):
        self.fastboot = fastboot
        self.adb = adb
        self.registry = registry if registry is not None else SUPPORTED_DEVICES

    async def _describe_bootloader(self, serial: str) -> Device:
        info, codename, radio = await asyncio.gather(
            self.fastboot.get_bootloader_info(serial),
            self.fastboot.get_device_codename(serial),
            self.fastboot.get_radio_version(serial),
        )
        return Device(
            id=serial,
            codename=codename,
            connection_mode=BOOTLOADER,
            bootloader_locked=not info["unlocked"],
            secure_boot=info["secure"],
            radio_version=radio,
        )

    async def _describe_debug(self, serial: str) -> Device:
        info, flash_locked, secure = await asyncio.gather(
            self.adb.get_device_info(serial),
            self.adb.get_prop("ro.boot.flash.locked", serial),
            self.adb.get_prop("ro.secure", serial),
        )
        return Device(
            id=serial,
            codename=info["codename"],
            connection_mode=DEBUG,
            # Unknown lock state is treated as locked
            bootloader_locked=flash_locked != "0",
            secure_boot=secure == "1",
            radio_version=info["baseband"],
        )

    async def detect_device(self, device_id: str | None = None) -> Device | None:
        """
        Returns the attached device, bootloader mode first, or None.

        Args:
            device_id (str): Serial to look for. Without it exactly one device
                may be attached.

        Raises:
            DeviceAmbiguousError: Several devices attached and no id given.
        """
        fastboot_devices, adb_devices = await asyncio.gather(
            self.fastboot.list_devices(), self.adb.list_devices()
        )
        if device_id:
            if device_id in fastboot_devices:
                device = await self._describe_bootloader(device_id)
            elif device_id in adb_devices:
                device = await self._describe_debug(device_id)
            else:
                logger.debug(f"Device {device_id} not attached")
                return None
        else:
            attached = fastboot_devices + adb_devices
            if not attached:
                return None
            if len(attached) > 1:
                raise DeviceAmbiguousError(
                    f"{len(attached)} devices attached, specify a device id",
                    {"devices": attached},
                )
            if fastboot_devices:
                device = await self._describe_bootloader(fastboot_devices[0])
            else:
                device = await self._describe_debug(adb_devices[0])

        support = self.get_device_support(device.codename)
        if support:
            device.market_name = support.market_name
        logger.debug(f"Detected {device.codename} ({device.id}) in {device.connection_mode} mode")
        return device

    async def is_oneplus_device(self, device_id: str | None = None) -> bool:
        device = await self.detect_device(device_id)
        if device is None:
            return False
        if device.connection_mode == BOOTLOADER:
            return await self.fastboot.is_oneplus_device(device.id)
        brand, manufacturer = await asyncio.gather(
            self.adb.get_prop("ro.product.brand", device.id),
            self.adb.get_prop("ro.product.manufacturer", device.id),
        )
        return any(
            value and any(marker in value.lower() for marker in ONEPLUS_MARKERS)
            for value in (brand, manufacturer)
        )

    def list_supported_devices(self) -> list[DeviceSupport]:
        return [self.get_device_support(codename) for codename in self.registry]

    def get_device_support(self, codename: str | None) -> DeviceSupport | None:
        entry = self.registry.get((codename or "").lower())
        if entry is None:
            return None
        return DeviceSupport(
            codename=codename.lower(),
            market_name=entry["name"],
            rom_flash=entry.get("rom_flash", False),
            radio_flash=entry.get("radio_flash", False),
            root=entry.get("root", False),
            warnings=list(entry.get("warnings", [])),
        )

    def is_device_supported(self, codename: str | None) -> bool:
        return self.get_device_support(codename) is not None

    def get_warning_messages(self, codename: str | None) -> list[str]:
        support = self.get_device_support(codename)
        warnings = list(COMMON_WARNINGS)
        if support:
            warnings.extend(support.warnings)
        return warnings

    async def validate_for_operation(self, operation: str, device_id: str | None = None) -> dict:
        """
        Checks that an operation can run on the attached device. Nothing is
        changed on the device.

        Returns:
            dict: {"valid", "device", "errors", "warnings"}
        """
        if operation not in OPERATIONS:
            raise InvalidParameterError(
                f"Invalid operation '{operation}', expected one of {', '.join(OPERATIONS)}"
            )
        errors = []
        try:
            device = await self.detect_device(device_id)
        except DeviceAmbiguousError as e:
            return {"valid": False, "device": None, "errors": [e.message], "warnings": []}

        if device is None:
            errors.append("No device detected")
            return {"valid": False, "device": None, "errors": errors, "warnings": []}

        support = self.get_device_support(device.codename)
        if support is None:
            errors.append(f"Device '{device.codename}' is not supported")
        elif not support.supports(operation):
            errors.append(f"{support.market_name} does not support {operation.replace('_', ' ')}")
        if device.bootloader_locked:
            errors.append("Bootloader is locked, unlock it before flashing")

        return {
            "valid": not errors,
            "device": device,
            "errors": errors,
            "warnings": self.get_warning_messages(device.codename),
        }
