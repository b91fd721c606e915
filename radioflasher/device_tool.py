"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Fastboot and ADB Tool Wrapper Module
"""

import os
import re
import shlex
import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from shutil import which

from radioflasher.constants import (
    COMMAND_TIMEOUT,
    DESTRUCTIVE_WARNING,
    DEVICE_POLL_INTERVAL,
    FLASH_COMMAND_TIMEOUT,
    ONEPLUS_MARKERS,
    REBOOT_MODES,
    UNLOCK_WARNING,
    WAIT_FOR_DEVICE_TIMEOUT,
)
from radioflasher.errors import (
    DeviceAmbiguousError,
    DeviceNotFoundError,
    InvalidParameterError,
    ToolNotFoundError,
    TransportError,
)
from radioflasher.utils import validate_argument, validate_name


@dataclass
class CommandResult:
    success: bool
    output: str = ""
    error: str | None = None
    returncode: int | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        payload = {"success": self.success, "output": self.output}
        if self.error:
            payload["error"] = self.error
        if self.message:
            payload["message"] = self.message
        return payload


def combine_output(stdout: str, stderr: str) -> str:
    """Joins both output channels, stdout first, on a line boundary."""
    if stdout and stderr and not stdout.endswith("\n"):
        return f"{stdout}\n{stderr}"
    return stdout + stderr


def parse_variable(output: str, name: str) -> str | None:
    """
    Extracts `name: value` from fastboot output. Lines may carry the
    "(bootloader) " prefix. The name is matched case-sensitively.
    """
    pattern = rf"(?m)^(?:\(bootloader\)\s*)?{re.escape(name)}:[ \t]*(.+)$"
    match = re.search(pattern, output)
    if not match:
        return None
    value = match.group(1).strip()
    return value or None


class DeviceTool:
    """
    Base wrapper around a device-management binary.
    It finds the executable, runs commands against it without a shell and
    with a timeout, and scopes every device command to a single serial.
    """

    executable = None
    logger_name = "DeviceTool"

    def __init__(
        self,
        tool_path: str | None = None,
        timeout: float = COMMAND_TIMEOUT,
        poll_interval: float = DEVICE_POLL_INTERVAL,
    ):
        self.tool_path = tool_path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(self.logger_name)
        self._command = None

    def _find_tool_path(self, tool_path):
        """Find the executable, accepting a direct path or its directory."""
        paths_to_check = [
            tool_path,
            Path(tool_path) / self.executable if tool_path else None,
            which(self.executable),
        ]
        for path in paths_to_check:
            if path and which(str(path)):
                return which(str(path))
        return None

    @property
    def command(self) -> str:
        if self._command is None:
            self._command = self._find_tool_path(self.tool_path)
            if self._command is None:
                raise ToolNotFoundError(
                    f"{self.executable} not found, install it or set '{self.executable}-path'"
                )
        return self._command

    async def _run(self, args: list[str], timeout: float | None = None) -> tuple[str, str, int]:
        """
        Runs the binary with `args` and returns (stdout, stderr, returncode).
        The process is killed when it outlives the timeout.
        """
        timeout = timeout or self.timeout
        cmd = [self.command] + args
        self.logger.debug(f"Executing command: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError(f"Unable to start {self.executable}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TransportError(
                f"{self.executable} {' '.join(args)} timed out after {timeout}s"
            )
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            process.returncode,
        )

    async def _execute_raw(self, args, timeout=None) -> CommandResult:
        try:
            stdout, stderr, returncode = await self._run(args, timeout)
        except TransportError as e:
            self.logger.debug(f"Transport failure: {e}")
            return CommandResult(False, error=str(e))

        output = combine_output(stdout, stderr)
        if returncode != 0:
            error = stderr.strip() or stdout.strip() or f"exit status {returncode}"
            return CommandResult(False, output, error=error, returncode=returncode)
        return CommandResult(True, output, returncode=returncode)

    def parse_devices(self, output: str) -> list[str]:
        raise NotImplementedError

    async def list_devices(self) -> list[str]:
        """Serials currently responding to this tool, empty when none."""
        result = await self._execute_raw(["devices"])
        if not result.success:
            self.logger.debug(f"Device listing failed: {result.error}")
            return []
        return self.parse_devices(result.output)

    async def resolve_device(self, device_id: str | None = None) -> str:
        """
        Returns the serial a command should be scoped to. Without an explicit
        id exactly one device must be attached.
        """
        if device_id:
            return validate_argument(device_id, "device id")
        devices = await self.list_devices()
        if not devices:
            raise DeviceNotFoundError(f"No device found in {self.executable} mode")
        if len(devices) > 1:
            raise DeviceAmbiguousError(
                f"{len(devices)} devices attached, specify a device id",
                {"devices": devices},
            )
        return devices[0]

    async def execute(self, args: list[str], device_id: str | None = None, timeout=None) -> CommandResult:
        """
        Runs a command scoped to one device. Process and transport failures
        end up in the returned result; only device addressing errors raise.
        """
        serial = await self.resolve_device(device_id)
        return await self._execute_raw(["-s", serial] + list(args), timeout)

    async def wait_for_device(self, timeout: float = WAIT_FOR_DEVICE_TIMEOUT, device_id: str | None = None) -> bool:
        """
        Polls the device list every `poll_interval` seconds until a device
        (or the given serial) shows up. Returns False once `timeout` passed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            devices = await self.list_devices()
            found = bool(devices) if device_id is None else device_id in devices
            if found:
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                self.logger.debug(f"No {self.executable} device within {timeout}s")
                return False
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def check_installation(self) -> dict:
        try:
            command = self.command
        except ToolNotFoundError as e:
            return {"installed": False, "path": None, "version": None, "error": e.message}
        result = await self._execute_raw(["--version"])
        version = result.output.strip().splitlines()[0] if result.output.strip() else None
        return {"installed": result.success, "path": command, "version": version}


class Fastboot(DeviceTool):
    """Bootloader mode transport."""

    executable = "fastboot"
    logger_name = "Fastboot"

    def parse_devices(self, output):
        devices = []
        for line in output.splitlines():
            if "fastboot" not in line:
                continue
            parts = line.split()
            if parts:
                devices.append(parts[0])
        return devices

    async def get_variable(self, name: str, device_id: str | None = None) -> str | None:
        name = validate_argument(name, "variable name")
        result = await self.execute(["getvar", name], device_id)
        # getvar prints to stderr and may exit non zero for unknown variables
        return parse_variable(result.output, name)

    async def get_bootloader_info(self, device_id: str | None = None) -> dict:
        serial = await self.resolve_device(device_id)
        names = ["version-bootloader", "variant", "unlocked", "secure", "serialno"]
        values = await asyncio.gather(*(self.get_variable(n, serial) for n in names))
        info = dict(zip(names, values))
        return {
            "bootloader_version": info["version-bootloader"],
            "variant": info["variant"],
            "unlocked": (info["unlocked"] or "").lower() == "yes",
            "secure": (info["secure"] or "").lower() == "yes",
            "serial": info["serialno"] or serial,
        }

    async def get_device_codename(self, device_id=None):
        return await self.get_variable("product", device_id)

    async def get_radio_version(self, device_id=None):
        return await self.get_variable("version-baseband", device_id)

    async def is_oneplus_device(self, device_id: str | None = None) -> bool:
        serial = await self.resolve_device(device_id)
        product, brand = await asyncio.gather(
            self.get_variable("product", serial),
            self.get_variable("brand", serial),
        )
        for value in (product, brand):
            if value and any(marker in value.lower() for marker in ONEPLUS_MARKERS):
                return True
        return False

    async def unlock_bootloader(self, device_id=None) -> CommandResult:
        result = await self.execute(["flashing", "unlock"], device_id)
        result.message = UNLOCK_WARNING
        return result

    async def lock_bootloader(self, device_id=None) -> CommandResult:
        result = await self.execute(["flashing", "lock"], device_id)
        result.message = DESTRUCTIVE_WARNING
        return result

    @staticmethod
    def validate_image(image_path: str | None) -> bool:
        return bool(image_path) and os.path.isfile(image_path) and os.path.getsize(image_path) > 0

    async def flash_partition(
        self, partition: str, image_path: str, device_id=None, timeout=FLASH_COMMAND_TIMEOUT
    ) -> CommandResult:
        partition = validate_name(partition, "partition")
        image_path = validate_argument(image_path, "image path")
        if not self.validate_image(image_path):
            raise InvalidParameterError(f"Image file is missing or empty: {image_path}")

        self.logger.info(f"Flashing {os.path.basename(image_path)} to {partition}")
        result = await self.execute(["flash", partition, image_path], device_id, timeout)
        result.message = DESTRUCTIVE_WARNING
        return result

    async def flash_radio(self, image_path, device_id=None) -> CommandResult:
        return await self.flash_partition("radio", image_path, device_id)

    async def flash_modem(self, image_path, device_id=None) -> CommandResult:
        return await self.flash_partition("modem", image_path, device_id)

    async def erase_partition(self, partition: str, device_id=None) -> CommandResult:
        partition = validate_name(partition, "partition")
        result = await self.execute(["erase", partition], device_id)
        result.message = DESTRUCTIVE_WARNING
        return result

    async def format_partition(self, partition: str, filesystem: str = "ext4", device_id=None) -> CommandResult:
        partition = validate_name(partition, "partition")
        filesystem = validate_name(filesystem, "filesystem")
        result = await self.execute([f"format:{filesystem}", partition], device_id)
        result.message = DESTRUCTIVE_WARNING
        return result

    async def reboot(self, mode: str = "system", device_id=None) -> CommandResult:
        if mode not in REBOOT_MODES:
            raise InvalidParameterError(f"Invalid reboot mode: '{mode}'")
        commands = {
            "system": ["reboot"],
            "bootloader": ["reboot-bootloader"],
            "recovery": ["reboot", "recovery"],
        }
        return await self.execute(commands[mode], device_id)

    async def continue_boot(self, device_id=None) -> CommandResult:
        return await self.execute(["continue"], device_id)

    async def get_partition_info(self, partition: str, device_id=None) -> dict:
        partition = validate_name(partition, "partition")
        serial = await self.resolve_device(device_id)
        partition_type, size = await asyncio.gather(
            self.get_variable(f"partition-type:{partition}", serial),
            self.get_variable(f"partition-size:{partition}", serial),
        )
        return {"partition": partition, "type": partition_type, "size": size}


class Adb(DeviceTool):
    """Debug mode transport, used for device info and root backups."""

    executable = "adb"
    logger_name = "Adb"

    PROPERTIES = {
        "codename": "ro.product.device",
        "model": "ro.product.model",
        "brand": "ro.product.brand",
        "manufacturer": "ro.product.manufacturer",
        "android_version": "ro.build.version.release",
        "baseband": "gsm.version.baseband",
        "serial": "ro.serialno",
    }

    def parse_devices(self, output):
        devices = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[1] == "device":
                devices.append(parts[0])
        return devices

    async def get_prop(self, name: str, device_id=None) -> str | None:
        name = validate_name(name, "property")
        result = await self.execute(["shell", "getprop", name], device_id)
        if not result.success:
            return None
        return result.output.strip() or None

    async def get_device_info(self, device_id=None) -> dict:
        serial = await self.resolve_device(device_id)
        values = await asyncio.gather(
            *(self.get_prop(prop, serial) for prop in self.PROPERTIES.values())
        )
        info = dict(zip(self.PROPERTIES.keys(), values))
        info["serial"] = info["serial"] or serial
        return info

    async def has_root(self, device_id=None) -> bool:
        result = await self.execute(["shell", "su", "-c", "id"], device_id)
        return result.success and "uid=0" in result.output

    async def reboot(self, mode: str = "system", device_id=None) -> CommandResult:
        if mode not in REBOOT_MODES:
            raise InvalidParameterError(f"Invalid reboot mode: '{mode}'")
        args = ["reboot"] if mode == "system" else ["reboot", mode]
        return await self.execute(args, device_id)

    async def pull_file(self, remote_path: str, local_path: str, device_id=None) -> CommandResult:
        remote_path = validate_argument(remote_path, "remote path")
        local_path = validate_argument(local_path, "local path")
        return await self.execute(["pull", remote_path, local_path], device_id)

    async def read_partition_image(self, partition: str, local_path: str, device_id=None) -> CommandResult:
        """
        Copies a block partition to `local_path` using root `dd` on the
        device followed by a pull. The temporary copy on the device is
        removed afterwards.
        """
        partition = validate_name(partition, "partition")
        local_path = validate_argument(local_path, "local path")
        serial = await self.resolve_device(device_id)

        remote_path = f"/sdcard/{partition}_backup.img"
        dd = f"dd if=/dev/block/by-name/{partition} of={remote_path}"
        result = await self.execute(["shell", "su", "-c", shlex.quote(dd)], serial)
        if not result.success:
            return result
        try:
            result = await self.pull_file(remote_path, local_path, serial)
        finally:
            cleanup = await self.execute(["shell", "rm", "-f", remote_path], serial)
            if not cleanup.success:
                self.logger.warning(f"Could not remove {remote_path}: {cleanup.error}")
        return result
