"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Radio Firmware Flashing Module
"""

import os
import json
import time
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from radioflasher.catalog import FirmwareRecord
from radioflasher.compatibility import CompatibilityEvaluator
from radioflasher.config import ConfigManager
from radioflasher.constants import RADIO_PARTITIONS, STAGE_PROGRESS, STAGE_TIMEOUTS
from radioflasher.device import BOOTLOADER, DEBUG, Device, DeviceDetector
from radioflasher.device_tool import Adb, Fastboot
from radioflasher.download import FirmwareDownloader
from radioflasher.errors import (
    BackupUnavailableError,
    DeviceNotFoundError,
    FirmwareOperationError,
    IncompatibleFirmwareError,
    InvalidParameterError,
    RadioFlasherError,
    SessionAlreadyActiveError,
    TransportError,
)
from radioflasher.utils import validate_argument

logger = logging.getLogger("Flasher")


class FlashStage(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    BACKING_UP = "backing-up"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    FLASHING = "flashing"
    CONFIRMING = "confirming"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FlashStage.COMPLETE, FlashStage.FAILED)


@dataclass
class ProgressEvent:
    stage: FlashStage
    progress: float
    message: str
    success: bool | None = None
    error: str | None = None
    warning: str | None = None

    @property
    def is_final(self) -> bool:
        return self.success is not None

    def to_dict(self) -> dict:
        payload = {
            "stage": self.stage.value,
            "progress": round(self.progress, 1),
            "message": self.message,
        }
        if self.success is not None:
            payload["success"] = self.success
        if self.error:
            payload["error"] = self.error
        if self.warning:
            payload["warning"] = self.warning
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class FlashSource:
    """What to flash: a catalog record or a local image, never both."""

    record: FirmwareRecord | None = None
    image_path: str | None = None
    partition: str = "radio"

    def validate(self):
        if (self.record is None) == (self.image_path is None):
            raise InvalidParameterError("Exactly one of firmware record or image path is required")
        if self.partition not in RADIO_PARTITIONS:
            raise InvalidParameterError(
                f"Invalid partition '{self.partition}', expected one of {', '.join(RADIO_PARTITIONS)}"
            )
        if self.image_path is not None:
            validate_argument(self.image_path, "image path")
            if not Fastboot.validate_image(self.image_path):
                raise InvalidParameterError(f"Image file is missing or empty: {self.image_path}")
        elif not self.record.download_url:
            raise InvalidParameterError(f"Firmware {self.record.id} has no download URL")


@dataclass
class FlashSession:
    device_id: str
    source: FlashSource
    stage: FlashStage = FlashStage.IDLE
    progress: float = 0.0
    started_at: datetime = field(default_factory=datetime.now)
    last_error: str | None = None
    backup_path: str | None = None
    image_path: str | None = None
    previous_version: str | None = None
    new_version: str | None = None

    @property
    def is_active(self) -> bool:
        return not self.stage.is_terminal

    def to_dict(self) -> dict:
        return {
            "deviceId": self.device_id,
            "stage": self.stage.value,
            "progress": round(self.progress, 1),
            "startedAt": self.started_at.isoformat(),
            "lastError": self.last_error,
            "backupPath": self.backup_path,
            "previousVersion": self.previous_version,
            "newVersion": self.new_version,
        }


class FlashStream:
    """
    Async iterator over the progress events of one session. Iteration ends
    after the final event, the one that carries `success`.
    """

    def __init__(self, session: FlashSession, queue: asyncio.Queue, task: asyncio.Task, cancel_event: threading.Event):
        self.session = session
        self.task = task
        self._queue = queue
        self._cancel_event = cancel_event
        self._done = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._done:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.is_final:
            self._done = True
        return event

    async def wait(self) -> ProgressEvent:
        """Consumes the remaining events and returns the final one."""
        event = None
        async for event in self:
            pass
        return event

    def abandon(self):
        """
        Asks the session to stop. Honoured until the flashing stage starts,
        the session still ends with a final event.
        """
        self._cancel_event.set()


class _SessionRunner:
    """Drives one session through its stages and publishes its events."""

    def __init__(self, orchestrator, session, queue, cancel_event, require_backup, reboot):
        self.orchestrator = orchestrator
        self.session = session
        self.queue = queue
        self.cancel_event = cancel_event
        self.require_backup = require_backup
        self.reboot = reboot
        self.device: Device | None = None
        self.warning = None
        self.flash_notice = None
        self._last_download_percent = -1

    # Events

    def _publish(self, event: ProgressEvent):
        self.queue.put_nowait(event)

    def _emit(self, message, fraction=None, warning=None):
        if fraction is not None:
            start, end = STAGE_PROGRESS[self.session.stage.value]
            self.session.progress = max(self.session.progress, start + (end - start) * fraction)
        self._publish(ProgressEvent(self.session.stage, self.session.progress, message, warning=warning))

    def _download_progress(self, percent: float):
        # Late reports from the download thread must not follow a later stage
        if self.session.stage is not FlashStage.DOWNLOADING or int(percent) <= self._last_download_percent:
            return
        self._last_download_percent = int(percent)
        self._emit(f"Downloading... {int(percent)}%", percent / 100.0)

    # Stage plumbing

    async def _stage(self, stage: FlashStage, handler, message: str):
        if stage in (FlashStage.DOWNLOADING, FlashStage.VERIFYING, FlashStage.FLASHING) and self.cancel_event.is_set():
            raise FirmwareOperationError("Session abandoned before flashing")
        self.session.stage = stage
        self.session.progress = max(self.session.progress, STAGE_PROGRESS[stage.value][0])
        logger.debug(f"{self.session.device_id}: {message}")
        self._emit(message)

        timeout = self.orchestrator.stage_timeouts.get(stage.value)
        if timeout is None:
            await handler()
            return
        try:
            await asyncio.wait_for(handler(), timeout)
        except asyncio.TimeoutError:
            self.cancel_event.set()
            raise FirmwareOperationError(f"Stage '{stage.value}' timed out after {timeout}s")

    async def run(self):
        source = self.session.source
        try:
            await self._stage(FlashStage.DETECTING, self._detect, "Detecting device...")
            await self._stage(FlashStage.BACKING_UP, self._backup, "Backing up current radio firmware...")
            if source.record is not None:
                await self._stage(FlashStage.DOWNLOADING, self._download, f"Downloading {source.record.version}...")
            else:
                self.session.image_path = source.image_path
            await self._stage(FlashStage.VERIFYING, self._verify, "Verifying firmware and device...")
            await self._stage(FlashStage.FLASHING, self._flash, f"Flashing {source.partition} partition...")
            await self._stage(FlashStage.CONFIRMING, self._confirm, "Confirming radio version...")
        except RadioFlasherError as e:
            self._fail(e.message)
        except asyncio.CancelledError:
            self._fail("Session cancelled")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error while flashing {self.session.device_id}")
            self._fail(f"Unexpected error: {e}")
        else:
            self._complete()

    def _complete(self):
        self.session.stage = FlashStage.COMPLETE
        self.session.progress = 100.0
        message = "Radio firmware flashed successfully!"
        logger.info(f"{self.session.device_id}: {message}")
        warning = "; ".join(w for w in (self.warning, self.flash_notice) if w) or None
        self._publish(ProgressEvent(FlashStage.COMPLETE, 100.0, message, success=True, warning=warning))

    def _fail(self, error: str):
        failed_at = self.session.stage.value
        self.session.stage = FlashStage.FAILED
        self.session.last_error = error or "Flash operation failed"
        logger.error(f"Flash failed during {failed_at}: {self.session.last_error}")
        self._publish(
            ProgressEvent(
                FlashStage.FAILED,
                self.session.progress,
                "Flash operation failed",
                success=False,
                error=self.session.last_error,
                warning=self.warning,
            )
        )

    # Stages

    async def _detect(self):
        device = await self.orchestrator.detector.detect_device(self.session.device_id)
        if device is None:
            raise DeviceNotFoundError(f"Device {self.session.device_id} not found")
        self.device = device
        self.session.previous_version = device.radio_version
        self._emit(
            f"Found {device.market_name or device.codename} in {device.connection_mode} mode", 1.0
        )

    def _backup_unavailable(self, reason: str):
        if self.require_backup:
            raise BackupUnavailableError(reason)
        self.warning = reason
        logger.warning(f"{reason}, continuing without backup")
        self._emit("Continuing without backup", 1.0, warning=reason)

    async def _backup(self):
        adb = self.orchestrator.adb
        if self.device.connection_mode != DEBUG:
            self._backup_unavailable("Backup requires debug mode with root access")
            return
        if not await adb.has_root(self.device.id):
            self._backup_unavailable("Backup requires root access")
            return
        self.session.backup_path = await self.orchestrator._backup_partition(
            self.device, self.session.source.partition
        )
        self._emit(f"Radio backup saved to {self.session.backup_path}", 1.0)

    async def _download(self):
        loop = asyncio.get_running_loop()

        def on_progress(percent):
            loop.call_soon_threadsafe(self._download_progress, percent)

        self.session.image_path = await asyncio.to_thread(
            self.orchestrator.downloader.download,
            self.session.source.record,
            on_progress,
            self.cancel_event,
        )
        self._emit("Download verified", 1.0)

    async def _verify(self):
        orchestrator = self.orchestrator
        device = self.device
        record = self.session.source.record

        support = orchestrator.detector.get_device_support(device.codename)
        if support is None:
            raise IncompatibleFirmwareError(f"Device '{device.codename}' is not supported")
        if not support.radio_flash:
            raise IncompatibleFirmwareError(f"{support.market_name} does not support radio flashing")
        if record is not None:
            orchestrator.evaluator.evaluate(record, device.codename, device.radio_version)
        if not Fastboot.validate_image(self.session.image_path):
            raise FirmwareOperationError(f"Image file is missing or empty: {self.session.image_path}")
        self._emit("Firmware is compatible", 0.3)

        if device.connection_mode == DEBUG:
            self._emit("Rebooting into bootloader...", 0.4)
            result = await orchestrator.adb.reboot("bootloader", device.id)
            if not result.success:
                raise TransportError(f"Reboot into bootloader failed: {result.error}")
            if not await orchestrator.fastboot.wait_for_device(orchestrator.wait_timeout, device.id):
                raise DeviceNotFoundError(f"Device {device.id} did not return in bootloader mode")
            device.connection_mode = BOOTLOADER

        info = await orchestrator.fastboot.get_bootloader_info(device.id)
        if not info["unlocked"]:
            raise FirmwareOperationError("Bootloader is locked, unlock it before flashing")
        self._emit("Device ready for flashing", 1.0)

    async def _flash(self):
        result = await self.orchestrator.fastboot.flash_partition(
            self.session.source.partition, self.session.image_path, self.device.id
        )
        if not result.success:
            raise TransportError(result.error or "Flash command failed")
        self.flash_notice = result.message
        self._emit("Partition written", 1.0)

    async def _confirm(self):
        record = self.session.source.record
        version = await self.orchestrator.fastboot.get_radio_version(self.device.id)
        self.session.new_version = version
        if record is not None:
            if not version:
                raise FirmwareOperationError("Could not read the radio version after flashing")
            if version != record.version and record.version not in version:
                raise FirmwareOperationError(
                    f"Radio version is {version} after flashing, expected {record.version}"
                )
            self._emit(f"Radio version is now {version}", 0.5)
        else:
            self._emit(f"Radio version reported: {version or 'unknown'}", 0.5)

        if self.reboot:
            result = await self.orchestrator.fastboot.reboot("system", self.device.id)
            if not result.success:
                self.warning = f"Reboot failed: {result.error}"
                logger.warning(self.warning)
                self._emit("Flashed, reboot the device manually", 1.0, warning=self.warning)
            else:
                self._emit("Rebooting device", 1.0)


class FlashOrchestrator:
    """
    Runs radio flash sessions, at most one active session per device.
    Sessions run as tasks on the caller's event loop and publish progress
    through a FlashStream.
    """

    def __init__(
        self,
        config: ConfigManager,
        fastboot: Fastboot,
        adb: Adb,
        detector: DeviceDetector,
        evaluator: CompatibilityEvaluator,
        downloader: FirmwareDownloader,
        stage_timeouts: dict | None = None,
    ):
        self.config = config
        self.fastboot = fastboot
        self.adb = adb
        self.detector = detector
        self.evaluator = evaluator
        self.downloader = downloader
        self.stage_timeouts = dict(STAGE_TIMEOUTS if stage_timeouts is None else stage_timeouts)
        self.wait_timeout = config.wait_timeout
        self._sessions: dict[str, FlashSession] = {}
        self._registry_lock = threading.Lock()
        self._tasks = set()

    def get_session(self, device_id: str) -> FlashSession | None:
        with self._registry_lock:
            return self._sessions.get(device_id)

    def start_flash(
        self,
        device_id: str,
        source: FlashSource,
        require_backup: bool = False,
        reboot: bool = True,
    ) -> FlashStream:
        """
        Registers a new session and starts it on the running event loop.

        Raises:
            InvalidParameterError: Missing device id or an invalid source.
            SessionAlreadyActiveError: The device has an unfinished session.
        """
        if not device_id:
            raise InvalidParameterError("Device id is required")
        device_id = validate_argument(device_id, "device id")
        source.validate()
        loop = asyncio.get_running_loop()

        with self._registry_lock:
            existing = self._sessions.get(device_id)
            if existing is not None and existing.is_active:
                raise SessionAlreadyActiveError(
                    f"A flash session is already running on {device_id}",
                    {"stage": existing.stage.value},
                )
            session = FlashSession(device_id=device_id, source=source)
            self._sessions[device_id] = session

        logger.debug(f"Starting flash session on {device_id}")
        queue = asyncio.Queue()
        cancel_event = threading.Event()
        runner = _SessionRunner(self, session, queue, cancel_event, require_backup, reboot)
        task = loop.create_task(runner.run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return FlashStream(session, queue, task, cancel_event)

    async def _backup_partition(self, device: Device, partition: str) -> str:
        backup_dir = self.config.backup_dir
        os.makedirs(backup_dir, exist_ok=True)
        stamp = time.strftime("%Y%m%d-%H%M%S")
        path = os.path.join(backup_dir, f"{device.codename or device.id}_{partition}_{stamp}.img")
        result = await self.adb.read_partition_image(partition, path, device.id)
        if not result.success:
            raise FirmwareOperationError(f"Radio backup failed: {result.error}")
        logger.info(f"Radio backup saved to {path}")
        return path

    async def get_current_version(self, device_id: str | None = None) -> str | None:
        device = await self.detector.detect_device(device_id)
        if device is None:
            raise DeviceNotFoundError("No device found")
        return device.radio_version

    async def backup_current(self, device_id: str | None = None, partition: str = "radio") -> str:
        """
        Saves the radio partition of a rooted device in debug mode.

        Raises:
            BackupUnavailableError: Not in debug mode or no root access.
        """
        if partition not in RADIO_PARTITIONS:
            raise InvalidParameterError(f"Invalid partition '{partition}'")
        device = await self.detector.detect_device(device_id)
        if device is None:
            raise DeviceNotFoundError("No device found")
        if device.connection_mode != DEBUG:
            raise BackupUnavailableError("Backup requires debug mode with root access")
        if not await self.adb.has_root(device.id):
            raise BackupUnavailableError("Backup failed - requires root access")
        return await self._backup_partition(device, partition)
