import asyncio
import hashlib
import json
from datetime import date

import pytest
import requests

from radioflasher.api import RadioFlasherService
from radioflasher.catalog import FirmwareCatalog, FirmwareRecord
from radioflasher.compatibility import CompatibilityEvaluator
from radioflasher.config import ConfigManager
from radioflasher.device import DeviceDetector
from radioflasher.device_tool import Adb, Fastboot
from radioflasher.download import FirmwareDownloader
from radioflasher.firmware import FlashOrchestrator


IMAGE_BODY = b"RADIO-IMAGE-" * 4096
IMAGE_MD5 = hashlib.md5(IMAGE_BODY).hexdigest()
IMAGE_SHA256 = hashlib.sha256(IMAGE_BODY).hexdigest()


class FakeFastboot(Fastboot):
    """Fastboot with scripted device responses instead of a binary."""

    def __init__(self, devices=None, variables=None, flash_result=("", "OKAY", 0), version_after_flash=None, delay=0):
        super().__init__(tool_path="/fake/fastboot", poll_interval=0.01)
        self.devices = list(devices or [])
        self.variables = dict(variables or {})
        self.flash_result = flash_result
        self.version_after_flash = version_after_flash
        self.delay = delay
        self.calls = []
        self.responses = {}

    async def _run(self, args, timeout=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if args == ["devices"]:
            return "".join(f"{d}\tfastboot\n" for d in self.devices), "", 0
        self.calls.append(list(args))
        if args[:1] == ["-s"]:
            args = args[2:]
        if tuple(args) in self.responses:
            return self.responses[tuple(args)]
        if args[0] == "getvar":
            name = args[1]
            if name in self.variables:
                return "", f"(bootloader) {name}: {self.variables[name]}\nFinished. Total time: 0.001s\n", 0
            return "", f"getvar:{name} FAILED (remote: 'GetVar Variable Not found')\n", 1
        if args[0] == "flash":
            if self.flash_result[2] == 0 and self.version_after_flash:
                self.variables["version-baseband"] = self.version_after_flash
            return self.flash_result
        return "", "OKAY\n", 0


class FakeAdb(Adb):
    """Adb with scripted properties, root state and a fake device file system."""

    def __init__(self, devices=None, props=None, root=False, on_reboot_bootloader=None):
        super().__init__(tool_path="/fake/adb", poll_interval=0.01)
        self.devices = list(devices or [])
        self.props = dict(props or {})
        self.root = root
        self.on_reboot_bootloader = on_reboot_bootloader
        self.calls = []

    async def _run(self, args, timeout=None):
        if args == ["devices"]:
            lines = ["List of devices attached"] + [f"{d}\tdevice" for d in self.devices]
            return "\n".join(lines) + "\n", "", 0
        self.calls.append(list(args))
        if args[:1] == ["-s"]:
            serial, args = args[1], args[2:]
        if args[:2] == ["shell", "getprop"]:
            return self.props.get(args[2], "") + "\n", "", 0
        if args[:3] == ["shell", "su", "-c"]:
            if not self.root:
                return "", "/system/bin/sh: su: not found\n", 127
            if args[3] == "id":
                return "uid=0(root) gid=0(root)\n", "", 0
            return "", "", 0
        if args[0] == "pull":
            with open(args[2], "wb") as f:
                f.write(b"BACKUP")
            return f"{args[1]}: 1 file pulled\n", "", 0
        if args == ["reboot", "bootloader"]:
            self.devices.remove(serial)
            if self.on_reboot_bootloader:
                self.on_reboot_bootloader(serial)
            return "", "", 0
        return "", "", 0


class FakeResponse:
    def __init__(self, body=b"", status=200, headers=None):
        self.body = body
        self.status_code = status
        self.headers = headers if headers is not None else {"content-length": str(len(body))}

    @property
    def ok(self):
        return self.status_code < 400

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i : i + chunk_size]

    def json(self):
        return json.loads(self.body)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """Stands in for requests.Session, routes are url -> response or exception."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.gets = []
        self.heads = []

    def _route(self, url):
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(status=404)
        if isinstance(route, Exception):
            raise route
        return route

    def get(self, url, stream=False, timeout=None):
        self.gets.append(url)
        return self._route(url)

    def head(self, url, allow_redirects=False, timeout=None):
        self.heads.append(url)
        return self._route(url)


def make_record(version, codename="guacamole", **kwargs):
    data = {
        "id": kwargs.pop("id", f"{codename}-{kwargs.get('region', 'Global').lower()}-{version}"),
        "version": version,
        "codename": codename,
        "region": "Global",
        "build_date": date(2023, 1, 1),
        "size": len(IMAGE_BODY),
        "md5": IMAGE_MD5,
        "sha256": IMAGE_SHA256,
        "download_url": f"https://fw.example.org/{codename}/radio-{version}.img",
        "is_official": True,
        "compatibility": frozenset([codename]),
    }
    data.update(kwargs)
    return FirmwareRecord(**data)


@pytest.fixture
def config(tmp_path):
    return ConfigManager(home_path=str(tmp_path / "home"))


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def downloader(config, session):
    return FirmwareDownloader(config.download_dir, session=session)


@pytest.fixture
def fastboot():
    return FakeFastboot(
        devices=["ABC123"],
        variables={
            "product": "guacamole",
            "brand": "OnePlus",
            "unlocked": "yes",
            "secure": "yes",
            "serialno": "ABC123",
            "version-bootloader": "unknown",
            "version-baseband": "11.0.5.1",
        },
    )


@pytest.fixture
def adb():
    return FakeAdb()


def build_orchestrator(config, fastboot, adb, downloader, records, **kwargs):
    catalog = FirmwareCatalog(config, downloader, records=records)
    evaluator = CompatibilityEvaluator(catalog)
    detector = DeviceDetector(fastboot, adb)
    return FlashOrchestrator(config, fastboot, adb, detector, evaluator, downloader, **kwargs)


def build_service(config, fastboot, adb, downloader, records):
    catalog = FirmwareCatalog(config, downloader, records=records)
    evaluator = CompatibilityEvaluator(catalog)
    detector = DeviceDetector(fastboot, adb)
    orchestrator = FlashOrchestrator(config, fastboot, adb, detector, evaluator, downloader)
    return RadioFlasherService(config, fastboot, adb, downloader, catalog, evaluator, detector, orchestrator)
