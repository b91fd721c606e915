#!/usr/bin/env python
"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Main CLI Handler for Radioflasher Project
"""

import sys
import asyncio
import argparse

import signal
import logging
import platform
import argcomplete
from argcomplete.completers import BaseCompleter
from rich.prompt import Confirm
from tqdm.contrib.logging import logging_redirect_tqdm

from radioflasher import __version__ as version
from radioflasher.api import RadioFlasherService
from radioflasher.config import ConfigManager
from radioflasher.constants import (
    DESTRUCTIVE_WARNING,
    RADIO_PARTITIONS,
    REBOOT_MODES,
    SUPPORTED_DEVICES,
)
from radioflasher.errors import RadioFlasherError
from radioflasher.firmware_info import (
    FlashProgressBar,
    print_device_info,
    print_firmware_details,
    print_firmware_table,
    print_supported_table,
)
from radioflasher.logging_utils import setup_logging

logger = logging.getLogger("RadioFlasher")

CONFIG_KEYS = (
    "fastboot-path",
    "adb-path",
    "catalog-url",
    "cache-ttl",
    "download-dir",
    "backup-dir",
    "command-timeout",
    "wait-timeout",
)


class CodenameCompleter(BaseCompleter):
    def __call__(self, prefix, **kwargs):
        return [c for c in SUPPORTED_DEVICES if c.startswith(prefix.lower())]


def add_codename_argument(parser):
    codename = parser.add_argument("codename", type=str, help="Device codename, e.g. guacamole.")
    codename.completer = CodenameCompleter()


def add_device_argument(parser):
    parser.add_argument(
        "-d", "--device", type=str, help="Device serial (optional), required when several devices are attached."
    )


def create_device_args(parser):
    parser.add_parser("devices", help="Lists attached devices in bootloader and debug mode.")

    detect_parser = parser.add_parser("detect", help="Detects the attached device.")
    add_device_argument(detect_parser)

    supported_parser = parser.add_parser("supported", help="Lists supported devices.")
    codename = supported_parser.add_argument(
        "codename", nargs="?", type=str, help="Show support details for one codename."
    )
    codename.completer = CodenameCompleter()

    wait_parser = parser.add_parser("wait", help="Waits for a device in bootloader mode.")
    wait_parser.add_argument("-t", "--timeout", type=float, help="Timeout in seconds.")

    reboot_parser = parser.add_parser("reboot", help="Reboots a device in bootloader mode.")
    reboot_parser.add_argument("mode", nargs="?", default="system", choices=REBOOT_MODES)
    add_device_argument(reboot_parser)

    partition_parser = parser.add_parser("partition-info", help="Shows partition type and size.")
    partition_parser.add_argument("partition", type=str, help="Partition name.")
    add_device_argument(partition_parser)


def create_search_args(parser):
    search_parser = parser.add_parser("search", help="Searches the firmware catalog.")
    add_codename_argument(search_parser)
    search_parser.add_argument("-r", "--region", type=str, help="Region, e.g. EU.")
    search_parser.add_argument("--version", dest="version_filter", type=str, help="Version filter.")
    search_parser.add_argument("-o", "--official", action="store_true", help="Only official builds.")
    search_parser.add_argument("-q", "--query", type=str, help="Text in version, changelog or region.")
    search_parser.add_argument("-s", "--sort", choices=["version", "date", "size"], help="Sort order.")
    search_parser.add_argument("-l", "--limit", type=int, help="Maximum number of results.")

    latest_parser = parser.add_parser("latest", help="Shows the latest firmware for a device.")
    add_codename_argument(latest_parser)
    latest_parser.add_argument("-o", "--official", action="store_true", help="Only official builds.")

    popular_parser = parser.add_parser("popular", help="Shows the most recent builds for a device.")
    add_codename_argument(popular_parser)
    popular_parser.add_argument("-l", "--limit", type=int, default=5, help="Number of results, defaults to 5.")

    compatible_parser = parser.add_parser("compatible", help="Lists firmware safe to flash.")
    add_codename_argument(compatible_parser)
    compatible_parser.add_argument("-c", "--current", type=str, help="Installed radio version.")

    updates_parser = parser.add_parser("updates", help="Checks for a newer radio firmware.")
    add_codename_argument(updates_parser)
    updates_parser.add_argument("current_version", type=str, help="Installed radio version.")

    info_parser = parser.add_parser("info", help="Shows firmware details.")
    info_parser.add_argument("firmware_id", type=str, help="Firmware id.")

    url_parser = parser.add_parser("validate-url", help="Checks that a firmware URL is reachable.")
    url_parser.add_argument("url", type=str)


def create_flash_args(parser):
    current_parser = parser.add_parser("current", help="Reads the installed radio version.")
    add_device_argument(current_parser)

    backup_parser = parser.add_parser("backup", help="Backs up the radio partition, requires root.")
    backup_parser.add_argument("-p", "--partition", default="radio", choices=RADIO_PARTITIONS)
    add_device_argument(backup_parser)

    flash_parser = parser.add_parser("flash", help="Flashes radio firmware.")
    source = flash_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("-i", "--firmware-id", type=str, help="Catalog firmware id.")
    source.add_argument("-f", "--file", type=str, help="Local image file.")
    flash_parser.add_argument("-p", "--partition", default="radio", choices=RADIO_PARTITIONS)
    add_device_argument(flash_parser)
    flash_parser.add_argument(
        "--require-backup", action="store_true", help="Abort when the radio can not be backed up."
    )
    flash_parser.add_argument("--no-reboot", action="store_true", help="Stay in bootloader after flashing.")
    flash_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation.")


def create_cache_args(parser):
    cache_parser = parser.add_parser("cache", help="Catalog cache.")
    subparsers = cache_parser.add_subparsers(dest="cache_command", required=True)
    subparsers.add_parser("init", help="Loads the catalog into the cache.")
    subparsers.add_parser("clear", help="Clears the catalog cache.")


def create_config_args(parser):
    config_parser = parser.add_parser("config", help="Handles CONFIGURATION values.")
    config_parser.add_argument("--set", metavar="KEY=VALUE", action="append", help="Set a value.")
    config_parser.add_argument("--unset", metavar="KEY", action="append", choices=CONFIG_KEYS, help="Remove a value.")


def handle_config(args, config_manager: ConfigManager) -> int:
    for item in args.set or []:
        key, sep, value = item.partition("=")
        if not sep or key not in CONFIG_KEYS:
            logger.error(f"Invalid setting '{item}', keys: {', '.join(CONFIG_KEYS)}")
            return 1
        config_manager.set_value(key, value)
    for key in args.unset or []:
        config_manager.remove_key(key)
    for key, value in config_manager.list_all().items():
        logger.info(f"{key}: {value}")
    return 0


def report(result: dict) -> bool:
    if not result.get("success"):
        logger.error(f"Error: {result.get('error') or result.get('message') or 'operation failed'}")
        return False
    if result.get("message"):
        logger.info(result["message"])
    return True


async def resolve_device_id(service: RadioFlasherService, device_id):
    if device_id:
        return device_id
    detection = await service.detect_device()
    if not report(detection):
        return None
    if not detection["connected"]:
        logger.error("No device found.")
        return None
    return detection["deviceInfo"]["id"]


async def flash(args, service: RadioFlasherService) -> int:
    source = await service.resolve_source(args.firmware_id, args.file, args.partition)
    device_id = await resolve_device_id(service, args.device)
    if not device_id:
        return 1

    what = source.record.version if source.record else source.image_path
    logger.warning(DESTRUCTIVE_WARNING)
    if not args.yes and not Confirm.ask(
        f"Flash {what} to the {source.partition} partition of {device_id}?", default=False
    ):
        logger.info("Flash cancelled by user.")
        return 1

    stream = service.start_flash(device_id, source, args.require_backup, not args.no_reboot)
    progress = FlashProgressBar()
    final = None
    with logging_redirect_tqdm():
        try:
            async for event in stream:
                progress.update(event.to_dict())
                final = event
        finally:
            progress.close()

    if final and final.success:
        logger.info(final.message)
        return 0
    logger.error(f"Flash failed: {final.error if final else 'no result'}")
    return 1


async def run_command(args, service: RadioFlasherService) -> int:
    if args.command == "devices":
        result = await service.list_devices()
        if not report(result):
            return 1
        for serial in result["bootloader"]:
            logger.info(f"{serial}\tbootloader")
        for serial in result["debug"]:
            logger.info(f"{serial}\tdebug")
        if not result["count"]:
            logger.info("No devices attached.")
        return 0
    elif args.command == "detect":
        result = await service.detect_device(args.device)
        if not report(result):
            return 1
        if not result["connected"]:
            logger.error("No device found.")
            return 1
        print_device_info(result["deviceInfo"])
        return 0
    elif args.command == "supported":
        if args.codename:
            result = await service.get_device_support(args.codename)
            if not report(result):
                return 1
            if not result["isSupported"]:
                logger.error(f"Device '{args.codename}' is not supported.")
                return 1
            print_supported_table([result["deviceSupport"]])
            for warning in result["warnings"]:
                logger.warning(f"Warning: {warning}")
            return 0
        result = await service.list_supported_devices()
        print_supported_table(result["devices"])
        return 0
    elif args.command == "search":
        if args.query or args.sort or args.limit:
            result = await service.search_advanced(
                args.codename, args.query, args.region, args.version_filter, args.official, args.sort, args.limit
            )
        else:
            result = await service.search_firmware(args.codename, args.region, args.version_filter, args.official)
        if not report(result):
            return 1
        print_firmware_table(result["firmware"])
        return 0 if result["totalCount"] else 1
    elif args.command == "latest":
        result = await service.get_latest_firmware(args.codename, args.official)
        if not report(result):
            return 1
        if not result["firmware"]:
            logger.error(f"No firmware found for '{args.codename}'.")
            return 1
        print_firmware_details(result["firmware"])
        return 0
    elif args.command == "popular":
        result = await service.get_popular_firmware(args.codename, args.limit)
        if not report(result):
            return 1
        print_firmware_table(result["firmware"])
        return 0
    elif args.command == "compatible":
        result = await service.get_compatible_firmware(args.codename, args.current)
        if not report(result):
            return 1
        print_firmware_table(result["firmware"])
        return 0
    elif args.command == "updates":
        result = await service.check_for_updates(args.codename, args.current_version)
        if not report(result):
            return 1
        if result["hasUpdate"]:
            logger.info(f"New radio firmware {result['latestFirmware']['version']} available.")
        else:
            logger.info(f"Radio firmware {args.current_version} is up to date.")
        return 0
    elif args.command == "info":
        result = await service.get_firmware_details(args.firmware_id)
        if not report(result):
            return 1
        if not result["firmware"]:
            logger.error(f"Firmware '{args.firmware_id}' not found in catalog.")
            return 1
        print_firmware_details(result["firmware"])
        return 0
    elif args.command == "validate-url":
        result = await service.validate_firmware_url(args.url)
        return 0 if report(result) and result["valid"] else 1
    elif args.command == "current":
        result = await service.get_current_version(args.device)
        if not report(result):
            return 1
        logger.info(f"Radio version: {result['currentVersion'] or 'unknown'}")
        return 0
    elif args.command == "backup":
        result = await service.backup_current(args.device, args.partition)
        if not report(result):
            return 1
        logger.info(f"Saved to {result['backupPath']}")
        return 0
    elif args.command == "flash":
        return await flash(args, service)
    elif args.command == "wait":
        logger.info("Waiting for device...", extra={"status": "start"})
        result = await service.wait_for_device(args.timeout)
        if result["success"]:
            logger.info("Waiting for device... OK      ", extra={"status": "end"})
            return 0
        logger.info("Waiting for device... Failed  ", extra={"status": "end"})
        report(result)
        return 1
    elif args.command == "reboot":
        return 0 if report(await service.reboot(args.mode, args.device)) else 1
    elif args.command == "partition-info":
        result = await service.get_partition_info(args.partition, args.device)
        if not report(result):
            return 1
        info = result["partitionInfo"]
        logger.info(f"{info['partition']}: type {info['type'] or 'unknown'}, size {info['size'] or 'unknown'}")
        return 0
    elif args.command == "cache":
        if args.cache_command == "init":
            logger.info("Loading firmware catalog...", extra={"status": "start"})
            result = await service.initialize_cache()
            if result["success"]:
                logger.info(f"Loading firmware catalog... {result['records']} records", extra={"status": "end"})
                return 0
            logger.info("Loading firmware catalog... Failed", extra={"status": "end"})
            report(result)
            return 1
        return 0 if report(await service.clear_cache()) else 1
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Radio (modem) firmware manager and flasher for OnePlus devices."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose mode")
    parser.add_argument(
        "--version",
        action="version",
        version=f"Radioflasher version: {version}",
        help="Show the Radioflasher version and exit.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    create_device_args(subparsers)
    create_search_args(subparsers)
    create_flash_args(subparsers)
    create_cache_args(subparsers)
    create_config_args(subparsers)
    return parser


def main():
    signal.signal(signal.SIGINT, exit_gracefully)

    parser = create_parser()
    argcomplete.autocomplete(parser)

    if len(sys.argv) == 1:
        parser.print_help()
        return 1

    args = parser.parse_args()

    config_manager = ConfigManager()
    setup_logging(args.verbose)

    logger.debug(f"Radioflasher version: {version}")
    logger.debug(f"Running on Python: {platform.python_version()}")
    logger.debug(f"Platform: {platform.system()} {platform.release()}")

    if args.command == "config":
        return handle_config(args, config_manager)

    service = RadioFlasherService.create(config_manager)
    try:
        return asyncio.run(run_command(args, service))
    except RadioFlasherError as e:
        logger.error(f"Error: {e.message}")
        return 1


def exit_gracefully(signum, frame):
    logger.warning("\nProcess interrupted.")
    sys.exit(1)


if __name__ == "__main__":
    sys.exit(main())
