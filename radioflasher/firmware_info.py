"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Console Presentation Module
"""

import logging

import tqdm

from radioflasher.utils import format_size

logger = logging.getLogger("RadioFlasher")

bar_format = "{l_bar}{bar}| {n:.0f}/{total:.0f}% "


def print_firmware_table(firmware: list):
    """Prints firmware payload dictionaries as a table."""
    if not firmware:
        logger.info("No firmware to display.")
        return

    divider = f"+{'':-<18}+{'':-<8}+{'':-<12}+{'':-<11}+{'':-<10}+{'':-<10}+"
    logger.info(divider)
    logger.info(
        f"| {'Version': <17}| {'Region': <7}| {'Build date': <11}| {'Size': <10}| {'Official': <9}| {'Codename': <9}|"
    )
    logger.info(divider)
    for fw in firmware:
        official = "yes" if fw.get("isOfficial") else "no"
        logger.info(
            f"| {fw.get('version', ''): <17}| {fw.get('region', ''): <7}| {fw.get('buildDate') or '-': <11}"
            f"| {format_size(fw.get('size') or 0): >10}| {official: <9}| {fw.get('codename', ''): <9}|"
        )
    logger.info(divider)


def print_firmware_details(fw: dict):
    logger.info(f"Firmware:      {fw['id']}")
    logger.info(f"Version:       {fw['version']}")
    logger.info(f"Codename:      {fw['codename']}")
    logger.info(f"Region:        {fw['region']}")
    logger.info(f"Build date:    {fw.get('buildDate') or '-'}")
    logger.info(f"Size:          {format_size(fw.get('size') or 0)}")
    logger.info(f"Official:      {'yes' if fw.get('isOfficial') else 'no'}")
    logger.info(f"Compatible:    {', '.join(fw.get('compatibility', []))}")
    logger.info(f"MD5:           {fw.get('md5') or '-'}")
    logger.info(f"SHA256:        {fw.get('sha256') or '-'}")
    logger.info(f"URL:           {fw.get('downloadUrl') or '-'}")
    if fw.get("changelog"):
        logger.info(f"Changelog:     {fw['changelog']}")


def print_supported_table(devices: list):
    divider = f"+{'':-<17}+{'':-<22}+{'':-<5}+{'':-<7}+{'':-<6}+"
    logger.info(divider)
    logger.info(f"| {'Codename': <16}| {'Device': <21}| {'ROM': <4}| {'Radio': <6}| {'Root': <5}|")
    logger.info(divider)
    for device in devices:
        marks = ["x" if device[key] else "-" for key in ("rom_flash", "radio_flash", "root")]
        logger.info(
            f"| {device['codename']: <16}| {device['market_name']: <21}| {marks[0]: <4}| {marks[1]: <6}| {marks[2]: <5}|"
        )
    logger.info(divider)


def print_device_info(device: dict):
    logger.info(f"Device:        {device.get('marketName') or 'Unknown'} ({device.get('codename') or '-'})")
    logger.info(f"Serial:        {device['id']}")
    logger.info(f"Mode:          {device['connectionMode']}")
    logger.info(f"Bootloader:    {'locked' if device['bootloaderLocked'] else 'unlocked'}")
    logger.info(f"Secure boot:   {'yes' if device['secureBoot'] else 'no'}")
    logger.info(f"Radio version: {device.get('radioVersion') or 'unknown'}")


class FlashProgressBar:
    """
    Renders flash progress events on the console with a tqdm bar. The
    current stage is shown as the bar description.
    """

    def __init__(self):
        self.pbar = None
        self.stage = None
        self.warnings = set()

    def update(self, event: dict):
        if self.pbar is None:
            self.pbar = tqdm.tqdm(total=100, bar_format=bar_format)
        if event["stage"] != self.stage:
            self.stage = event["stage"]
            self.pbar.set_description(self.stage)
        if event.get("warning") and event["warning"] not in self.warnings:
            self.warnings.add(event["warning"])
            logger.warning(f"Warning: {event['warning']}")
        self.pbar.n = event["progress"]
        self.pbar.refresh()

    def close(self):
        if self.pbar:
            self.pbar.close()
            self.pbar = None
