"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Firmware Compatibility Module
"""

import logging

from radioflasher.catalog import FirmwareCatalog, FirmwareRecord, sort_newest_first
from radioflasher.errors import IncompatibleFirmwareError, InvalidParameterError
from radioflasher.utils import version_key

logger = logging.getLogger("Compatibility")


class CompatibilityEvaluator:
    """
    Decides which catalog records are safe to flash on a device.
    A record qualifies when its compatibility set names the codename and,
    if the current version is known, it is strictly newer than it.
    """

    def __init__(self, catalog: FirmwareCatalog):
        self.catalog = catalog

    @staticmethod
    def _check(record: FirmwareRecord, codename: str, current_version: str | None) -> str | None:
        if codename not in record.compatibility:
            return f"Firmware {record.version} is not compatible with {codename}"
        if current_version and version_key(record.version) <= version_key(current_version):
            return (
                f"Firmware {record.version} is not newer than the installed "
                f"version {current_version}"
            )
        return None

    async def get_compatible_firmware(
        self, codename: str, current_version: str | None = None
    ) -> list[FirmwareRecord]:
        """
        Returns the eligible records for `codename`, newest first.

        Args:
            codename (str): Device codename.
            current_version (str): Installed radio version, when known.
        """
        if not codename:
            raise InvalidParameterError("Device codename is required")
        candidates = await self.catalog.compatible_with(codename)
        eligible = [r for r in candidates if self._check(r, codename, current_version) is None]
        logger.debug(
            f"{len(eligible)} of {len(candidates)} records eligible for {codename}"
            + (f" above {current_version}" if current_version else "")
        )
        return sort_newest_first(eligible)

    def evaluate(self, record: FirmwareRecord, codename: str, current_version: str | None = None):
        """Raises IncompatibleFirmwareError when `record` must not be flashed."""
        reason = self._check(record, codename, current_version)
        if reason:
            logger.error(reason)
            raise IncompatibleFirmwareError(
                reason,
                {"firmware": record.id, "codename": codename, "currentVersion": current_version},
            )
