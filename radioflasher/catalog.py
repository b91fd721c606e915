"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson
Permission is hereby granted under MIT license.

This module handles the radio firmware catalog.
It is responsible for:
- Loading firmware records from the bundled JSON catalog, the user override
  file and an optional remote catalog, and merging them by record id.
- Answering search, latest, popular and update queries for a codename.
- Caching every query result for a bounded time.

Key data structures:
- `FirmwareRecord`: one immutable catalog entry.
- The backing store: a dictionary of records keyed by codename.
"""

import os
import json
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Iterable

import requests

from radioflasher.cache import TTLCache
from radioflasher.config import ConfigManager
from radioflasher.download import FirmwareDownloader
from radioflasher.errors import InvalidParameterError
from radioflasher.utils import version_key

logger = logging.getLogger("Catalog")

STORE_KEY = ("store",)
SORT_FIELDS = ("version", "date", "size")


def _read_data_file(filename: str) -> dict:
    """
    Reads a JSON catalog file from the 'data' subdirectory.
    """
    path = Path(os.path.dirname(__file__))
    filepath = path / "data" / filename
    try:
        with filepath.open("rt") as file:
            return json.load(file)
    except FileNotFoundError:
        logger.error(f"Catalog file not found: {filepath}")
        return {}
    except json.JSONDecodeError:
        logger.error(f"Error decoding JSON from file: {filepath}")
        return {}


def _copy_catalog(raw: dict) -> dict:
    return {codename: list(items) for codename, items in raw.items() if isinstance(items, list)}


def _parse_date(value) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"Invalid build date: {value!r}")
        return None


@dataclass(frozen=True)
class FirmwareRecord:
    id: str
    version: str
    codename: str
    region: str = "Global"
    build_date: date | None = None
    size: int = 0
    md5: str | None = None
    sha256: str | None = None
    download_url: str | None = None
    is_official: bool = True
    compatibility: frozenset = field(default_factory=frozenset)
    changelog: str = ""

    @classmethod
    def from_dict(cls, data: dict, codename: str | None = None) -> "FirmwareRecord":
        codename = data.get("codename") or codename
        if not data.get("id") or not data.get("version") or not codename:
            raise ValueError(f"Firmware record needs id, version and codename: {data!r}")
        # A record without an explicit matrix is only known to suit its own codename
        compatibility = frozenset(data.get("compatibility") or [codename])
        return cls(
            id=str(data["id"]),
            version=str(data["version"]),
            codename=codename,
            region=data.get("region") or "Global",
            build_date=_parse_date(data.get("buildDate")),
            size=int(data.get("size") or 0),
            md5=data.get("md5"),
            sha256=data.get("sha256"),
            download_url=data.get("downloadUrl"),
            is_official=bool(data.get("isOfficial", True)),
            compatibility=compatibility,
            changelog=data.get("changelog") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "version": self.version,
            "codename": self.codename,
            "region": self.region,
            "buildDate": self.build_date.isoformat() if self.build_date else None,
            "size": self.size,
            "md5": self.md5,
            "sha256": self.sha256,
            "downloadUrl": self.download_url,
            "isOfficial": self.is_official,
            "compatibility": sorted(self.compatibility),
            "changelog": self.changelog,
        }


@dataclass
class SearchResult:
    records: list
    total_count: int

    def to_dict(self) -> dict:
        return {
            "firmware": [record.to_dict() for record in self.records],
            "totalCount": self.total_count,
        }


@dataclass
class UpdateInfo:
    has_update: bool
    latest: FirmwareRecord | None
    current_version: str

    def to_dict(self) -> dict:
        return {
            "hasUpdate": self.has_update,
            "latestFirmware": self.latest.to_dict() if self.latest else None,
            "currentVersion": self.current_version,
        }


def sort_newest_first(records: Iterable[FirmwareRecord]) -> list:
    """Version descending, then build date descending."""
    return sorted(
        records,
        key=lambda r: (version_key(r.version), r.build_date or date.min),
        reverse=True,
    )


def _required_codename(codename):
    if not codename or not str(codename).strip():
        raise InvalidParameterError("Device codename is required")
    return str(codename).strip()


class FirmwareCatalog:
    """
    Answers metadata queries over the known firmware records.
    The catalog holds no session state. Every query result is cached under
    its full parameter tuple and the merged backing store itself is cached
    with the same TTL, so a remote catalog is refetched once it expires.
    """

    def __init__(
        self,
        config: ConfigManager,
        downloader: FirmwareDownloader | None = None,
        cache: TTLCache | None = None,
        records: Iterable[FirmwareRecord] | None = None,
        data_file: str = "radio_firmware.json",
    ):
        self.config = config
        self.downloader = downloader or FirmwareDownloader(config.download_dir)
        self.cache = cache or TTLCache(config.cache_ttl)
        self.data_file = data_file
        self._fixed_records = list(records) if records is not None else None

    # Backing store

    def _merge_catalogs(self, catalog: dict, override: dict) -> dict:
        """
        Merges two raw catalogs keyed by codename. Records in `override`
        replace records with the same id, new ones are appended.
        Modifies and returns `catalog`.
        """
        for codename, override_items in override.items():
            if not isinstance(override_items, list):
                logger.warning(f"Ignoring malformed catalog entry for '{codename}'")
                continue
            if codename in catalog:
                existing = {item.get("id"): index for index, item in enumerate(catalog[codename])}
                for item in override_items:
                    if item.get("id") in existing:
                        catalog[codename][existing[item["id"]]] = item
                    else:
                        catalog[codename].append(item)
            else:
                catalog[codename] = list(override_items)
        return catalog

    async def _fetch_remote(self, url: str) -> dict:
        try:
            data = await asyncio.to_thread(self.downloader.fetch_json, url)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Remote catalog unavailable, using local data: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Remote catalog at {url} is not a codename map, ignoring it")
            return {}
        return data

    async def _build_store(self) -> dict[str, list[FirmwareRecord]]:
        if self._fixed_records is not None:
            raw_records = [(record.codename, record) for record in self._fixed_records]
        else:
            raw = _copy_catalog(_read_data_file(self.data_file))
            local = self.config.get_local_catalog()
            if local:
                raw = self._merge_catalogs(raw, local)
            remote_url = self.config.get_value("catalog-url")
            if remote_url:
                remote = await self._fetch_remote(remote_url)
                raw = self._merge_catalogs(raw, remote)
            raw_records = []
            for codename, items in raw.items():
                for item in items:
                    try:
                        raw_records.append((codename, FirmwareRecord.from_dict(item, codename)))
                    except (TypeError, ValueError) as e:
                        logger.warning(f"Skipping invalid firmware record: {e}")

        store = {}
        for codename, record in raw_records:
            store.setdefault(codename, []).append(record)
        logger.debug(
            f"Catalog loaded: {sum(len(v) for v in store.values())} records for {len(store)} codenames"
        )
        return store

    async def _store(self) -> dict[str, list[FirmwareRecord]]:
        return await self.cache.get_or_load(STORE_KEY, self._build_store)

    async def _records_for(self, codename: str) -> list[FirmwareRecord]:
        store = await self._store()
        return list(store.get(codename, []))

    # Queries

    async def search(
        self,
        codename: str,
        region: str | None = None,
        version: str | None = None,
        official_only: bool = False,
    ) -> SearchResult:
        """
        Conjunctive filter over the records of one codename. `version`
        matches as a substring of the record version.
        """
        codename = _required_codename(codename)
        key = ("search", codename, region or None, version or None, bool(official_only))

        async def load():
            records = [
                r
                for r in await self._records_for(codename)
                if (not region or r.region == region)
                and (not version or version in r.version)
                and (not official_only or r.is_official)
            ]
            return SearchResult(records, len(records))

        return await self.cache.get_or_load(key, load)

    async def search_advanced(
        self,
        codename: str,
        query: str | None = None,
        region: str | None = None,
        version: str | None = None,
        official_only: bool = False,
        sort_by: str | None = None,
        limit: int | None = None,
    ) -> SearchResult:
        """
        Search with a free text `query` over version, changelog and region,
        optional sorting (version, date or size, descending) and a limit.
        """
        if sort_by and sort_by not in SORT_FIELDS:
            raise InvalidParameterError(f"Invalid sort field: '{sort_by}'")
        result = await self.search(codename, region, version, official_only)
        records = list(result.records)

        if query:
            needle = query.lower()
            records = [
                r
                for r in records
                if needle in r.version.lower()
                or needle in r.changelog.lower()
                or needle in r.region.lower()
            ]

        if sort_by == "version":
            records.sort(key=lambda r: version_key(r.version), reverse=True)
        elif sort_by == "date":
            records.sort(key=lambda r: r.build_date or date.min, reverse=True)
        elif sort_by == "size":
            records.sort(key=lambda r: r.size, reverse=True)

        if limit is not None and limit > 0:
            records = records[:limit]
        return SearchResult(records, len(records))

    async def latest(self, codename: str, official_only: bool = False) -> FirmwareRecord | None:
        result = await self.search(codename, official_only=official_only)
        if not result.records:
            return None
        return max(result.records, key=lambda r: version_key(r.version))

    async def popular(self, codename: str, limit: int = 5) -> list[FirmwareRecord]:
        """Most recent builds first, ties broken by version. limit <= 0 gives nothing."""
        codename = _required_codename(codename)
        try:
            limit = int(limit)
        except (TypeError, ValueError) as e:
            raise InvalidParameterError(f"Invalid limit: {limit!r}") from e
        if limit <= 0:
            return []

        async def load():
            records = await self._records_for(codename)
            ranked = sorted(
                records,
                key=lambda r: (r.build_date or date.min, version_key(r.version)),
                reverse=True,
            )
            return ranked[:limit]

        return await self.cache.get_or_load(("popular", codename, limit), load)

    async def check_for_updates(self, current_version: str, codename: str) -> UpdateInfo:
        if not current_version or not str(current_version).strip():
            raise InvalidParameterError("Current version is required for update check")
        latest = await self.latest(codename)
        has_update = latest is not None and version_key(latest.version) > version_key(current_version)
        return UpdateInfo(has_update, latest, current_version)

    async def get_firmware_details(self, firmware_id: str) -> FirmwareRecord | None:
        if not firmware_id:
            raise InvalidParameterError("Firmware ID is required")
        store = await self._store()
        for records in store.values():
            for record in records:
                if record.id == firmware_id:
                    return record
        return None

    async def compatible_with(self, codename: str) -> list[FirmwareRecord]:
        """Records of any codename whose compatibility set names `codename`."""
        codename = _required_codename(codename)

        async def load():
            store = await self._store()
            seen = {}
            for records in store.values():
                for record in records:
                    if codename in record.compatibility:
                        seen.setdefault(record.id, record)
            return list(seen.values())

        return await self.cache.get_or_load(("compatible", codename), load)

    async def validate_firmware_url(self, url: str) -> bool:
        if not url:
            return False
        if not url.lower().startswith(("http://", "https://")):
            return False
        return await asyncio.to_thread(self.downloader.probe, url)

    async def codenames(self) -> list[str]:
        return sorted((await self._store()).keys())

    # Cache lifecycle

    async def initialize_cache(self) -> int:
        """Loads the backing store if it is not cached yet. Safe to call repeatedly."""
        store = await self._store()
        return sum(len(records) for records in store.values())

    async def clear_cache(self):
        self.cache.clear()
        logger.debug("Catalog cache cleared")
