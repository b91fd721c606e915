"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Firmware Download Module
"""

import os
import time
import hashlib
import tempfile
import logging
import threading
from typing import Callable
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from radioflasher.constants import (
    DOWNLOAD_CHUNK_SIZE,
    HTTP_BACKOFF_FACTOR,
    HTTP_RETRIES,
    HTTP_RETRY_STATUSES,
    HTTP_TIMEOUT,
    PROGRESS_MIN_INTERVAL,
    URL_PROBE_TIMEOUT,
)
from radioflasher.errors import (
    ChecksumMismatchError,
    FirmwareOperationError,
    InvalidParameterError,
)
from radioflasher.utils import checksums_match, file_digests, format_size, time_formatter

logger = logging.getLogger("Download")


class ProgressThrottle:
    """
    Rate limits progress reports: at most one per `min_interval` seconds and
    only when the whole percent value moved forward. 100% is always let
    through exactly once.
    """

    def __init__(self, min_interval: float = PROGRESS_MIN_INTERVAL, clock=time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self._last_percent = -1
        self._last_time = None
        self._final_sent = False

    def should_emit(self, percent: float) -> bool:
        whole = int(percent)
        if whole >= 100:
            if self._final_sent:
                return False
            self._final_sent = True
            self._last_percent = 100
            return True
        if whole <= self._last_percent:
            return False
        now = self._clock()
        if self._last_time is not None and now - self._last_time < self.min_interval:
            return False
        self._last_percent = whole
        self._last_time = now
        return True


def build_session(retries: int = HTTP_RETRIES, backoff_factor: float = HTTP_BACKOFF_FACTOR) -> requests.Session:
    """A requests session that retries idempotent requests with backoff."""
    retry = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=HTTP_RETRY_STATUSES,
        allowed_methods=frozenset(["GET", "HEAD"]),
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def validate_url(url: str | None) -> str:
    if not url or urlparse(url).scheme not in ("http", "https") or not urlparse(url).netloc:
        raise InvalidParameterError(f"Invalid download URL: '{url}'")
    return url


class FirmwareDownloader:
    """
    Fetches catalog documents and firmware images over HTTP.
    Images are streamed into `<name>.part` inside the download directory and
    renamed into place only after their checksums were verified.
    """

    def __init__(
        self,
        download_dir: str,
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.download_dir = download_dir
        self.session = session or build_session()
        self.timeout = timeout

    def probe(self, url: str, timeout: float = URL_PROBE_TIMEOUT) -> bool:
        """HEAD request only, the body is never fetched."""
        try:
            response = self.session.head(url, allow_redirects=True, timeout=timeout)
            return response.ok
        except requests.RequestException as e:
            logger.debug(f"URL probe failed for {url}: {e}")
            return False

    def fetch_json(self, url: str):
        logger.debug(f"Fetching {url}")
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def target_path(self, record) -> str:
        filename = os.path.basename(urlparse(record.download_url).path) or f"{record.id}.img"
        return os.path.join(self.download_dir, filename)

    def download(
        self,
        record,
        progress_callback: Callable[[float], None] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """
        Downloads the image of a firmware record and verifies it.

        Args:
            record (FirmwareRecord): Record with download_url, md5/sha256 and size.
            progress_callback (callable): Called with the percent done (0-100),
                already throttled.
            cancel_event (threading.Event): Checked for every chunk, aborts the
                download when set.

        Returns:
            str: Path of the verified image.

        Raises:
            ChecksumMismatchError: The downloaded bytes do not match the record.
            FirmwareOperationError: Network or file system failure, or cancelled.
        """
        url = validate_url(record.download_url)
        if not record.md5 and not record.sha256:
            raise FirmwareOperationError(
                f"Firmware {record.id} declares no checksum, refusing to download"
            )
        os.makedirs(self.download_dir, exist_ok=True)
        target = self.target_path(record)

        if os.path.exists(target):
            md5, sha256 = file_digests(target)
            if checksums_match(md5, sha256, record.md5, record.sha256):
                logger.info(f"Using already downloaded image {target}")
                if progress_callback:
                    progress_callback(100.0)
                return target
            logger.debug(f"Staged file {target} does not match, downloading again")

        throttle = ProgressThrottle()
        md5 = hashlib.md5()
        sha256 = hashlib.sha256()
        start_time = time.time()
        logger.info(f"Downloading firmware from {url}...")
        part_path = None
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length") or record.size or 0)
                received = 0
                # One staging file per download, concurrent sessions may fetch the same image
                with tempfile.NamedTemporaryFile(
                    dir=self.download_dir,
                    prefix=os.path.basename(target) + ".",
                    suffix=".part",
                    delete=False,
                ) as f:
                    part_path = f.name
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if cancel_event is not None and cancel_event.is_set():
                            raise FirmwareOperationError("Download cancelled")
                        if not chunk:
                            continue
                        f.write(chunk)
                        md5.update(chunk)
                        sha256.update(chunk)
                        received += len(chunk)
                        if progress_callback and total:
                            percent = min(received * 100.0 / total, 99.9)
                            if throttle.should_emit(percent):
                                progress_callback(percent)

            if not checksums_match(md5.hexdigest(), sha256.hexdigest(), record.md5, record.sha256):
                raise ChecksumMismatchError(
                    f"Checksum mismatch for {os.path.basename(target)}",
                    {
                        "expected_md5": record.md5,
                        "actual_md5": md5.hexdigest(),
                        "expected_sha256": record.sha256,
                        "actual_sha256": sha256.hexdigest(),
                    },
                )
            os.replace(part_path, target)
        except requests.RequestException as e:
            self._remove(part_path)
            raise FirmwareOperationError(f"Error downloading firmware: {e}") from e
        except OSError as e:
            self._remove(part_path)
            raise FirmwareOperationError(f"Error saving downloaded firmware: {e}") from e
        except (ChecksumMismatchError, FirmwareOperationError):
            self._remove(part_path)
            raise

        if progress_callback and throttle.should_emit(100.0):
            progress_callback(100.0)
        logger.info(
            f"Firmware downloaded to: {target} ({format_size(received)} in {time_formatter(time.time() - start_time)})"
        )
        return target

    @staticmethod
    def _remove(path):
        if path and os.path.exists(path):
            try:
                os.remove(path)
            except OSError as e:
                logger.warning(f"Could not remove temporary file {path}: {e}")
