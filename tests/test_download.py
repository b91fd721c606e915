import os
import threading

import pytest
import requests

from conftest import IMAGE_BODY, FakeResponse, FakeSession, make_record
from radioflasher.download import FirmwareDownloader, ProgressThrottle, validate_url
from radioflasher.errors import ChecksumMismatchError, FirmwareOperationError, InvalidParameterError


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_throttle_limits_rate_and_requires_progress():
    clock = FakeClock()
    throttle = ProgressThrottle(min_interval=0.5, clock=clock)
    assert throttle.should_emit(1.2)
    clock.now = 0.1
    assert not throttle.should_emit(5)
    clock.now = 0.6
    assert not throttle.should_emit(1.9)
    assert throttle.should_emit(6)


def test_throttle_lets_final_percent_through_once():
    throttle = ProgressThrottle(min_interval=60, clock=FakeClock())
    assert throttle.should_emit(10)
    assert throttle.should_emit(100)
    assert not throttle.should_emit(100)


def test_validate_url_requires_http():
    assert validate_url("https://fw.example.org/radio.img")
    for url in ("ftp://fw.example.org/radio.img", "file:///etc/passwd", "", None):
        with pytest.raises(InvalidParameterError):
            validate_url(url)


def test_download_verifies_and_renames(tmp_path):
    record = make_record("11.1.2.2")
    session = FakeSession({record.download_url: FakeResponse(IMAGE_BODY)})
    downloader = FirmwareDownloader(str(tmp_path), session=session)
    reported = []

    path = downloader.download(record, reported.append)

    assert path == str(tmp_path / "radio-11.1.2.2.img")
    with open(path, "rb") as f:
        assert f.read() == IMAGE_BODY
    assert os.listdir(tmp_path) == ["radio-11.1.2.2.img"]
    assert reported[-1] == 100.0
    assert reported == sorted(reported)
    assert all(p < 100 for p in reported[:-1])


def test_checksum_mismatch_removes_partial_file(tmp_path):
    record = make_record("11.1.2.2")
    session = FakeSession({record.download_url: FakeResponse(b"corrupted" * 100)})
    downloader = FirmwareDownloader(str(tmp_path), session=session)

    with pytest.raises(ChecksumMismatchError) as ei:
        downloader.download(record)

    assert ei.value.code == "ChecksumMismatch"
    assert ei.value.details["expected_sha256"] == record.sha256
    assert os.listdir(tmp_path) == []


def test_staged_file_is_reused(tmp_path):
    record = make_record("11.1.2.2")
    (tmp_path / "radio-11.1.2.2.img").write_bytes(IMAGE_BODY)
    session = FakeSession()
    downloader = FirmwareDownloader(str(tmp_path), session=session)
    reported = []

    downloader.download(record, reported.append)

    assert session.gets == []
    assert reported == [100.0]


def test_record_without_checksum_is_refused(tmp_path):
    record = make_record("11.1.2.2", md5=None, sha256=None)
    session = FakeSession({record.download_url: FakeResponse(IMAGE_BODY)})
    with pytest.raises(FirmwareOperationError):
        FirmwareDownloader(str(tmp_path), session=session).download(record)
    assert session.gets == []


def test_cancelled_download_cleans_up(tmp_path):
    record = make_record("11.1.2.2")
    session = FakeSession({record.download_url: FakeResponse(IMAGE_BODY)})
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(FirmwareOperationError, match="cancelled"):
        FirmwareDownloader(str(tmp_path), session=session).download(record, cancel_event=cancel)
    assert os.listdir(tmp_path) == []


def test_http_errors_become_operation_errors(tmp_path):
    record = make_record("11.1.2.2")
    downloader = FirmwareDownloader(str(tmp_path), session=FakeSession())
    with pytest.raises(FirmwareOperationError, match="404"):
        downloader.download(record)

    broken = FakeSession({record.download_url: requests.ConnectionError("connection reset")})
    with pytest.raises(FirmwareOperationError, match="connection reset"):
        FirmwareDownloader(str(tmp_path), session=broken).download(record)


def test_probe_uses_head_only(tmp_path):
    session = FakeSession(
        {
            "https://fw.example.org/ok.img": FakeResponse(status=200),
            "https://fw.example.org/down.img": requests.Timeout("timed out"),
        }
    )
    downloader = FirmwareDownloader(str(tmp_path), session=session)
    assert downloader.probe("https://fw.example.org/ok.img")
    assert not downloader.probe("https://fw.example.org/missing.img")
    assert not downloader.probe("https://fw.example.org/down.img")
    assert session.gets == []
    assert len(session.heads) == 3
