import asyncio

import pytest

from conftest import make_record
from radioflasher.catalog import FirmwareCatalog
from radioflasher.compatibility import CompatibilityEvaluator
from radioflasher.errors import IncompatibleFirmwareError, InvalidParameterError


@pytest.fixture
def evaluator(config, downloader):
    records = [
        make_record("10.5"),
        make_record("11.0"),
        make_record("11.1"),
        make_record("12.0"),
        make_record("12.5", compatibility=frozenset(["guacamoleb"])),
        make_record("11.5", codename="guacamoleb", compatibility=frozenset(["guacamole", "guacamoleb"])),
    ]
    return CompatibilityEvaluator(FirmwareCatalog(config, downloader, records=records))


def test_only_newer_compatible_records_are_returned(evaluator):
    records = asyncio.run(evaluator.get_compatible_firmware("guacamole", "11.0"))
    assert [r.version for r in records] == ["12.0", "11.5", "11.1"]


def test_unknown_current_version_returns_all_compatible(evaluator):
    records = asyncio.run(evaluator.get_compatible_firmware("guacamole"))
    assert [r.version for r in records] == ["12.0", "11.5", "11.1", "11.0", "10.5"]


def test_record_not_naming_codename_is_excluded(evaluator):
    records = asyncio.run(evaluator.get_compatible_firmware("guacamoleb"))
    assert [r.version for r in records] == ["12.5", "11.5"]


def test_unknown_codename_yields_nothing(evaluator):
    assert asyncio.run(evaluator.get_compatible_firmware("sargo", "1.0")) == []
    with pytest.raises(InvalidParameterError):
        asyncio.run(evaluator.get_compatible_firmware(""))


def test_evaluate_rejects_downgrade_and_foreign_codename(evaluator):
    record = make_record("11.1")
    evaluator.evaluate(record, "guacamole", "11.0")
    evaluator.evaluate(record, "guacamole")

    with pytest.raises(IncompatibleFirmwareError) as ei:
        evaluator.evaluate(record, "guacamole", "11.1")
    assert ei.value.code == "IncompatibleFirmware"
    assert "not newer" in ei.value.message

    with pytest.raises(IncompatibleFirmwareError) as ei:
        evaluator.evaluate(record, "hotdog")
    assert ei.value.details["codename"] == "hotdog"


def test_strictly_newer_versions_newest_first(config, downloader):
    records = [make_record(v) for v in ("10.5", "11.0", "11.1", "12.0")]
    evaluator = CompatibilityEvaluator(FirmwareCatalog(config, downloader, records=records))
    result = asyncio.run(evaluator.get_compatible_firmware("guacamole", "11.0"))
    assert [r.version for r in result] == ["12.0", "11.1"]
