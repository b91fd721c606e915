"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Utility Functions Module
"""

import re
import hashlib

from radioflasher.errors import InvalidParameterError

VERSION_SEGMENT = re.compile(r"\d+|[A-Za-z]+")
SAFE_NAME = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.\-]*")
SHELL_METACHARACTERS = set(";&|$`<>'\"*?\n\r")


def version_key(version: str | None) -> tuple:
    """
    Builds a sort key for a version string.

    The version is split into numeric and alphabetic segments, separators
    are dropped. Numeric segments compare as numbers and sort before
    alphabetic ones, alphabetic segments compare lexically.

    Args:
        version (str): Version token, e.g. "13.1.0.501" or "MPSS.HI.4.3.c2".

    Returns:
        tuple: Key usable with sorted()/max().
    """
    if not version:
        return ()
    key = []
    for segment in VERSION_SEGMENT.findall(version):
        if segment.isdigit():
            key.append((0, int(segment), ""))
        else:
            key.append((1, 0, segment))
    return tuple(key)


def compare_versions(a: str | None, b: str | None) -> int:
    """Returns -1, 0 or 1 as `a` orders before, equal to or after `b`."""
    key_a, key_b = version_key(a), version_key(b)
    return (key_a > key_b) - (key_a < key_b)


def is_newer_version(candidate: str | None, current: str | None) -> bool:
    return compare_versions(candidate, current) > 0


def validate_name(value: str | None, label: str) -> str:
    """
    Validates a partition or filesystem style identifier.

    Raises:
        InvalidParameterError: If the value is missing, starts with "-" or
            has characters outside [A-Za-z0-9_.-].
    """
    if not value or not str(value).strip():
        raise InvalidParameterError(f"{label} is required")
    value = str(value).strip()
    if not SAFE_NAME.fullmatch(value):
        raise InvalidParameterError(f"Invalid {label}: '{value}'")
    return value


def validate_argument(value: str | None, label: str) -> str:
    """
    Validates a free form argument such as a path or serial.

    Raises:
        InvalidParameterError: If the value is missing or contains shell
            metacharacters.
    """
    if value is None or not str(value).strip():
        raise InvalidParameterError(f"{label} is required")
    value = str(value)
    bad = sorted(SHELL_METACHARACTERS.intersection(value))
    if bad:
        raise InvalidParameterError(
            f"Invalid {label}: contains forbidden characters {''.join(bad)!r}"
        )
    return value


def file_digests(path: str, chunk_size: int = 1024 * 1024) -> tuple[str, str]:
    """Returns (md5, sha256) hex digests of a file."""
    md5 = hashlib.md5()
    sha256 = hashlib.sha256()
    with open(path, "rb") as file:
        for chunk in iter(lambda: file.read(chunk_size), b""):
            md5.update(chunk)
            sha256.update(chunk)
    return md5.hexdigest(), sha256.hexdigest()


def checksums_match(
    md5: str, sha256: str, expected_md5: str | None, expected_sha256: str | None
) -> bool:
    """
    Compares computed digests with declared ones. Every declared digest must
    match, and at least one must be declared.
    """
    if not expected_md5 and not expected_sha256:
        return False
    if expected_md5 and md5.lower() != expected_md5.strip().lower():
        return False
    if expected_sha256 and sha256.lower() != expected_sha256.strip().lower():
        return False
    return True


def format_size(size_in_bytes):
    """
    Formats a file size in bytes into a human-readable string.

    Args:
        size_in_bytes (int): File size in bytes.

    Returns:
        str: Human-readable file size.
    """
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_in_bytes < 1024:
            return f"{size_in_bytes:.2f} {unit}"
        size_in_bytes /= 1024
    return f"{size_in_bytes:.2f} PB"


def time_formatter(seconds):
    """
    Formats a duration in seconds into a human-readable format.

    Args:
        seconds (float): Time in seconds.

    Returns:
        str: Formatted time string (e.g., "1m 20s").
    """
    m, s = divmod(int(seconds), 60)
    h, m = divmod(m, 60)
    return f"{h}h {m}m {s}s" if h else f"{m}m {s}s" if m else f"{s}s"
