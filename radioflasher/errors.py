"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.

Error Taxonomy Module
"""


class RadioFlasherError(Exception):
    """
    Base class for all errors surfaced to callers.
    Each subclass carries a stable `code` so the route layer and the CLI
    can react to a condition without parsing the message.
    """

    code = "RadioFlasherError"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidParameterError(RadioFlasherError, ValueError):
    code = "InvalidParameter"


class DeviceNotFoundError(RadioFlasherError):
    code = "DeviceNotFound"


class DeviceAmbiguousError(RadioFlasherError):
    code = "DeviceAmbiguous"


class TransportError(RadioFlasherError):
    code = "TransportFailure"


class ToolNotFoundError(TransportError):
    code = "TransportFailure"


class ChecksumMismatchError(RadioFlasherError):
    code = "ChecksumMismatch"


class BackupUnavailableError(RadioFlasherError):
    code = "BackupUnavailable"


class IncompatibleFirmwareError(RadioFlasherError):
    code = "IncompatibleFirmware"


class SessionAlreadyActiveError(RadioFlasherError):
    code = "SessionAlreadyActive"


class FirmwareOperationError(RadioFlasherError):
    code = "FirmwareOperationError"
