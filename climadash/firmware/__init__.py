"""Firmware distribution - artifact storage and version negotiation."""

from .registry import MAX_FIRMWARE_SIZE, FirmwareRegistry, FirmwareUpload
from .versions import UpdateAdvice, Version, compare, needs_update, parse

__all__ = [
    "MAX_FIRMWARE_SIZE",
    "FirmwareRegistry",
    "FirmwareUpload",
    "UpdateAdvice",
    "Version",
    "compare",
    "needs_update",
    "parse",
]
