"""Firmware version parsing and comparison.

Versions are free text from filenames, upload forms and the device itself.
They are parsed best-effort into a (major, minor) pair by trying
``VERSION_PATTERNS`` in order; the first match wins. Keyed prefixes come
first so a name like ``build-2024.06_firmware-1.3.bin`` yields 1.3 rather
than the build date. Anything unparseable is treated as 0.0.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Union

from climadash.shared.models import FirmwareArtifact

VERSION_PATTERNS: List[Pattern] = [
    re.compile(r"version[_-]?(\d+)\.(\d+)((?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"firmware[_-]?(\d+)\.(\d+)((?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"climate[_-]?(\d+)\.(\d+)((?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"esp32[_-]?(\d+)\.(\d+)((?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"v(\d+)\.(\d+)((?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"(\d+)\.(\d+)((?:\.\d+)?)"),
]


@dataclass(frozen=True, order=True)
class Version:
    major: int = 0
    minor: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


ZERO = Version(0, 0)

VersionLike = Union[str, Version, None]


def _match(text: Optional[str]):
    if not text:
        return None
    for pattern in VERSION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match
    return None


def try_parse(text: Optional[str]) -> Optional[Version]:
    """Parse a version string, returning None when nothing matches."""
    match = _match(text)
    if match is None:
        return None
    return Version(int(match.group(1)), int(match.group(2)))


def parse(text: Optional[str]) -> Version:
    """Parse a version string, falling back to 0.0."""
    return try_parse(text) or ZERO


def extract_version(filename: Optional[str]) -> Optional[str]:
    """Extract the version text from a firmware filename.

    Unlike ``parse`` this keeps a patch component, so ``climate-1.2.3.bin``
    gives ``"1.2.3"``.
    """
    match = _match(filename)
    if match is None:
        return None
    return f"{match.group(1)}.{match.group(2)}{match.group(3)}"


def _as_version(value: VersionLike) -> Version:
    if isinstance(value, Version):
        return value
    return parse(value)


def compare(a: VersionLike, b: VersionLike) -> int:
    """Compare two versions on (major, minor).

    Returns:
        -1 if a < b, 0 if equal, 1 if a > b.
    """
    va, vb = _as_version(a), _as_version(b)
    return (va > vb) - (va < vb)


@dataclass(frozen=True)
class UpdateAdvice:
    """Whether the device should pull new firmware, and why."""
    needed: bool
    reason: str
    recommended_file: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "needsUpdate": self.needed,
            "reason": self.reason,
            "recommendedFile": self.recommended_file,
        }


def needs_update(device_version: Optional[str], artifact: Optional[FirmwareArtifact]) -> UpdateAdvice:
    """Decide whether the device is behind the stored firmware.

    Never advises an update on insufficient information: an unknown device
    version, a missing artifact or an unparseable artifact version all
    answer False.
    """
    if artifact is None or not artifact.available:
        return UpdateAdvice(False, "No firmware available")

    current = try_parse(device_version)
    if current is None:
        return UpdateAdvice(False, f"Device version unknown ({device_version!r})")

    offered = try_parse(artifact.version)
    if offered is None:
        return UpdateAdvice(False, f"Firmware version unknown ({artifact.version!r})")

    if compare(offered, current) > 0:
        return UpdateAdvice(
            True,
            f"Version {offered} available (current: {current})",
            recommended_file=artifact.filename,
        )
    return UpdateAdvice(False, "Firmware up to date")
