"""Disk space checking utility for firmware uploads.

The registry checks disk status before accepting an upload so a full disk
surfaces as a clear client error instead of a truncated firmware file.
"""

import logging
import shutil
from pathlib import Path
from typing import Tuple, Union

from .exceptions import ClimadashError

logger = logging.getLogger(__name__)

CRITICAL_THRESHOLD_PERCENT = 95


class DiskFullError(ClimadashError):
    """Raised when disk is too full to safely write data."""

    status = 507


def get_disk_usage(path: Union[str, Path] = "/") -> Tuple[int, int, float]:
    """Get disk usage for the given path.

    Args:
        path: Filesystem path to check.

    Returns:
        Tuple of (used_bytes, total_bytes, percent_used)
    """
    usage = shutil.disk_usage(path)
    percent = (usage.used / usage.total) * 100
    return usage.used, usage.total, percent


def require_disk_space(
    path: Union[str, Path] = "/", threshold: float = CRITICAL_THRESHOLD_PERCENT
) -> None:
    """Raise DiskFullError if disk is above threshold.

    Use this as a guard before write operations.

    Args:
        path: Filesystem path to check.
        threshold: Percentage threshold above which writes should stop.

    Raises:
        DiskFullError: If disk usage exceeds threshold.
    """
    used, total, percent = get_disk_usage(path)
    if percent >= threshold:
        used_gb = used / (1024**3)
        total_gb = total / (1024**3)
        logger.error(f"Refusing write to {path}: disk {percent:.1f}% full")
        raise DiskFullError(
            f"Disk usage critical: {percent:.1f}% ({used_gb:.1f}/{total_gb:.1f} GB). "
            f"Uploads suspended until usage drops below {threshold}%."
        )
