"""Firmware registry - stores OTA binaries and describes the latest one.

The firmware directory is the source of truth. Whatever ``.bin`` file was
modified most recently is the current firmware, so a re-upload never races
with a download of a fixed filename. Metadata for files written by this
process (declared version, upload time, checksum) is cached in memory;
files that appear on disk by other means get their version from the
filename and their checksum computed on first use.
"""

import hashlib
import logging
import os
import re
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Tuple, Union

from climadash.shared.disk_check import CRITICAL_THRESHOLD_PERCENT, require_disk_space
from climadash.shared.exceptions import InvalidFormat, NotFound, TooLarge
from climadash.shared.models import FirmwareArtifact

from .versions import extract_version

logger = logging.getLogger(__name__)

MAX_FIRMWARE_SIZE = 5 * 1024 * 1024
FIRMWARE_EXTENSION = ".bin"
READ_CHUNK_SIZE = 64 * 1024

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _sanitize(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name).strip("._")


def file_md5(path: Union[str, Path]) -> str:
    """MD5 hex digest of a file, read in chunks."""
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(READ_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclass
class _CacheEntry:
    mtime_ns: int
    size: int
    artifact: FirmwareArtifact


class FirmwareUpload:
    """An in-progress upload streamed into a temporary file.

    ``write`` enforces the size ceiling chunk by chunk, so an oversized
    upload is rejected without ever holding the whole body. Nothing is
    visible to downloads until ``commit`` renames the temp file into place.
    """

    def __init__(
        self,
        registry: "FirmwareRegistry",
        filename: str,
        declared_version: Optional[str],
        max_size: int,
    ):
        self.registry = registry
        self.filename = filename
        self.declared_version = declared_version
        self.max_size = max_size
        self.size = 0
        self.temp_path = registry.directory / f".upload-{uuid.uuid4().hex}.part"
        self._digest = hashlib.md5()
        self._file: Optional[BinaryIO] = open(self.temp_path, "wb")
        self._done = False

    def write(self, chunk: bytes) -> None:
        """Append a chunk to the upload.

        Raises:
            TooLarge: If the upload grows past the size ceiling. The partial
                file is removed before raising.
        """
        if self._done:
            raise RuntimeError("Upload already finished")
        if self.size + len(chunk) > self.max_size:
            self.abort()
            raise TooLarge(
                f"Firmware exceeds the maximum size of {self.max_size // (1024 * 1024)} MB"
            )
        self.size += len(chunk)
        self._digest.update(chunk)
        self._file.write(chunk)

    def _close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def abort(self) -> None:
        """Discard the upload and its temp file."""
        if self._done:
            return
        self._done = True
        self._close()
        try:
            self.temp_path.unlink()
        except FileNotFoundError:
            pass
        logger.info(f"Discarded upload of {self.filename!r} after {self.size} bytes")

    def commit(self) -> FirmwareArtifact:
        """Move the upload into place and return its metadata.

        The stored name is derived from ``declared_version`` at this point,
        so the version may be set after the bytes were written.
        """
        if self._done:
            raise RuntimeError("Upload already finished")
        self._done = True
        self._close()
        return self.registry._commit(
            temp_path=self.temp_path,
            target_name=self.registry._target_name(self.filename, self.declared_version),
            declared_version=self.declared_version,
            checksum=self._digest.hexdigest(),
        )

    def __enter__(self) -> "FirmwareUpload":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()


class FirmwareRegistry:
    """Stores firmware binaries in one directory; latest modified wins."""

    def __init__(
        self,
        directory: Union[str, Path],
        max_size: int = MAX_FIRMWARE_SIZE,
        extension: str = FIRMWARE_EXTENSION,
        disk_threshold: float = CRITICAL_THRESHOLD_PERCENT,
    ):
        """Initialize the registry, creating the directory if needed.

        Args:
            directory: Where firmware binaries live.
            max_size: Upload size ceiling in bytes.
            extension: Accepted firmware file extension.
            disk_threshold: Disk usage percentage above which uploads are refused.
        """
        self.directory = Path(directory)
        self.max_size = max_size
        self.extension = extension.lower()
        self.disk_threshold = disk_threshold
        self.update_requested_at: Optional[datetime] = None

        self._cache: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

        self.directory.mkdir(parents=True, exist_ok=True)

    def _target_name(self, filename: str, declared_version: Optional[str]) -> str:
        if declared_version:
            version = _sanitize(declared_version)
            if version:
                return f"firmware-{version}{self.extension}"
        stem = _sanitize(Path(filename).stem) or "firmware"
        return f"{stem}{self.extension}"

    def begin_upload(self, filename: str, declared_version: Optional[str] = None) -> FirmwareUpload:
        """Start streaming a new firmware upload.

        Args:
            filename: Client-side filename; only its extension is trusted.
            declared_version: Version entered by the uploader, if any.

        Raises:
            InvalidFormat: If the file is not a firmware binary.
            DiskFullError: If the disk is too full to accept uploads.
        """
        if not filename or Path(filename).suffix.lower() != self.extension:
            raise InvalidFormat(f"Only {self.extension} files are allowed")

        require_disk_space(self.directory, self.disk_threshold)

        declared_version = (declared_version or "").strip() or None
        logger.info(f"Receiving firmware upload {filename!r}")
        return FirmwareUpload(self, filename, declared_version, self.max_size)

    def store(
        self,
        data: bytes,
        filename: str = "firmware.bin",
        declared_version: Optional[str] = None,
    ) -> FirmwareArtifact:
        """Store a complete firmware image held in memory."""
        with self.begin_upload(filename, declared_version) as upload:
            upload.write(data)
            return upload.commit()

    def _commit(
        self,
        temp_path: Path,
        target_name: str,
        declared_version: Optional[str],
        checksum: str,
    ) -> FirmwareArtifact:
        final_path = self.directory / target_name
        with self._lock:
            os.replace(temp_path, final_path)
            stat = final_path.stat()
            artifact = FirmwareArtifact(
                version=declared_version or extract_version(target_name),
                size_bytes=stat.st_size,
                checksum=checksum,
                uploaded_at=datetime.now(timezone.utc),
                available=True,
                filename=target_name,
            )
            self._cache[target_name] = _CacheEntry(stat.st_mtime_ns, stat.st_size, artifact)

        logger.info(
            f"Stored firmware {target_name} (version={artifact.version}, "
            f"size={artifact.size_bytes}, md5={artifact.checksum})"
        )
        return artifact

    def _firmware_files(self) -> List[Tuple[Path, os.stat_result]]:
        """Firmware files on disk, newest first."""
        files = []
        for path in self.directory.iterdir():
            if path.name.startswith(".") or path.suffix.lower() != self.extension:
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            if path.is_file():
                files.append((path, stat))
        files.sort(key=lambda item: (item[1].st_mtime_ns, item[0].name), reverse=True)
        return files

    def _describe(self, path: Path, stat: os.stat_result) -> FirmwareArtifact:
        entry = self._cache.get(path.name)
        if entry and entry.mtime_ns == stat.st_mtime_ns and entry.size == stat.st_size:
            return entry.artifact

        logger.debug(f"Indexing firmware file found on disk: {path.name}")
        artifact = FirmwareArtifact(
            version=extract_version(path.name),
            size_bytes=stat.st_size,
            checksum=file_md5(path),
            uploaded_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            available=True,
            filename=path.name,
        )
        self._cache[path.name] = _CacheEntry(stat.st_mtime_ns, stat.st_size, artifact)
        return artifact

    def list_artifacts(self) -> List[FirmwareArtifact]:
        """Describe every stored firmware file, newest first."""
        with self._lock:
            artifacts = []
            for path, stat in self._firmware_files():
                try:
                    artifacts.append(self._describe(path, stat))
                except FileNotFoundError:
                    self._cache.pop(path.name, None)
            return artifacts

    def current(self) -> FirmwareArtifact:
        """The most recently modified firmware, or the unavailable sentinel."""
        artifacts = self.list_artifacts()
        return artifacts[0] if artifacts else FirmwareArtifact.unavailable()

    def open_current(self) -> Tuple[FirmwareArtifact, Path]:
        """Metadata and path of the current firmware.

        Raises:
            NotFound: If no firmware is stored.
        """
        artifact = self.current()
        if not artifact.available or artifact.filename is None:
            raise NotFound("No firmware available")
        return artifact, self.directory / artifact.filename

    def fetch_bytes(self) -> bytes:
        """Full content of the current firmware.

        Raises:
            NotFound: If no firmware is stored.
        """
        _, path = self.open_current()
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFound("No firmware available") from e

    def request_update(self) -> FirmwareArtifact:
        """Record that an update of the current firmware was requested.

        Raises:
            NotFound: If no firmware is stored.
        """
        artifact = self.current()
        if not artifact.available:
            raise NotFound("No firmware available to update to")
        self.update_requested_at = datetime.now(timezone.utc)
        logger.info(f"Forced update requested for firmware {artifact.filename} ({artifact.version})")
        return artifact

    def delete(self) -> int:
        """Remove every stored firmware file.

        Returns:
            Number of files removed.
        """
        removed = 0
        with self._lock:
            for path, _ in self._firmware_files():
                try:
                    path.unlink()
                    removed += 1
                except FileNotFoundError:
                    pass
            self._cache.clear()
            self.update_requested_at = None
        logger.info(f"Deleted {removed} firmware file(s)")
        return removed
