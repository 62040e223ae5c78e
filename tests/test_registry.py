import hashlib
import os

import pytest

from climadash.firmware.registry import FirmwareRegistry, file_md5
from climadash.shared.disk_check import DiskFullError
from climadash.shared.exceptions import InvalidFormat, NotFound, TooLarge

MIB = 1024 * 1024


def stored_files(registry):
    return sorted(p.name for p in registry.directory.iterdir())


def test_empty_registry_returns_sentinel(registry):
    current = registry.current()

    assert current.available is False
    assert current.version is None
    assert current.size_bytes == 0
    assert registry.list_artifacts() == []


def test_store_records_checksum_and_size(registry):
    data = os.urandom(MIB)

    artifact = registry.store(data, filename="climate.bin", declared_version="1.2")

    assert artifact.available is True
    assert artifact.version == "1.2"
    assert artifact.size_bytes == MIB
    assert artifact.checksum == hashlib.md5(data).hexdigest()
    assert artifact.filename == "firmware-1.2.bin"
    assert artifact.uploaded_at is not None
    assert registry.current() == artifact


def test_fetch_returns_stored_bytes(registry):
    data = b"\xe9" + os.urandom(4096)
    registry.store(data, declared_version="1.0")

    assert registry.fetch_bytes() == data


def test_version_taken_from_filename_when_not_declared(registry):
    artifact = registry.store(b"abc", filename="climate-1.3.2.bin")

    assert artifact.filename == "climate-1.3.2.bin"
    assert artifact.version == "1.3.2"


def test_unsafe_names_are_sanitized(registry):
    artifact = registry.store(b"abc", filename="../../etc/passwd.bin", declared_version="1.0 beta/2")

    assert artifact.filename == "firmware-1.0_beta_2.bin"
    assert stored_files(registry) == ["firmware-1.0_beta_2.bin"]


@pytest.mark.parametrize("filename", ["firmware.exe", "firmware", "", "firmware.bin.txt"])
def test_rejects_non_firmware_files(registry, filename):
    with pytest.raises(InvalidFormat):
        registry.store(b"abc", filename=filename)

    assert registry.current().available is False


def test_extension_check_is_case_insensitive(registry):
    assert registry.store(b"abc", filename="FIRMWARE.BIN").available


def test_rejects_oversized_upload_without_leftovers(registry):
    with pytest.raises(TooLarge) as exc_info:
        registry.store(b"\0" * (6 * MIB), declared_version="9.9")

    assert exc_info.value.status == 413
    assert stored_files(registry) == []
    assert registry.current().available is False


def test_upload_exactly_at_limit_is_accepted(tmp_path):
    registry = FirmwareRegistry(tmp_path, max_size=1024, disk_threshold=100)

    assert registry.store(b"x" * 1024).size_bytes == 1024


def test_chunked_upload_aborts_as_soon_as_limit_is_passed(tmp_path):
    registry = FirmwareRegistry(tmp_path, max_size=1000, disk_threshold=100)
    upload = registry.begin_upload("fw.bin", "2.0")
    upload.write(b"a" * 600)

    with pytest.raises(TooLarge):
        upload.write(b"a" * 600)

    assert not upload.temp_path.exists()
    assert stored_files(registry) == []
    with pytest.raises(RuntimeError):
        upload.commit()


def test_version_can_be_declared_after_writing(registry):
    upload = registry.begin_upload("climate.bin")
    upload.write(b"payload")
    upload.declared_version = "1.5"

    artifact = upload.commit()

    assert artifact.filename == "firmware-1.5.bin"
    assert artifact.version == "1.5"


def test_aborted_upload_leaves_previous_firmware(registry):
    first = registry.store(b"old", declared_version="1.0")

    with pytest.raises(ValueError):
        with registry.begin_upload("fw.bin", "2.0") as upload:
            upload.write(b"partial")
            raise ValueError("client went away")

    assert registry.current() == first
    assert stored_files(registry) == ["firmware-1.0.bin"]


def test_most_recent_file_is_current(registry):
    registry.store(b"one", declared_version="1.0")
    registry.store(b"two", declared_version="1.1")
    os.utime(registry.directory / "firmware-1.0.bin", ns=(0, 2_000_000_000_000_000_000))

    current = registry.current()

    assert current.version == "1.0"
    assert [a.version for a in registry.list_artifacts()] == ["1.0", "1.1"]


def test_reupload_of_same_version_replaces_file(registry):
    registry.store(b"first build", declared_version="1.1")
    second = registry.store(b"second build", declared_version="1.1")

    assert stored_files(registry) == ["firmware-1.1.bin"]
    assert registry.current().checksum == second.checksum
    assert registry.fetch_bytes() == b"second build"


def test_files_dropped_into_directory_are_indexed(registry):
    path = registry.directory / "climate_1.4.bin"
    path.write_bytes(b"copied by hand")

    current = registry.current()

    assert current.filename == "climate_1.4.bin"
    assert current.version == "1.4"
    assert current.checksum == hashlib.md5(b"copied by hand").hexdigest()
    assert current.checksum == file_md5(path)


def test_hidden_and_foreign_files_are_ignored(registry):
    (registry.directory / ".upload-abc.part").write_bytes(b"partial")
    (registry.directory / "notes.txt").write_text("hello")

    assert registry.current().available is False


def test_open_current_without_firmware(registry):
    with pytest.raises(NotFound):
        registry.open_current()
    with pytest.raises(NotFound):
        registry.fetch_bytes()


def test_request_update(registry):
    with pytest.raises(NotFound):
        registry.request_update()

    registry.store(b"fw", declared_version="1.1")
    artifact = registry.request_update()

    assert artifact.version == "1.1"
    assert registry.update_requested_at is not None


def test_delete_removes_all_firmware(registry):
    registry.store(b"one", declared_version="1.0")
    registry.store(b"two", declared_version="1.1")
    (registry.directory / "notes.txt").write_text("keep me")

    assert registry.delete() == 2

    assert registry.current().available is False
    assert stored_files(registry) == ["notes.txt"]
    assert registry.delete() == 0


def test_upload_refused_when_disk_full(registry, monkeypatch):
    def full(path, threshold):
        raise DiskFullError("Disk usage critical")

    monkeypatch.setattr("climadash.firmware.registry.require_disk_space", full)

    with pytest.raises(DiskFullError) as exc_info:
        registry.store(b"fw", declared_version="1.0")

    assert exc_info.value.status == 507
    assert stored_files(registry) == []


def test_directory_is_created(tmp_path):
    FirmwareRegistry(tmp_path / "a" / "b")

    assert (tmp_path / "a" / "b").is_dir()
