import io
import os

import pytest
from botocore.exceptions import ClientError

from worker.app import storage as storage_module
from worker.app.errors import InvalidStateError, StorageError
from worker.app.storage import LocalDevice, S3Device, checksum, checksum_bytes, staging_area


def test_local_device_move_read_write(tmp_path):
    device = LocalDevice(str(tmp_path / "archives"))
    source = tmp_path / "b1.tar.gz"
    source.write_bytes(b"archive")

    destination = device.get_path("b1.tar.gz")
    assert destination == os.path.join(str(tmp_path / "archives"), "b1.tar.gz")
    assert device.move(str(source), destination)
    assert not source.exists()
    assert device.read(destination) == b"archive"

    copy = str(tmp_path / "copy" / "b1.tar.gz")
    assert device.write(copy, b"again")
    assert device.read(copy) == b"again"


def test_local_device_move_missing_source_returns_false(tmp_path):
    device = LocalDevice(str(tmp_path))
    assert device.move(str(tmp_path / "missing"), device.get_path("x")) is False


def test_local_device_read_missing_raises(tmp_path):
    with pytest.raises(StorageError):
        LocalDevice(str(tmp_path)).read(str(tmp_path / "missing"))


class FakeS3:
    def __init__(self, fail=False):
        self.objects = {}
        self.fail = fail

    def _error(self, op):
        return ClientError({"Error": {"Code": "500", "Message": "boom"}}, op)

    def upload_file(self, filename, bucket, key):
        if self.fail:
            raise self._error("PutObject")
        with open(filename, "rb") as handle:
            self.objects[(bucket, key)] = handle.read()

    def put_object(self, Bucket, Key, Body):
        if self.fail:
            raise self._error("PutObject")
        self.objects[(Bucket, Key)] = Body

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}


def test_s3_device_uploads_and_removes_local_file(tmp_path):
    client = FakeS3()
    device = S3Device("archives", prefix="backups/app-p1/", client=client)
    source = tmp_path / "b1.tar.gz"
    source.write_bytes(b"archive")

    key = device.get_path("b1.tar.gz")
    assert key == "backups/app-p1/b1.tar.gz"
    assert device.move(str(source), key)
    assert not source.exists()
    assert device.read(key) == b"archive"
    assert device.write("backups/app-p1/other", b"x")


def test_s3_device_failures(tmp_path):
    device = S3Device("archives", client=FakeS3(fail=True))
    source = tmp_path / "b1.tar.gz"
    source.write_bytes(b"archive")
    assert device.move(str(source), "b1.tar.gz") is False
    assert source.exists()
    assert device.write("b1.tar.gz", b"x") is False
    with pytest.raises(StorageError):
        device.read("b1.tar.gz")


def test_backups_device_is_scoped_per_project(monkeypatch, tmp_path):
    monkeypatch.setattr(storage_module.settings, "storage_backend", "local")
    monkeypatch.setattr(storage_module.settings, "backups_dir", str(tmp_path))
    device = storage_module.get_backups_device("p1")
    assert device.get_path("b1.tar.gz") == os.path.join(str(tmp_path), "app-p1", "b1.tar.gz")

    monkeypatch.setattr(storage_module.settings, "storage_backend", "s3")
    monkeypatch.setattr(storage_module.settings, "s3_bucket", "bucket")
    monkeypatch.setattr(storage_module.boto3, "client", lambda *args, **kwargs: FakeS3())
    s3 = storage_module.get_backups_device("p1")
    assert isinstance(s3, S3Device)
    assert s3.get_path("b1.tar.gz") == "backups/app-p1/b1.tar.gz"


def test_staging_area_is_removed_on_success_and_error(tmp_path):
    device = LocalDevice(str(tmp_path / "staging"))
    with staging_area(device, "b1") as directory:
        assert directory == device.get_path("b1")
        (tmp_path / "staging" / "b1" / "b1.sql").write_text("x")
    assert not os.path.exists(directory)

    with pytest.raises(RuntimeError):
        with staging_area(device, "b2") as directory:
            raise RuntimeError("tool crashed")
    assert not os.path.exists(directory)


def test_staging_areas_are_isolated_per_job(tmp_path):
    device = LocalDevice(str(tmp_path / "staging"))
    with staging_area(device, "b1") as first, staging_area(device, "b2") as second:
        assert first != second
        assert os.path.commonpath([first, second]) == device.root


@pytest.mark.parametrize("job_id", ["../etc", "a/b", "..", ""])
def test_staging_area_rejects_unsafe_ids(tmp_path, job_id):
    with pytest.raises(InvalidStateError):
        with staging_area(LocalDevice(str(tmp_path)), job_id):
            pass


def test_staging_area_creation_failure_is_storage_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises(StorageError):
        with staging_area(LocalDevice(str(blocker)), "b1"):
            pass


def test_checksum_is_sha256(tmp_path):
    path = tmp_path / "data"
    path.write_bytes(b"abc")
    assert checksum(str(path)) == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert checksum_bytes(b"abc") == checksum(str(path))
