import inspect
import os

import pytest

from versionstore.errors import (
    BackendError,
    ColumnFamilyNotFound,
    ErrorLocation,
    StorageError,
)
from versionstore.storage import VersionedStorage


def test_location_display_format():
    assert str(ErrorLocation("src/storage.rs", 3, 7)) == "src/storage.rs:3:7"


def test_here_points_at_caller():
    location, line = ErrorLocation.here(), inspect.currentframe().f_lineno
    assert location.line == line
    assert os.path.basename(location.file) == os.path.basename(__file__)
    assert location.column >= 0


def test_column_family_not_found_records_name_and_location():
    err, line = ColumnFamilyNotFound("42"), inspect.currentframe().f_lineno
    assert err.name == "42"
    assert err.location.line == line
    assert os.path.basename(err.location.file) == os.path.basename(__file__)
    assert str(err).endswith(": 42")
    assert isinstance(err, StorageError)


def test_backend_error_wraps_source():
    source = OSError("boom")
    err = BackendError(source)
    assert err.source is source
    assert err.__cause__ is source
    assert "boom" in str(err)
    assert isinstance(err, StorageError)


def test_explicit_location_is_kept():
    location = ErrorLocation("custom.py", 10, 2)
    err = ColumnFamilyNotFound("metadata", location=location)
    assert err.location == location
    assert str(err) == "column family not found @ custom.py:10:2: metadata"


def test_error_raised_by_storage_points_into_storage(tmp_path):
    store = VersionedStorage(tmp_path / "db")
    with pytest.raises(ColumnFamilyNotFound) as info:
        store.get(7, b"key", 1)
    assert info.value.name == "7"
    assert os.path.basename(info.value.location.file) == "storage.py"
    store.close()