import base64
import struct

import pytest

from versionstore.service import ServiceError, StorageService
from versionstore.storage import VersionedStorage

SEVEN = struct.pack(">q", 7)


def _b64(data):
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def storage(tmp_path):
    store = VersionedStorage(tmp_path / "db")
    store.create_cf("42")
    store.create_cf("43")
    store.batch_write(42, [(b"key1", b"value1"), (b"key3", b"value3")], 1)
    store.batch_write(42, [(b"key2", SEVEN), (b"key1", None)], 2)
    store.batch_write(43, [(b"keyA", b"valueA"), (b"key2", None)], 3)
    yield store
    store.close()


@pytest.fixture
def service(storage):
    return StorageService(storage)


def test_get_basic(service):
    assert service.get(43, b"keyA", 3) == b"valueA"


def test_multi_get_basic(service):
    assert service.multi_get(42, [b"key2", b"key3"], 3) == [SEVEN, b"value3"]


def test_get_versions(service):
    assert service.get(42, b"key1", 3) is None
    assert service.get(42, b"key3", 2) == b"value3"
    assert service.get(42, b"key3", 4) == b"value3"


def test_create_and_drop(service, storage):
    assert service.create(7) is True
    assert storage.is_cf_exist("7")
    assert service.drop(7) is True
    assert not storage.is_cf_exist("7")


def test_flush(service):
    assert service.flush(42) is True


def test_flush_missing_graph_is_internal(service):
    with pytest.raises(ServiceError) as info:
        service.flush(99)
    assert info.value.code == "internal"


def test_get_missing_graph_is_internal(service):
    with pytest.raises(ServiceError) as info:
        service.get(99, b"key", 1)
    assert info.value.code == "internal"


def test_invalid_graph_id(service):
    with pytest.raises(ServiceError) as info:
        service.create(-1)
    assert info.value.code == "invalid_argument"


def test_invalid_key_type(service):
    with pytest.raises(ServiceError) as info:
        service.get(42, "key1", 3)
    assert info.value.code == "invalid_argument"


def test_handle_get(service):
    response = service.handle(
        {"method": "get", "graph_id": 43, "key": _b64(b"keyA"), "version": 3}
    )
    assert response == {"ok": True, "result": {"value": _b64(b"valueA")}}


def test_handle_multi_get(service):
    response = service.handle(
        {
            "method": "multi_get",
            "graph_id": 42,
            "keys": [_b64(b"key2"), _b64(b"key3"), _b64(b"key1")],
            "version": 3,
        }
    )
    assert response["ok"] is True
    assert response["result"]["values"] == [
        {"value": _b64(SEVEN)},
        {"value": _b64(b"value3")},
        {"value": None},
    ]


def test_handle_create(service, storage):
    assert service.handle({"method": "create", "graph_id": 5}) == {
        "ok": True,
        "result": True,
    }
    assert storage.is_cf_exist("5")


def test_handle_unknown_method(service):
    response = service.handle({"method": "nope"})
    assert response["ok"] is False
    assert response["error"]["code"] == "unimplemented"


def test_handle_missing_field(service):
    response = service.handle({"method": "get", "graph_id": 43})
    assert response["ok"] is False
    assert response["error"]["code"] == "invalid_argument"


def test_handle_non_mapping(service):
    response = service.handle(["get"])
    assert response["error"]["code"] == "invalid_argument"


def test_handle_bad_base64(service):
    response = service.handle(
        {"method": "get", "graph_id": 43, "key": "!!!", "version": 3}
    )
    assert response["error"]["code"] == "invalid_argument"