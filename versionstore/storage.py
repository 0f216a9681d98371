"""A multi-version key/value store organised in column families.

Every column family lives in its own append-only file under the storage
directory and is held in memory as a sorted index. Keys written through
``batch_write`` are suffixed with a big-endian 64-bit version, so a read at
version ``v`` finds the newest value written at a version not above ``v``.
"""

from __future__ import annotations

import bisect
import logging
import os
import shutil
import struct
import threading
from collections.abc import Iterable
from pathlib import Path

from .errors import BackendError, ColumnFamilyNotFound, StorageError

logger = logging.getLogger(__name__)

DELETED_FLAG = b"__nil__"
"""Value stored for a key that was deleted at a given version."""

METADATA_CF_NAME = "metadata"
DEFAULT_CF_NAME = "default"
APPLIED_COMMIT_VERSION_KEY = b"applied_commit_version"

_VERSION = struct.Struct(">Q")
_RECORD_HEADER = struct.Struct(">II")
_CF_SUFFIX = ".cf"
_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1


def _check_version(version: int) -> int:
    if isinstance(version, bool) or not isinstance(version, int):
        raise TypeError(f"version must be an int, not {type(version).__name__}")
    if not 0 <= version <= _U64_MAX:
        raise ValueError(f"version {version} is outside the unsigned 64-bit range")
    return version


def _check_graph_id(graph_id: int) -> int:
    if isinstance(graph_id, bool) or not isinstance(graph_id, int):
        raise TypeError(f"graph_id must be an int, not {type(graph_id).__name__}")
    if not 0 <= graph_id <= _U32_MAX:
        raise ValueError(f"graph_id {graph_id} is outside the unsigned 32-bit range")
    return graph_id


def build_versioned_key(key: bytes, version: int) -> bytes:
    """Return ``key`` followed by ``version`` as 8 big-endian bytes."""
    return bytes(key) + _VERSION.pack(_check_version(version))


def extract_raw_key(versioned_key: bytes) -> bytes:
    """Strip the 8-byte version suffix; short keys are returned unchanged."""
    versioned_key = bytes(versioned_key)
    if len(versioned_key) >= _VERSION.size:
        return versioned_key[: -_VERSION.size]
    return versioned_key


def extract_version(versioned_key: bytes) -> int:
    """Return the version suffix of a versioned key, or 0 if it is too short."""
    versioned_key = bytes(versioned_key)
    if len(versioned_key) >= _VERSION.size:
        return _VERSION.unpack(versioned_key[-_VERSION.size :])[0]
    return 0


def destroy(path: str | os.PathLike) -> None:
    """Remove a storage directory and everything in it."""
    logger.warning("ss: destroy storage at %s", os.fspath(path))
    try:
        shutil.rmtree(path)
    except OSError as exc:
        raise BackendError(exc) from exc


class _ColumnFamily:
    """Sorted in-memory index of one column family, backed by a file."""

    __slots__ = ("file", "values", "keys")

    def __init__(self, file: str) -> None:
        self.file = file
        self.values: dict[bytes, bytes] = {}
        self.keys: list[bytes] = []

    def load(self) -> None:
        with open(self.file, "rb") as fh:
            data = fh.read()
        view = memoryview(data)
        offset = 0
        while offset + _RECORD_HEADER.size <= len(data):
            key_len, value_len = _RECORD_HEADER.unpack_from(data, offset)
            start = offset + _RECORD_HEADER.size
            end = start + key_len + value_len
            if end > len(data):
                # A torn trailing record from an interrupted write is dropped.
                break
            self.values[bytes(view[start : start + key_len])] = bytes(
                view[start + key_len : end]
            )
            offset = end
        self.keys = sorted(self.values)

    def put(self, key: bytes, value: bytes) -> None:
        if key not in self.values:
            bisect.insort(self.keys, key)
        self.values[key] = value

    def floor(self, key: bytes) -> tuple[bytes, bytes] | None:
        """Return the largest entry whose key is <= ``key``."""
        index = bisect.bisect_right(self.keys, key) - 1
        if index < 0:
            return None
        found = self.keys[index]
        return found, self.values[found]

    @staticmethod
    def encode(records: Iterable[tuple[bytes, bytes]]) -> bytes:
        return b"".join(
            _RECORD_HEADER.pack(len(key), len(value)) + key + value
            for key, value in records
        )


class VersionedStorage:
    """Versioned key/value storage with one column family per graph."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = os.fspath(path)
        self._lock = threading.RLock()
        self._families: dict[str, _ColumnFamily] = {}
        self._closed = False
        try:
            os.makedirs(self.path, exist_ok=True)
            for entry in sorted(Path(self.path).iterdir()):
                if entry.is_file() and entry.name.endswith(_CF_SUFFIX):
                    name = self._decode_name(entry.name[: -len(_CF_SUFFIX)])
                    if name is None:
                        continue
                    family = _ColumnFamily(str(entry))
                    family.load()
                    self._families[name] = family
        except OSError as exc:
            raise BackendError(exc) from exc
        if DEFAULT_CF_NAME not in self._families:
            self._create(DEFAULT_CF_NAME)
        logger.info(
            "ss: open storage at: %s, CF includes: %s",
            self.path,
            sorted(self._families),
        )

    def __enter__(self) -> "VersionedStorage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Release the storage; further operations raise StorageError."""
        with self._lock:
            self._closed = True
            self._families.clear()

    @staticmethod
    def _decode_name(stem: str) -> str | None:
        try:
            return bytes.fromhex(stem).decode("utf-8")
        except ValueError:
            return None

    def _cf_file(self, cf_name: str) -> str:
        return os.path.join(self.path, cf_name.encode("utf-8").hex() + _CF_SUFFIX)

    def _require_open(self) -> None:
        if self._closed:
            raise StorageError("storage is closed", self.path)

    def _create(self, cf_name: str) -> None:
        family = _ColumnFamily(self._cf_file(cf_name))
        try:
            with open(family.file, "ab"):
                pass
        except OSError as exc:
            raise BackendError(exc) from exc
        self._families[cf_name] = family

    def _family(self, cf_name: str) -> _ColumnFamily:
        try:
            return self._families[cf_name]
        except KeyError:
            raise ColumnFamilyNotFound(cf_name) from None

    def _write(self, family: _ColumnFamily, records: list[tuple[bytes, bytes]]) -> None:
        payload = _ColumnFamily.encode(records)
        try:
            with open(family.file, "ab") as fh:
                fh.write(payload)
        except OSError as exc:
            raise BackendError(exc) from exc
        for key, value in records:
            family.put(key, value)

    def create_cf(self, cf_name: str) -> None:
        """Create a column family; an existing one is left alone."""
        with self._lock:
            self._require_open()
            if cf_name in self._families:
                logger.info("ss: Column family %s already exists", cf_name)
                return
            self._create(cf_name)
            logger.info("ss: Created column family: %s", cf_name)

    def drop_cf(self, cf_name: str) -> None:
        """Drop a column family and its data; a missing one is ignored."""
        with self._lock:
            self._require_open()
            family = self._families.get(cf_name)
            if family is None:
                logger.info("ss: Column family %s does not exist", cf_name)
                return
            if cf_name == DEFAULT_CF_NAME:
                raise BackendError(
                    ValueError("the default column family cannot be dropped")
                )
            try:
                os.remove(family.file)
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise BackendError(exc) from exc
            del self._families[cf_name]
            logger.info("ss: Dropped column family: %s", cf_name)

    def is_cf_exist(self, cf_name: str) -> bool:
        with self._lock:
            return cf_name in self._families

    def batch_write(
        self,
        graph_id: int,
        kvs: Iterable[tuple[bytes, bytes | None]],
        version: int,
    ) -> None:
        """Write all pairs at one version; a value of None marks a deletion."""
        _check_graph_id(graph_id)
        _check_version(version)
        with self._lock:
            self._require_open()
            family = self._family(str(graph_id))
            records = [
                (
                    build_versioned_key(key, version),
                    DELETED_FLAG if value is None else bytes(value),
                )
                for key, value in kvs
            ]
            self._write(family, records)
        logger.info(
            "ss: Batch write completed for graph %s, version: %s, %d entries",
            graph_id,
            version,
            len(records),
        )

    def flush(self, graph_id: int) -> None:
        """Force the column family of a graph onto disk."""
        _check_graph_id(graph_id)
        with self._lock:
            self._require_open()
            family = self._family(str(graph_id))
            try:
                with open(family.file, "ab") as fh:
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError as exc:
                raise BackendError(exc) from exc
        logger.info("ss: flush graph (id: %s) succeed", graph_id)

    def get_applied_commit_version(self) -> int | None:
        """Return the persisted applied commit version, if one is recorded."""
        with self._lock:
            self._require_open()
            family = self._families.get(METADATA_CF_NAME)
            if family is None:
                return None
            value = family.values.get(APPLIED_COMMIT_VERSION_KEY)
        if value is None or len(value) != _VERSION.size:
            return None
        return _VERSION.unpack(value)[0]

    def write_applied_commit_version(self, applied_commit_version: int) -> None:
        """Persist the applied commit version in the metadata column family."""
        _check_version(applied_commit_version)
        with self._lock:
            self._require_open()
            if METADATA_CF_NAME not in self._families:
                self._create(METADATA_CF_NAME)
            self._write(
                self._family(METADATA_CF_NAME),
                [(APPLIED_COMMIT_VERSION_KEY, _VERSION.pack(applied_commit_version))],
            )
        logger.info(
            "ss: applied_commit_version = %s, persisted", applied_commit_version
        )

    def get(self, graph_id: int, key: bytes, version: int) -> bytes | None:
        """Return the newest value of ``key`` at a version <= ``version``."""
        _check_graph_id(graph_id)
        key = bytes(key)
        search_key = build_versioned_key(key, version)
        with self._lock:
            self._require_open()
            found = self._family(str(graph_id)).floor(search_key)
        if found is None:
            return None
        found_key, found_value = found
        if extract_raw_key(found_key) != key:
            return None
        if found_value == DELETED_FLAG:
            return None
        return found_value

    def multi_get(
        self, graph_id: int, keys: Iterable[bytes], version: int
    ) -> list[bytes | None]:
        """Read several keys at one version; missing keys give None."""
        return [self.get(graph_id, key, version) for key in keys]