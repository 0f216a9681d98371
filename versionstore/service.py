"""Request handling for the storage service.

``StorageService`` exposes the storage operations offered to clients
(create, get, multi_get, flush and drop) and a ``handle`` entry point that
serves JSON-compatible request mappings. Byte strings travel as base64.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from .errors import StorageError
from .storage import VersionedStorage

INTERNAL = "internal"
INVALID_ARGUMENT = "invalid_argument"
UNIMPLEMENTED = "unimplemented"

_U32_MAX = 2**32 - 1
_BYTES_TYPES = (bytes, bytearray, memoryview)


class ServiceError(Exception):
    """A failed request, with a status code and a message for the client."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


@contextmanager
def _translate() -> Iterator[None]:
    try:
        yield
    except StorageError as exc:
        raise ServiceError(INTERNAL, str(exc)) from exc
    except (TypeError, ValueError) as exc:
        raise ServiceError(INVALID_ARGUMENT, str(exc)) from exc


def _graph_id(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ServiceError(
            INVALID_ARGUMENT, f"graph_id must be an int, not {type(value).__name__}"
        )
    if not 0 <= value <= _U32_MAX:
        raise ServiceError(INVALID_ARGUMENT, f"graph_id {value} is out of range")
    return value


def _key(value: Any) -> bytes:
    if not isinstance(value, _BYTES_TYPES):
        raise ServiceError(
            INVALID_ARGUMENT, f"key must be bytes, not {type(value).__name__}"
        )
    return bytes(value)


def _encode(data: bytes | None) -> str | None:
    return None if data is None else base64.b64encode(data).decode("ascii")


def _decode(text: Any, what: str) -> bytes:
    if not isinstance(text, str):
        raise ServiceError(INVALID_ARGUMENT, f"{what} must be a base64 string")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise ServiceError(INVALID_ARGUMENT, f"{what} is not valid base64") from None


def _field(request: Mapping[str, Any], name: str) -> Any:
    try:
        return request[name]
    except KeyError:
        raise ServiceError(INVALID_ARGUMENT, f"missing field: {name}") from None


class StorageService:
    """Serves storage requests against one ``VersionedStorage``."""

    def __init__(self, storage: VersionedStorage) -> None:
        self.storage = storage
        self._handlers: dict[str, Callable[[Mapping[str, Any]], Any]] = {
            "create": self._handle_create,
            "get": self._handle_get,
            "multi_get": self._handle_multi_get,
            "flush": self._handle_flush,
            "drop": self._handle_drop,
        }

    def create(self, graph_id: int) -> bool:
        """Create the column family of a graph."""
        name = str(_graph_id(graph_id))
        with _translate():
            self.storage.create_cf(name)
        return True

    def get(self, graph_id: int, key: bytes, version: int) -> bytes | None:
        """Read one key of a graph at a version."""
        key = _key(key)
        with _translate():
            return self.storage.get(graph_id, key, version)

    def multi_get(
        self, graph_id: int, keys: Iterable[bytes], version: int
    ) -> list[bytes | None]:
        """Read several keys of a graph at one version."""
        keys = [_key(key) for key in keys]
        with _translate():
            return self.storage.multi_get(graph_id, keys, version)

    def flush(self, graph_id: int) -> bool:
        """Force a graph's data onto disk."""
        with _translate():
            self.storage.flush(graph_id)
        return True

    def drop(self, graph_id: int) -> bool:
        """Drop the column family of a graph."""
        name = str(_graph_id(graph_id))
        with _translate():
            self.storage.drop_cf(name)
        return True

    def handle(self, request: Any) -> dict[str, Any]:
        """Serve a request mapping and return the response mapping.

        Success gives ``{"ok": True, "result": ...}``; failure gives
        ``{"ok": False, "error": {"code": ..., "message": ...}}``.
        """
        try:
            if not isinstance(request, Mapping):
                raise ServiceError(INVALID_ARGUMENT, "request must be a mapping")
            method = request.get("method")
            handler = self._handlers.get(method) if isinstance(method, str) else None
            if handler is None:
                raise ServiceError(UNIMPLEMENTED, f"unknown method: {method!r}")
            result = handler(request)
        except ServiceError as exc:
            return {"ok": False, "error": {"code": exc.code, "message": exc.message}}
        return {"ok": True, "result": result}

    def _handle_create(self, request: Mapping[str, Any]) -> bool:
        return self.create(_field(request, "graph_id"))

    def _handle_get(self, request: Mapping[str, Any]) -> dict[str, Any]:
        value = self.get(
            _field(request, "graph_id"),
            _decode(_field(request, "key"), "key"),
            _field(request, "version"),
        )
        return {"value": _encode(value)}

    def _handle_multi_get(self, request: Mapping[str, Any]) -> dict[str, Any]:
        keys = _field(request, "keys")
        if not isinstance(keys, list):
            raise ServiceError(INVALID_ARGUMENT, "keys must be a list")
        values = self.multi_get(
            _field(request, "graph_id"),
            [_decode(key, "key") for key in keys],
            _field(request, "version"),
        )
        return {"values": [{"value": _encode(value)} for value in values]}

    def _handle_flush(self, request: Mapping[str, Any]) -> bool:
        return self.flush(_field(request, "graph_id"))

    def _handle_drop(self, request: Mapping[str, Any]) -> bool:
        return self.drop(_field(request, "graph_id"))