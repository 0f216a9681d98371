"""Log records replicated from the log server into storage."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1


def _encode_bytes(data: bytes) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


def _decode_bytes(text: Any, what: str) -> bytes:
    if not isinstance(text, str):
        raise ValueError(f"{what} must be a base64 string, not {type(text).__name__}")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"{what} is not valid base64: {text!r}") from exc


def _unsigned(value: Any, limit: int, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{what} must be an int, not {type(value).__name__}")
    if not 0 <= value <= limit:
        raise ValueError(f"{what} {value} is out of range")
    return value


def _lossy(data: bytes) -> str:
    return bytes(data).decode("utf-8", errors="replace")


@dataclass
class Kv:
    """A key and the value written to it."""

    key: bytes
    value: bytes

    def __post_init__(self) -> None:
        self.key = bytes(self.key)
        self.value = bytes(self.value)


@dataclass
class WriteSet:
    """The upserts and deletions made by one committed transaction."""

    upsert_kvs: list[Kv] = field(default_factory=list)
    deleted_keys: list[bytes] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.upsert_kvs = list(self.upsert_kvs)
        self.deleted_keys = [bytes(key) for key in self.deleted_keys]

    def is_empty(self) -> bool:
        """True when the write set neither upserts nor deletes anything."""
        return not self.upsert_kvs and not self.deleted_keys


def _write_set_to_dict(write_set: WriteSet) -> dict[str, Any]:
    return {
        "upsert_kvs": [
            {"key": _encode_bytes(kv.key), "value": _encode_bytes(kv.value)}
            for kv in write_set.upsert_kvs
        ],
        "deleted_keys": [_encode_bytes(key) for key in write_set.deleted_keys],
    }


def _write_set_from_dict(data: Any) -> WriteSet:
    if not isinstance(data, Mapping):
        raise ValueError("write_set must be a mapping")
    upserts = data.get("upsert_kvs", [])
    deletes = data.get("deleted_keys", [])
    if not isinstance(upserts, list) or not isinstance(deletes, list):
        raise ValueError("upsert_kvs and deleted_keys must be lists")
    kvs = []
    for item in upserts:
        if not isinstance(item, Mapping):
            raise ValueError("each upsert must be a mapping")
        kvs.append(
            Kv(
                _decode_bytes(item.get("key", ""), "key"),
                _decode_bytes(item.get("value", ""), "value"),
            )
        )
    return WriteSet(kvs, [_decode_bytes(key, "deleted key") for key in deletes])


@dataclass
class LogEntry:
    """One committed transaction, chained to its predecessor by version."""

    prev_commit_version: int
    commit_version: int
    graph_id: int
    write_set: WriteSet | None = None

    def __post_init__(self) -> None:
        _unsigned(self.prev_commit_version, _U64_MAX, "prev_commit_version")
        _unsigned(self.commit_version, _U64_MAX, "commit_version")
        _unsigned(self.graph_id, _U32_MAX, "graph_id")

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible mapping; byte strings are base64 encoded."""
        return {
            "prev_commit_version": self.prev_commit_version,
            "commit_version": self.commit_version,
            "graph_id": self.graph_id,
            "write_set": None
            if self.write_set is None
            else _write_set_to_dict(self.write_set),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LogEntry":
        """Build an entry from the mapping produced by ``to_dict``."""
        if not isinstance(data, Mapping):
            raise ValueError("log entry must be a mapping")
        write_set = data.get("write_set")
        return cls(
            prev_commit_version=data.get("prev_commit_version", 0),
            commit_version=data.get("commit_version", 0),
            graph_id=data.get("graph_id", 0),
            write_set=None if write_set is None else _write_set_from_dict(write_set),
        )


@dataclass
class FetchEntriesResponse:
    """A batch of log entries returned by the log server."""

    log_entries: list[LogEntry] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.log_entries = list(self.log_entries)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible mapping of the whole batch."""
        return {"log_entries": [entry.to_dict() for entry in self.log_entries]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FetchEntriesResponse":
        """Build a response from the mapping produced by ``to_dict``."""
        if not isinstance(data, Mapping):
            raise ValueError("response must be a mapping")
        entries = data.get("log_entries", [])
        if not isinstance(entries, list):
            raise ValueError("log_entries must be a list")
        return cls([LogEntry.from_dict(item) for item in entries])


def describe_entries(response: FetchEntriesResponse) -> list[str]:
    """Return human-readable lines describing every entry of a response."""
    lines = ["=== log entries begin ==="]
    for index, entry in enumerate(response.log_entries, start=1):
        lines.append(f"entry {index}:")
        lines.append(f"  prev commit version: {entry.prev_commit_version}")
        lines.append(f"  commit version: {entry.commit_version}")
        lines.append(f"  graph id: {entry.graph_id}")
        write_set = entry.write_set
        if write_set is None:
            lines.append("  no write set")
        else:
            lines.append("  write set:")
            if write_set.upsert_kvs:
                lines.append(f"    upserts ({len(write_set.upsert_kvs)}):")
                lines.extend(
                    f"      Key: {_lossy(kv.key)}, Value: {_lossy(kv.value)}"
                    for kv in write_set.upsert_kvs
                )
            if write_set.deleted_keys:
                lines.append(f"    deletes ({len(write_set.deleted_keys)}):")
                lines.extend(
                    f"      Key: {_lossy(key)}" for key in write_set.deleted_keys
                )
            if write_set.is_empty():
                lines.append("    empty write set")
        lines.append("  ---")
    lines.append(f"=== log entries end, {len(response.log_entries)} in total ===")
    return lines