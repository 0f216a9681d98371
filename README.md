# versionstore

A multi-version key-value storage server. Data is kept per graph, one column
family per graph id. Every write carries a commit version, and a read at
version *v* returns the newest value written at or below *v*. A deletion is
stored as a tombstone (`storage.DELETED_FLAG`), so it hides older values at
later versions.

A background task pulls committed log entries from a log server. It checks
that the entries form an unbroken chain, caches them in memory, groups them by
graph and version, and writes them to storage. It then persists the last
applied commit version, so a restarted server picks up where it stopped.

The package has no dependencies outside the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Running the server

```
versionstore --data-path ./ss_data
```

`-d`/`--data-path` defaults to `./ss_data`. The storage service listens on
`127.0.0.1:25001` (`server.StorageServerConfig`). Log entries are fetched from
a log server at `127.0.0.1:25002` (`server.LogServerConfig`). The server runs
until it is interrupted.

## Using the storage directly

```python
from versionstore.storage import VersionedStorage

store = VersionedStorage("/tmp/example-store")
store.create_cf("1")

store.batch_write(1, [(b"key1", b"value1"), (b"key2", b"value2")], 100)
store.batch_write(1, [(b"key1", b"updated"), (b"key2", None)], 200)

store.get(1, b"key1", 150)                 # b"value1"
store.get(1, b"key1", 200)                 # b"updated"
store.get(1, b"key2", 200)                 # None (deleted at version 200)
store.multi_get(1, [b"key1", b"missing"], 100)  # [b"value1", None]

store.write_applied_commit_version(200)
store.get_applied_commit_version()         # 200
store.flush(1)
store.close()
```

`VersionedStorage` is also a context manager that closes itself on exit.

Each column family is an append-only file in the storage directory. Its name
is the hex-encoded family name followed by `.cf`. The whole family is loaded
into a sorted in-memory index when the storage is opened. A `default` column
family always exists and cannot be dropped. The applied commit version is kept
in the `metadata` column family.

Versioned keys are the raw key followed by the version as 8 big-endian bytes.
Use `build_versioned_key`, `extract_raw_key` and `extract_version` to make and
take apart such keys. `destroy(path)` removes a storage directory.

Errors:

* a graph whose column family does not exist raises
  `errors.ColumnFamilyNotFound`;
* a failing file operation raises `errors.BackendError`;
* using a closed storage raises `errors.StorageError`;
* a graph id outside the unsigned 32-bit range, or a version outside the
  unsigned 64-bit range, raises `ValueError`; a value that is not an int
  raises `TypeError`.

`ColumnFamilyNotFound` and `BackendError` are subclasses of `StorageError`.
Each storage error records the `ErrorLocation` where it was raised.

## Log replication

`records` holds the replicated records: `Kv`, `WriteSet`, `LogEntry` and
`FetchEntriesResponse`. Each `LogEntry` and `FetchEntriesResponse` has
`to_dict`/`from_dict`, a JSON-compatible form in which byte strings are
base64. `describe_entries` renders a response as readable lines.

`memstate.MemState` is the cache of fetched entries. It holds up to 500
entries by default.

`log2storage.Log2Storage(storage, log_client)` runs the loop. `start()`
launches it as an asyncio task and `stop()` cancels it. The log client needs
one method, `fetch_entries(prev_commit_version, max_entries)`, which returns a
`FetchEntriesResponse` either directly or as an awaitable. Each round, the
loop does the following:

1. It waits one second, except on the first round.
2. It asks for up to 500 entries, starting from the newest cached version
   plus one.
3. It caches them if each entry's `prev_commit_version` continues the chain
   from the newest cached version.
4. It applies the cache to storage. Column families are created as needed,
   and each graph is written in its own thread.

A failed fetch is logged and the round goes on.

## Service and network protocol

`service.StorageService` wraps a `VersionedStorage` and offers `create`,
`get`, `multi_get`, `flush` and `drop`. Failures raise `service.ServiceError`,
which has a `code` and a `message`. The code is one of `internal`,
`invalid_argument` or `unimplemented`.

`StorageService.handle(request)` serves a request mapping. For example:

```python
{"method": "get", "graph_id": 43, "key": "a2V5QQ==", "version": 3}
```

It answers with `{"ok": true, "result": ...}` or with
`{"ok": false, "error": {"code": ..., "message": ...}}`. Keys and values are
base64 strings, and a missing value is `null`. The result of each method is:

* `get` gives `{"value": ...}`;
* `multi_get` (with `"keys": [...]`) gives `{"values": [{"value": ...}, ...]}`;
* `create`, `flush` and `drop` give `true`.

`server.StoreServerManager` does the following:

* it opens the storage at its data path (`/tmp/ss_unit_test` if none is given);
* it starts `Log2Storage` with a `server.LogClient`;
* it serves `StorageService` over TCP, taking one JSON request per line and
  sending one JSON response per line;
* it keeps running until `stop()` is called.

```python
import asyncio
from versionstore.server import StoreServerManager, StorageServerConfig

async def run():
    manager = StoreServerManager(
        "/tmp/example-store", StorageServerConfig(port=0)
    )
    task = asyncio.create_task(manager.start())
    host, port = await manager.wait_started()
    ...
    await manager.stop()
    await task

asyncio.run(run())
```

`LogClient` uses the same line framing. It sends
`{"method": "fetch_entries", "prev_commit_version": ..., "max_entries": ...}`.
It expects `{"ok": true, "result": <FetchEntriesResponse.to_dict()>}` in
return.

## What this package does not do

This package has no log server. It only consumes one through `LogClient`.
Without a log server on the configured address, every fetch fails. The failure
is logged once per round, and the storage service keeps serving whatever data
is already stored. The package also has no client library for the storage
service: clients speak the line-delimited JSON protocol described above.