"""Replication of committed log entries from the log server into storage.

A background task repeatedly fetches entries that follow the newest cached
version, appends them to an in-memory cache when they form a continuous
chain, and applies the cached entries to the versioned storage. Each graph
is written by its own concurrent job.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Iterable
from typing import Any, Protocol

from .errors import StorageError
from .memstate import MemState
from .records import FetchEntriesResponse, LogEntry, describe_entries
from .storage import VersionedStorage

logger = logging.getLogger(__name__)

FETCH_LOG_ENTRY_LIMIT = 500
"""Largest number of entries requested from the log server at once."""

FETCH_INTERVAL = 1.0
"""Seconds to wait between two fetch rounds."""

GraphData = dict[int, dict[int, list[tuple[bytes, "bytes | None"]]]]


class _LogSource(Protocol):
    def fetch_entries(self, prev_commit_version: int, max_entries: int) -> Any: ...


def organize_entries(entries: Iterable[LogEntry]) -> GraphData:
    """Group writes by graph id, then by commit version.

    Each version maps to a list of ``(key, value)`` pairs: upserts first,
    then deletions, which carry a value of None.
    """
    graph_data: GraphData = {}
    for entry in entries:
        write_set = entry.write_set
        if write_set is None:
            continue
        pairs = [(kv.key, kv.value) for kv in write_set.upsert_kvs]
        pairs.extend((key, None) for key in write_set.deleted_keys)
        for pair in pairs:
            (
                graph_data.setdefault(entry.graph_id, {})
                .setdefault(entry.commit_version, [])
                .append(pair)
            )
    return graph_data


class Log2Storage:
    """Pulls log entries from a log client and applies them to storage."""

    def __init__(self, storage: VersionedStorage, log_client: _LogSource) -> None:
        self.storage = storage
        self.log_client = log_client
        self.fetch_interval = FETCH_INTERVAL
        applied_commit_version = 0
        try:
            persisted = storage.get_applied_commit_version()
        except StorageError as exc:
            logger.warning("ss: cannot read applied commit version: %s", exc)
            persisted = None
        if persisted is not None:
            applied_commit_version = persisted
        self.mem_state = MemState(applied_commit_version)
        self._state_lock = asyncio.Lock()
        self._client_lock = asyncio.Lock()
        self._tasks: list[asyncio.Task[None]] = []
        logger.info(
            "ss: Log2Storage initialized with applied_commit_version: %s",
            applied_commit_version,
        )

    async def start(self) -> None:
        """Launch the fetch-and-apply loop as a background task."""
        logger.info("ss: log2storage task started, fetching logs and applying them")
        self._tasks.append(asyncio.create_task(self._run()))

    async def stop(self) -> None:
        """Cancel every background task and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:  # noqa: BLE001
                logger.exception("ss: log2storage task failed")

    async def _run(self) -> None:
        interval = 0.0
        loop_count = 0
        while True:
            loop_count += 1
            logger.info("[ss: Log2Storage::start] loop %d", loop_count)
            if interval > 0:
                await asyncio.sleep(interval)
            interval = self.fetch_interval

            fetch_start_version = await self.check_mem_state()
            if fetch_start_version is None:
                logger.warning(
                    "[ss: Log2Storage] cache is full, applying before fetching more"
                )
                await self.apply_entries()
                continue

            logger.info(
                "[ss: Log2Storage] fetching logs from version %s", fetch_start_version
            )
            resp = await self.fetch_log_entries(fetch_start_version + 1)
            if resp is None:
                logger.warning("[ss: Log2Storage] fetching logs failed")
            elif resp.log_entries:
                logger.info(
                    "[ss: Log2Storage] fetched %d log entries", len(resp.log_entries)
                )
                for line in describe_entries(resp):
                    logger.info("%s", line)
                if not await self.append_log_entries(fetch_start_version, resp):
                    logger.warning(
                        "[ss: Log2Storage] appending failed, log may be discontinuous"
                    )
                    continue
                logger.info("[ss: Log2Storage] log entries cached")
            else:
                logger.info("[ss: Log2Storage] no new log entries")

            await self.apply_entries()
            logger.info("[ss: Log2Storage] loop finished")

    async def check_mem_state(self) -> int | None:
        """Return the version to fetch after, or None when the cache is full."""
        async with self._state_lock:
            if self.mem_state.cache_full():
                return None
            return self.mem_state.max_commit_version

    async def fetch_log_entries(
        self, prev_commit_version: int
    ) -> FetchEntriesResponse | None:
        """Ask the log client for entries; failures are logged and give None."""
        async with self._client_lock:
            try:
                result = self.log_client.fetch_entries(
                    prev_commit_version, FETCH_LOG_ENTRY_LIMIT
                )
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:  # noqa: BLE001
                logger.warning("ss: Fetch log entries error. Desc: %s.", exc)
                return None
        return result

    async def append_log_entries(
        self, cur_commit_version: int, resp: FetchEntriesResponse
    ) -> bool:
        """Cache the entries of ``resp`` if they continue ``cur_commit_version``."""
        async with self._state_lock:
            return self.mem_state.append(cur_commit_version, resp.log_entries)

    async def get_log_entries(self) -> tuple[int, list[LogEntry]]:
        """Remove every cached entry and return it with the version it reaches."""
        async with self._state_lock:
            return self.mem_state.take_entries()

    async def apply_entries(self) -> None:
        """Write all cached entries to storage and record the applied version."""
        new_applied_commit_version, entries = await self.get_log_entries()
        if not entries:
            logger.info("[ss: Log2Storage] no log entries to apply")
            return

        logger.info(
            "[ss: Log2Storage] applying %d log entries, new version: %s",
            len(entries),
            new_applied_commit_version,
        )
        if not self.check_and_create_column_families(entries):
            logger.warning(
                "[ss: Log2Storage] column family check failed, skipping this round"
            )
            return

        graph_data = organize_entries(entries)
        if not graph_data:
            logger.warning("[ss: Log2Storage] organized data is empty, nothing written")
            return

        started = time.monotonic()
        await self.batch_write_graphs(graph_data)
        logger.info(
            "[ss: Log2Storage] batch write finished in %.3fs",
            time.monotonic() - started,
        )

        try:
            self.storage.write_applied_commit_version(new_applied_commit_version)
        except StorageError as exc:
            logger.warning(
                "[ss: Log2Storage] updating applied commit version failed: %s", exc
            )
            return
        async with self._state_lock:
            self.mem_state.update_applied_commit_version(new_applied_commit_version)
        logger.info(
            "[ss: Log2Storage] applied commit version is now %s",
            new_applied_commit_version,
        )

    def check_and_create_column_families(self, entries: Iterable[LogEntry]) -> bool:
        """Create the column family of every graph named; False on failure."""
        for name in {str(entry.graph_id) for entry in entries}:
            if self.storage.is_cf_exist(name):
                continue
            try:
                self.storage.create_cf(name)
            except StorageError as exc:
                logger.warning("ss: Failed to precreate graph %s: %s", name, exc)
                return False
        return True

    async def batch_write_graphs(self, graph_data: GraphData) -> None:
        """Write every graph's versions concurrently, one job per graph."""
        await asyncio.gather(
            *(
                asyncio.to_thread(self._write_graph, graph_id, datasets)
                for graph_id, datasets in graph_data.items()
            )
        )

    def _write_graph(
        self, graph_id: int, datasets: dict[int, list[tuple[bytes, bytes | None]]]
    ) -> None:
        logger.info("[ss: Log2Storage] batch writing graph %s", graph_id)
        for version, kvs in datasets.items():
            try:
                self.storage.batch_write(graph_id, kvs, version)
            except (StorageError, ValueError, TypeError) as exc:
                logger.warning(
                    "[ss: Log2Storage] applying entries to graph %s failed: %s",
                    graph_id,
                    exc,
                )
        logger.info("[ss: Log2Storage] graph %s batch write finished", graph_id)