"""In-memory cache of log entries fetched but not yet applied to storage."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable

from .records import LogEntry

logger = logging.getLogger(__name__)

MAX_CACHED_ENTRIES = 500
"""Default number of log entries the cache holds before it counts as full."""


class MemState:
    """Tracks applied and fetched commit versions and the pending log entries."""

    def __init__(
        self, persist_version: int = 0, max_cached_entries: int = MAX_CACHED_ENTRIES
    ) -> None:
        self.applied_commit_version = persist_version
        self.max_commit_version = persist_version
        self.max_cached_entries = max_cached_entries
        self.log_entries: deque[LogEntry] = deque()

    def __len__(self) -> int:
        return len(self.log_entries)

    def cache_full(self) -> bool:
        """True when no more entries should be fetched until some are applied."""
        return len(self.log_entries) >= self.max_cached_entries

    def update_applied_commit_version(self, new_applied_commit_version: int) -> None:
        """Record a new applied version and drop every entry it covers."""
        self.applied_commit_version = new_applied_commit_version
        while (
            self.log_entries
            and self.log_entries[0].commit_version <= new_applied_commit_version
        ):
            self.log_entries.popleft()

    def append(self, cur_commit_version: int, entries: Iterable[LogEntry]) -> bool:
        """Append entries that continue the chain from ``cur_commit_version``.

        Returns False, leaving the cache untouched, when the entries do not
        form a continuous chain starting at ``cur_commit_version``.
        """
        entries = list(entries)
        expected_prev_version = cur_commit_version
        for entry in entries:
            if entry.prev_commit_version != expected_prev_version:
                logger.warning(
                    "ss: log is not continuous, expected prev_commit_version: %s, "
                    "actual: %s",
                    expected_prev_version,
                    entry.prev_commit_version,
                )
                return False
            expected_prev_version = entry.commit_version

        self.log_entries.extend(entries)
        if self.log_entries:
            self.max_commit_version = self.log_entries[-1].commit_version
            logger.info(
                "[ss: Log2Storage] max commit version updated to: %s",
                self.max_commit_version,
            )
        return True

    def take_entries(self) -> tuple[int, list[LogEntry]]:
        """Remove and return all cached entries with the version they reach.

        With nothing cached, the applied commit version and an empty list
        are returned.
        """
        if not self.log_entries:
            return self.applied_commit_version, []
        new_applied_commit_version = self.log_entries[-1].commit_version
        entries = list(self.log_entries)
        self.log_entries.clear()
        return new_applied_commit_version, entries