import pytest

from versionstore.memstate import MAX_CACHED_ENTRIES, MemState
from versionstore.records import Kv, LogEntry, WriteSet


def _chain(start, count, graph_id=42):
    entries = []
    prev = start
    for version in range(start + 1, start + count + 1):
        entries.append(
            LogEntry(
                prev_commit_version=prev,
                commit_version=version,
                graph_id=graph_id,
                write_set=WriteSet([Kv(b"key", b"value")], []),
            )
        )
        prev = version
    return entries


def test_initial_state_uses_persisted_version():
    state = MemState(7)
    assert state.applied_commit_version == 7
    assert state.max_commit_version == 7
    assert len(state) == 0
    assert state.cache_full() is False


def test_default_capacity_is_source_limit():
    assert MAX_CACHED_ENTRIES == 500
    state = MemState(0)
    assert state.append(0, _chain(0, MAX_CACHED_ENTRIES - 1))
    assert state.cache_full() is False
    assert state.append(state.max_commit_version, _chain(state.max_commit_version, 1))
    assert state.cache_full() is True


def test_cache_full_with_small_capacity():
    state = MemState(0, 3)
    assert state.append(0, _chain(0, 2))
    assert not state.cache_full()
    assert state.append(2, _chain(2, 1))
    assert state.cache_full()


def test_append_continuous_updates_max_version():
    state = MemState(0)
    entries = _chain(0, 3)
    assert state.append(0, entries) is True
    assert list(state.log_entries) == entries
    assert state.max_commit_version == entries[-1].commit_version
    assert state.applied_commit_version == 0


def test_append_discontinuous_is_rejected_and_state_unchanged():
    state = MemState(0)
    assert state.append(0, _chain(0, 2))
    before = list(state.log_entries)
    gap = _chain(5, 2)
    assert state.append(2, gap) is False
    assert list(state.log_entries) == before
    assert state.max_commit_version == before[-1].commit_version


def test_append_break_in_middle_rejected():
    state = MemState(0)
    entries = _chain(0, 2) + _chain(9, 1)
    assert state.append(0, entries) is False
    assert len(state) == 0
    assert state.max_commit_version == 0


def test_append_empty_keeps_max_version():
    state = MemState(4)
    assert state.append(4, []) is True
    assert state.max_commit_version == 4
    assert len(state) == 0


def test_take_entries_empty_returns_applied_version():
    state = MemState(11)
    assert state.take_entries() == (11, [])


def test_take_entries_drains_cache():
    state = MemState(0)
    entries = _chain(0, 3)
    state.append(0, entries)
    version, taken = state.take_entries()
    assert version == entries[-1].commit_version
    assert taken == entries
    assert len(state) == 0
    assert state.max_commit_version == entries[-1].commit_version
    assert state.applied_commit_version == 0


def test_update_applied_removes_covered_entries():
    state = MemState(0)
    entries = _chain(0, 4)
    state.append(0, entries)
    state.update_applied_commit_version(entries[1].commit_version)
    assert state.applied_commit_version == entries[1].commit_version
    assert list(state.log_entries) == entries[2:]


def test_update_applied_beyond_all_entries_clears():
    state = MemState(0)
    entries = _chain(0, 2)
    state.append(0, entries)
    state.update_applied_commit_version(entries[-1].commit_version)
    assert len(state) == 0
    assert state.applied_commit_version == entries[-1].commit_version


def test_fetch_apply_cycle_continues_chain():
    state = MemState(0)
    first = _chain(0, 2)
    assert state.append(state.max_commit_version, first)
    version, _ = state.take_entries()
    state.update_applied_commit_version(version)
    second = _chain(state.max_commit_version, 2)
    assert state.append(state.max_commit_version, second)
    assert list(state.log_entries) == second
    assert state.applied_commit_version == first[-1].commit_version


@pytest.mark.parametrize("capacity", [1, 2, 5])
def test_cache_full_invariant(capacity):
    state = MemState(0, capacity)
    for _ in range(capacity):
        assert not state.cache_full()
        state.append(state.max_commit_version, _chain(state.max_commit_version, 1))
    assert state.cache_full()
    assert len(state) == capacity