import pytest

from shardraft.raft.raftlog import LogEntry, SnapshotLog


def make_log(terms):
    log = SnapshotLog()
    log.append(*(LogEntry(f"cmd{i}", t) for i, t in enumerate(terms, start=1)))
    return log


def test_fresh_log_has_dummy_entry():
    log = SnapshotLog()
    assert len(log) == 1
    assert log.last_index() == 0
    assert log.term_at(0) == 0
    assert log.at(0).command is None


def test_append_and_lookup():
    terms = [1, 1, 2, 2, 3]
    log = make_log(terms)
    assert len(log) == len(terms) + 1
    assert log.last_index() == len(terms)
    assert [log.term_at(i) for i in range(1, len(terms) + 1)] == terms
    assert log.at(3).command == "cmd3"


def test_out_of_bounds():
    log = make_log([1, 1])
    with pytest.raises(IndexError):
        log.at(3)
    with pytest.raises(IndexError):
        log.term_at(3)
    with pytest.raises(IndexError):
        log.term_at(-1)


def test_truncate_and_slice():
    log = make_log([1, 1, 2, 2, 3])
    log.truncate_to(3)
    assert len(log) == 3
    assert log.last_index() == 2
    assert [e.command for e in log.slice_from(1)] == ["cmd1", "cmd2"]
    assert log.slice_from(3) == []


def test_compact_trims_prefix():
    log = make_log([1, 1, 2, 2, 3])
    before = len(log)
    assert log.compact(3, b"snap") is True
    assert len(log) == before
    assert log.snapshot_len == 4
    assert log.snapshot == b"snap"
    assert log.is_trimmed(3)
    assert not log.is_trimmed(4)
    assert log.term_at(3) == 2
    assert log.term_at(1) == -1
    assert log.at(4).command == "cmd4"
    with pytest.raises(IndexError):
        log.at(3)


def test_compact_never_goes_back():
    log = make_log([1, 1, 2, 2, 3])
    log.compact(3, b"new")
    assert log.compact(2, b"old") is False
    assert log.snapshot == b"new"
    assert log.snapshot_len == 4


def test_truncate_into_snapshot_rejected():
    log = make_log([1, 1, 2, 2, 3])
    log.compact(3, b"snap")
    with pytest.raises(ValueError):
        log.truncate_to(2)


def test_install_past_end_clears_entries():
    log = make_log([1, 1])
    assert log.install(9, 4, b"leader") is True
    assert log.entries == []
    assert len(log) == 10
    assert log.last_index() == 9
    assert log.term_at(9) == 4


def test_install_keeps_tail():
    log = make_log([1, 1, 2, 2, 3])
    assert log.install(2, 1, b"s") is True
    assert [e.command for e in log.entries] == ["cmd3", "cmd4", "cmd5"]
    assert len(log) == 6


def test_install_stale_snapshot_ignored():
    log = make_log([1, 1, 2, 2, 3])
    log.compact(4, b"mine")
    assert log.install(2, 1, b"theirs") is False
    assert log.snapshot == b"mine"