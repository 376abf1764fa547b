"""The Raft log with a compacted prefix held in a snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LogEntry:
    command: Any
    term: int


def _initial_entries() -> list[LogEntry]:
    # A dummy entry at index 0 keeps real indices starting from 1.
    return [LogEntry(None, 0)]


@dataclass
class SnapshotLog:
    """Log entries after a snapshot; indices count snapshotted entries too.

    The last index covered by the snapshot counts as trimmed, although its
    term is still known.
    """

    entries: list[LogEntry] = field(default_factory=_initial_entries)
    snapshot_len: int = 0
    last_term_in_snapshot: int = 0
    snapshot: bytes | None = None

    def __len__(self) -> int:
        return len(self.entries) + self.snapshot_len

    def last_index(self) -> int:
        return len(self) - 1

    def is_trimmed(self, index: int) -> bool:
        return index < self.snapshot_len

    def at(self, index: int) -> LogEntry:
        offset = index - self.snapshot_len
        if offset < 0 or offset >= len(self.entries):
            raise IndexError("index out of bound")
        return self.entries[offset]

    def term_at(self, index: int) -> int:
        """Term of the entry at index; -1 for entries hidden in the snapshot."""
        offset = index - self.snapshot_len
        if index < 0 or offset >= len(self.entries):
            raise IndexError("index out of bound")
        if offset < -1:
            return -1
        if offset == -1:
            return self.last_term_in_snapshot
        return self.entries[offset].term

    def append(self, *entries: LogEntry) -> None:
        self.entries.extend(entries)

    def truncate_to(self, new_len: int) -> None:
        keep = new_len - self.snapshot_len
        if keep < 0:
            raise ValueError("cannot truncate snapshot")
        del self.entries[keep:]

    def slice_from(self, start: int) -> list[LogEntry]:
        offset = start - self.snapshot_len
        if offset < 0 or offset > len(self.entries):
            raise IndexError("index out of bound")
        return self.entries[offset:]

    def compact(self, index: int, snapshot: bytes | None) -> bool:
        """Fold entries up to and including index into a snapshot.

        Returns False, changing nothing, if that would move the snapshot back.
        """
        last_term = self.term_at(index)
        new_len = index + 1
        offset = new_len - self.snapshot_len
        if offset <= 0:
            return False
        self.entries = self.entries[offset:]
        self.snapshot_len = new_len
        self.last_term_in_snapshot = last_term
        self.snapshot = snapshot
        return True

    def install(self, last_included_index: int, last_included_term: int,
                snapshot: bytes | None) -> bool:
        """Replace the prefix with a snapshot received from a leader.

        Returns False, changing nothing, if the snapshot is stale.
        """
        if last_included_index < self.snapshot_len:
            return False
        new_len = last_included_index + 1
        offset = new_len - self.snapshot_len
        self.entries = self.entries[offset:] if offset < len(self.entries) else []
        self.snapshot_len = new_len
        self.last_term_in_snapshot = last_included_term
        self.snapshot = snapshot
        return True