"""Holder for a Raft peer's persisted state and the service snapshot."""

from __future__ import annotations

import threading


class Persister:
    """Stores Raft state and a snapshot, saved together as one atomic action."""

    def __init__(self, raftstate: bytes | None = None, snapshot: bytes | None = None) -> None:
        self._lock = threading.Lock()
        self._raftstate = bytes(raftstate or b"")
        self._snapshot = bytes(snapshot or b"")

    def copy(self) -> Persister:
        """Return a new persister holding the same content."""
        with self._lock:
            return Persister(self._raftstate, self._snapshot)

    def read_raft_state(self) -> bytes:
        with self._lock:
            return self._raftstate

    def raft_state_size(self) -> int:
        with self._lock:
            return len(self._raftstate)

    def save(self, raftstate: bytes | None, snapshot: bytes | None) -> None:
        """Save Raft state and snapshot together so they never get out of sync."""
        with self._lock:
            self._raftstate = bytes(raftstate or b"")
            self._snapshot = bytes(snapshot or b"")

    def read_snapshot(self) -> bytes:
        with self._lock:
            return self._snapshot

    def snapshot_size(self) -> int:
        with self._lock:
            return len(self._snapshot)