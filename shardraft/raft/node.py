"""A single Raft peer: its state, persistence and RPC handlers."""

from __future__ import annotations

import pickle
import queue
import threading
import time
from typing import Any, Callable, Sequence

from shardraft.raft.debug import LogTopic, dprint, init_debug
from shardraft.raft.messages import (
    AppendEntriesArgs,
    AppendEntriesReply,
    ApplyMsg,
    InstallSnapshotArgs,
    InstallSnapshotReply,
    Peer,
    RequestVoteArgs,
    RequestVoteReply,
    Role,
)
from shardraft.raft.persister import Persister
from shardraft.raft.raftlog import LogEntry, SnapshotLog


class Raft:
    """State and RPC handlers of one Raft peer.

    No background work starts here; a runner drives elections, heartbeats
    and delivery of committed entries. The runner may set ``on_new_entry``
    to be told when ``start`` has appended a command.
    """

    def __init__(self, peers: Sequence[Peer], me: int, persister: Persister,
                 apply_queue: "queue.Queue[ApplyMsg]") -> None:
        init_debug()
        self.lock = threading.RLock()
        self.peers = list(peers)
        self.persister = persister
        self.me = me
        self.apply_queue = apply_queue
        self.notify_queue: queue.Queue[bool] = queue.Queue(maxsize=1)
        self.snap_msg: ApplyMsg | None = None
        self.on_new_entry: Callable[[], None] | None = None
        self._dead = threading.Event()

        self._heartbeat_lock = threading.Lock()
        self._last_heartbeat = time.monotonic()

        self.current_term = 1
        if me == 0:
            # peer 0 starts out as leader
            self.voted_for = me
            self.role = Role.LEADER
        else:
            self.voted_for = -1
            self.role = Role.FOLLOWER

        self.log = SnapshotLog()
        self.commit_index = 0
        self.last_applied = 0
        self.next_index = [0] * len(self.peers)
        self.match_index = [0] * len(self.peers)
        self.init_leader_state()

        self.read_persist(persister.read_raft_state(), persister.read_snapshot())

    # helpers shared with the runner

    def dbg(self, topic: LogTopic, message: str, *args: object) -> None:
        dprint(topic, f"S{self.me} " + message, *args)

    @property
    def role_now(self) -> Role:
        with self.lock:
            return self.role

    @property
    def last_heartbeat(self) -> float:
        with self._heartbeat_lock:
            return self._last_heartbeat

    def update_heartbeat(self) -> None:
        with self._heartbeat_lock:
            self._last_heartbeat = time.monotonic()

    def enter_new_term(self, new_term: int, voted_for: int, role: Role) -> None:
        """Move to a new term; the caller holds the lock."""
        self.dbg(LogTopic.TERM, "enter new term %d as %s", new_term, str(role))
        self.current_term = new_term
        self.voted_for = voted_for
        self.persist()
        self.role = role

    def enter_new_term_as_follower(self, new_term: int) -> None:
        self.enter_new_term(new_term, -1, Role.FOLLOWER)

    def notify_new_commit(self) -> None:
        try:
            self.notify_queue.put_nowait(True)
        except queue.Full:
            pass

    def update_snapshot(self) -> None:
        """Prepare a snapshot message for the applier and wake it."""
        self.snap_msg = ApplyMsg(
            snapshot_valid=True,
            snapshot_index=self.log.snapshot_len - 1,
            snapshot_term=self.log.last_term_in_snapshot,
            snapshot=self.log.snapshot,
        )
        self.notify_new_commit()

    def init_leader_state(self) -> None:
        self.next_index = [len(self.log)] * len(self.peers)
        self.match_index = [0] * len(self.peers)

    # public API

    def get_state(self) -> tuple[int, bool]:
        """Return the current term and whether this peer believes it leads."""
        with self.lock:
            return self.current_term, self.role == Role.LEADER

    def persist(self) -> None:
        """Save term, vote and log together with the current snapshot."""
        with self.lock:
            state = pickle.dumps((
                self.current_term,
                self.voted_for,
                self.log.entries,
                self.log.snapshot_len,
                self.log.last_term_in_snapshot,
            ))
            self.persister.save(state, self.log.snapshot)

    def read_persist(self, data: bytes | None, snapshot: bytes | None) -> None:
        """Restore state saved by persist; empty data leaves state untouched."""
        if not data:
            return
        try:
            term, voted_for, entries, snapshot_len, last_term = pickle.loads(data)
        except Exception as exc:
            raise ValueError("bad persisted state") from exc
        with self.lock:
            self.current_term = term
            self.voted_for = voted_for
            self.log = SnapshotLog(list(entries), snapshot_len, last_term, snapshot)
            last_included = snapshot_len - 1
            if last_included > 0:
                self.commit_index = last_included
                self.last_applied = last_included
            self.role = Role.FOLLOWER

    def snapshot(self, index: int, snapshot: bytes | None) -> None:
        """Trim the log through index, which the service has snapshotted."""
        with self.lock:
            old_len = self.log.snapshot_len
            if not self.log.compact(index, snapshot):
                return
            self.dbg(LogTopic.SNAP, "making snapshot len: %d -> %d",
                     old_len, self.log.snapshot_len)
            self.persist()

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        with self.lock:
            if args.term < self.current_term:
                return RequestVoteReply(self.current_term, False)

            if self.current_term < args.term:
                self.enter_new_term_as_follower(args.term)

            granted = False
            if self.voted_for in (-1, args.candidate_id):
                own_last = self.log.last_index()
                own_last_term = self.log.term_at(own_last)
                up_to_date = (args.last_log_term > own_last_term or
                              (args.last_log_term == own_last_term and
                               args.last_log_index >= own_last))
                if up_to_date:
                    if self.voted_for == -1:
                        self.voted_for = args.candidate_id
                        self.persist()
                    granted = True
                    self.update_heartbeat()

            self.dbg(LogTopic.VOTE, "vote %s to S%d", granted, args.candidate_id)
            return RequestVoteReply(self.current_term, granted)

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        with self.lock:
            if args.term < self.current_term:
                return AppendEntriesReply(self.current_term, False)

            self.update_heartbeat()

            if self.current_term < args.term:
                self.enter_new_term_as_follower(args.term)
            reply = AppendEntriesReply(self.current_term, False)

            log = self.log
            prev = args.prev_log_index
            if not prev < len(log) or (
                    log.term_at(prev) != args.prev_log_term and not log.is_trimmed(prev)):
                own_term = log.term_at(prev) if prev < len(log) else -1
                self.dbg(LogTopic.LOG1,
                         "reject log: self last idx=%d, term at prev idx=%d; "
                         "recv prev idx=%d, prev term=%d",
                         log.last_index(), own_term, prev, args.prev_log_term)
                return reply

            self_index = prev + 1
            recv_index = 0
            has_conflict = False
            while self_index < len(log) and recv_index < len(args.entries):
                if (log.term_at(self_index) != args.entries[recv_index].term
                        and not log.is_trimmed(self_index)):
                    has_conflict = True
                    break
                self_index += 1
                recv_index += 1
            if has_conflict:
                log.truncate_to(self_index)
                self.dbg(LogTopic.LOG1, "truncate logs to length %d", len(log))

            remaining = len(args.entries) - recv_index
            if len(log) - self_index >= remaining and remaining > 0:
                raise RuntimeError("log already holds entries it should not")
            new_entries = args.entries[recv_index:]
            log.append(*new_entries)
            if has_conflict or new_entries:
                self.persist()
                self.dbg(LogTopic.LOG2,
                         "log update: leader %d, term %d, leader commit %d, "
                         "prev log term %d, prev log index %d",
                         args.leader_id, args.term, args.leader_commit,
                         args.prev_log_term, prev)
            if new_entries:
                self.dbg(LogTopic.LOG1, "extend log length from %d to %d",
                         len(log) - len(new_entries), len(log))

            if self.commit_index < args.leader_commit:
                self.commit_index = min(args.leader_commit, log.last_index())
                self.notify_new_commit()
            reply.success = True
            return reply

    def install_snapshot(self, args: InstallSnapshotArgs) -> InstallSnapshotReply:
        with self.lock:
            if args.term < self.current_term:
                return InstallSnapshotReply()
            current_len = self.log.snapshot_len
            if not self.log.install(args.last_included_index, args.last_included_term,
                                    args.snapshot):
                self.dbg(LogTopic.WARN,
                         "no install current snapshot len: %d recv index: %d leader: %d",
                         current_len, args.last_included_index, args.leader_id)
                return InstallSnapshotReply()
            self.dbg(LogTopic.SNAP, "accept snapshot from S%d, last index %d",
                     args.leader_id, args.last_included_index)
            self.persist()
            self.last_applied = max(self.last_applied, args.last_included_index)
            self.commit_index = max(self.commit_index, args.last_included_index)
            self.update_snapshot()
            return InstallSnapshotReply()

    def start(self, command: Any) -> tuple[int, int, bool]:
        """Append a command if leader; return (index, term, is_leader)."""
        if self.killed():
            return -1, -1, False
        with self.lock:
            if self.role != Role.LEADER:
                return -1, -1, False
            index = len(self.log)
            term = self.current_term
            self.log.append(LogEntry(command, term))
            self.persist()
            self.dbg(LogTopic.WARN, "starting transaction %d", index)
        hook = self.on_new_entry
        if hook is not None:
            hook()
        return index, term, True

    def apply_new_logs_or_snapshot(self) -> list[ApplyMsg]:
        """Deliver a pending snapshot or newly committed entries; return them."""
        msgs: list[ApplyMsg] = []
        with self.lock:
            if self.snap_msg is not None:
                msgs.append(self.snap_msg)
                self.snap_msg = None
            else:
                self.dbg(LogTopic.COMMIT, "committing index range [%d, %d]",
                         self.last_applied + 1, self.commit_index)
                while self.last_applied < self.commit_index:
                    i = self.last_applied + 1
                    msgs.append(ApplyMsg(command_valid=True,
                                         command=self.log.at(i).command,
                                         command_index=i))
                    self.last_applied = i
        # never deliver while holding the lock: the service may call snapshot()
        for msg in msgs:
            self.apply_queue.put(msg)
        return msgs

    def kill(self) -> None:
        self._dead.set()

    def killed(self) -> bool:
        return self._dead.is_set()