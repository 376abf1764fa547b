"""Background work that drives a Raft peer: elections, replication, heartbeats, delivery."""

from __future__ import annotations

import enum
import queue
import random
import threading
import time
from typing import Any, Callable, Sequence

from shardraft.raft.debug import LogTopic
from shardraft.raft.messages import (
    AppendEntriesArgs,
    AppendEntriesReply,
    ApplyMsg,
    InstallSnapshotArgs,
    Peer,
    RequestVoteArgs,
    RequestVoteReply,
    Role,
)
from shardraft.raft.node import Raft
from shardraft.raft.persister import Persister

ELECTION_TIMEOUT = 0.25
HEARTBEAT_INTERVAL = 0.08
RPC_TIMEOUT = 0.04
_NOTIFY_POLL = 0.1


class _Outcome(enum.Enum):
    OK = "ok"
    CONTINUE = "continue"
    ABORT = "abort"


def _spawn(target: Callable[..., Any], *args: Any) -> None:
    threading.Thread(target=target, args=args, daemon=True).start()


class RaftRunner:
    """Runs the election, heartbeat and applier loops of one Raft peer."""

    def __init__(self, node: Raft) -> None:
        self.node = node
        self.threads: list[threading.Thread] = []

    def start(self) -> None:
        """Start the background loops and replicate on every new entry."""
        self.node.on_new_entry = self._replicate_logs
        for loop in (self.election_loop, self.heartbeat_loop, self.applier_loop):
            thread = threading.Thread(target=loop, name=f"raft-{self.node.me}-{loop.__name__}",
                                      daemon=True)
            thread.start()
            self.threads.append(thread)

    def _replicate_logs(self) -> None:
        _spawn(self.broadcast_append_entries, False)

    # replication

    def _make_append_args(self, peer: int) -> AppendEntriesArgs:
        """Build AppendEntries arguments for a peer; the caller holds the lock."""
        node = self.node
        log = node.log
        if log.is_trimmed(node.next_index[peer]):
            node.next_index[peer] = len(log)
        next_index = node.next_index[peer]
        prev = next_index - 1
        return AppendEntriesArgs(
            term=node.current_term,
            leader_id=node.me,
            leader_commit=node.commit_index,
            prev_log_index=prev,
            prev_log_term=log.term_at(prev),
            entries=list(log.slice_from(next_index)),
        )

    def _make_install_args(self) -> InstallSnapshotArgs:
        """Build InstallSnapshot arguments; the caller holds the lock."""
        node = self.node
        return InstallSnapshotArgs(
            term=node.current_term,
            leader_id=node.me,
            last_included_index=node.log.snapshot_len - 1,
            last_included_term=node.log.last_term_in_snapshot,
            snapshot=node.log.snapshot,
        )

    def _handle_append_reply(self, peer: int, args: AppendEntriesArgs,
                             reply: AppendEntriesReply, installed: set[int],
                             send_append: Callable[[int, AppendEntriesArgs], None],
                             send_install: Callable[[int, InstallSnapshotArgs], None]) -> _Outcome:
        node = self.node
        with node.lock:
            if node.role != Role.LEADER:
                return _Outcome.ABORT
            if node.current_term < reply.term:
                node.enter_new_term_as_follower(reply.term)
                return _Outcome.ABORT
            if node.current_term > reply.term:
                return _Outcome.CONTINUE

            log = node.log
            if not reply.success:
                # skip back over every entry sharing the rejected term
                prev = args.prev_log_index
                while prev > 0 and not log.is_trimmed(prev) and log.term_at(prev) == args.prev_log_term:
                    prev -= 1
                if peer not in installed and log.is_trimmed(prev):
                    node.next_index[peer] = log.snapshot_len
                    _spawn(send_install, peer, self._make_install_args())
                else:
                    node.next_index[peer] = prev + 1
                    _spawn(send_append, peer, self._make_append_args(peer))
                return _Outcome.CONTINUE

            # replies may arrive out of order: rely on what was sent
            new_match = args.prev_log_index + len(args.entries)
            if node.match_index[peer] < new_match:
                node.match_index[peer] = new_match
                node.next_index[peer] = new_match + 1
            return _Outcome.OK

    def broadcast_append_entries(self, is_heartbeat: bool) -> None:
        """Send AppendEntries to peers, handle replies for a short while, then try to commit."""
        node = self.node
        responses: queue.Queue[tuple[str, int, Any, Any]] = queue.Queue()

        def send_append(peer: int, args: AppendEntriesArgs) -> None:
            reply = node.peers[peer].call("Raft.AppendEntries", args)
            if reply is not None:
                responses.put(("append", peer, args, reply))

        def send_install(peer: int, args: InstallSnapshotArgs) -> None:
            reply = node.peers[peer].call("Raft.InstallSnapshot", args)
            if reply is not None:
                responses.put(("install", peer, args, reply))

        targets = 0
        with node.lock:
            if node.role != Role.LEADER:
                return
            for peer in range(len(node.peers)):
                if peer == node.me:
                    continue
                if not is_heartbeat and node.next_index[peer] >= len(node.log):
                    continue
                targets += 1
                _spawn(send_append, peer, self._make_append_args(peer))

        deadline = time.monotonic() + RPC_TIMEOUT
        received = 0
        installed: set[int] = set()
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                kind, peer, args, reply = responses.get(timeout=remaining)
            except queue.Empty:
                break
            if kind == "install":
                with node.lock:
                    installed.add(peer)
                    _spawn(send_append, peer, self._make_append_args(peer))
                continue
            outcome = self._handle_append_reply(peer, args, reply, installed,
                                                send_append, send_install)
            if outcome is _Outcome.ABORT:
                return
            if outcome is _Outcome.CONTINUE:
                continue
            received += 1
            if received >= targets:
                break

        self.leader_try_commit()

    def leader_try_commit(self) -> bool:
        """Advance the commit index to the highest majority-replicated current-term entry."""
        node = self.node
        with node.lock:
            if node.role != Role.LEADER:
                return False
            new_index = node.log.last_index()
            node.match_index[node.me] = new_index
            while new_index > node.commit_index:
                replicated = sum(1 for match in node.match_index if match >= new_index)
                if (replicated > len(node.peers) // 2
                        and node.log.term_at(new_index) == node.current_term):
                    node.commit_index = new_index
                    node.notify_new_commit()
                    return True
                new_index -= 1
            return False

    # elections

    def start_election(self) -> bool:
        """Become a candidate in a new term; return True if a majority voted for us."""
        node = self.node
        replies: queue.Queue[RequestVoteReply] = queue.Queue()

        def ask(peer: int, args: RequestVoteArgs) -> None:
            reply = node.peers[peer].call("Raft.RequestVote", args)
            if reply is not None:
                replies.put(reply)

        with node.lock:
            node.enter_new_term(node.current_term + 1, node.me, Role.CANDIDATE)
            current_term = node.current_term
            last_index = node.log.last_index()
            last_term = node.log.term_at(last_index)
            node.update_heartbeat()
            for peer in range(len(node.peers)):
                if peer == node.me:
                    continue
                _spawn(ask, peer, RequestVoteArgs(current_term, node.me, last_index, last_term))

        votes = 1
        received = 0
        deadline = time.monotonic() + RPC_TIMEOUT
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                reply = replies.get(timeout=remaining)
            except queue.Empty:
                break
            if node.role_now != Role.CANDIDATE:
                return False
            if current_term > reply.term:
                continue
            if current_term < reply.term:
                with node.lock:
                    node.enter_new_term_as_follower(reply.term)
                return False
            if reply.vote_granted:
                votes += 1
            received += 1
            if received == len(node.peers) - 1:
                break

        if node.role_now != Role.CANDIDATE:
            return False
        node.dbg(LogTopic.INFO, "got %d votes", votes)
        return votes > len(node.peers) // 2

    # loops

    def election_loop(self) -> None:
        node = self.node
        node.update_heartbeat()
        while not node.killed():
            if (node.role_now != Role.LEADER
                    and time.monotonic() - node.last_heartbeat > ELECTION_TIMEOUT):
                node.dbg(LogTopic.TIMER, "election timeout, start election")
                if self.start_election():
                    with node.lock:
                        node.dbg(LogTopic.LEADER, "is now leader!")
                        node.role = Role.LEADER
                        node.init_leader_state()
                    self.broadcast_append_entries(True)
                else:
                    node.dbg(LogTopic.INFO, "election failed, still %s", str(node.role_now))
            time.sleep(random.uniform(0.05, 0.25))

    def heartbeat_loop(self) -> None:
        node = self.node
        while not node.killed():
            time.sleep(HEARTBEAT_INTERVAL)
            if node.role_now == Role.LEADER:
                self.broadcast_append_entries(True)

    def applier_loop(self) -> None:
        node = self.node
        while not node.killed():
            try:
                node.notify_queue.get(timeout=_NOTIFY_POLL)
            except queue.Empty:
                continue
            node.apply_new_logs_or_snapshot()


def make(peers: Sequence[Peer], me: int, persister: Persister,
         apply_queue: "queue.Queue[ApplyMsg]") -> Raft:
    """Create a Raft peer and start its background work."""
    node = Raft(peers, me, persister, apply_queue)
    RaftRunner(node).start()
    return node