"""Roles, apply messages, RPC argument and reply records, and local RPC endpoints."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Any

from shardraft.raft.raftlog import LogEntry


class Role(enum.IntEnum):
    FOLLOWER = 0
    LEADER = 1
    CANDIDATE = 2

    def __str__(self) -> str:
        return self.name.lower()


def _handler_name(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class Peer:
    """An RPC endpoint that delivers calls to service objects in this process.

    Services are addressed by class name, as in "Raft.RequestVote", which
    calls the request_vote method of the registered Raft object. While the
    endpoint is disabled every call fails and returns None.
    """

    def __init__(self, *services: Any, enabled: bool = True) -> None:
        self.services = {type(svc).__name__: svc for svc in services}
        self.enabled = enabled

    def call(self, method: str, args: Any) -> Any | None:
        """Send args to a handler; return its reply, or None if unreachable."""
        if not self.enabled:
            return None
        service_name, _, handler = method.partition(".")
        try:
            service = self.services[service_name]
        except KeyError:
            raise LookupError(f"unknown service {service_name} in {method}") from None
        func = getattr(service, _handler_name(handler), None)
        if func is None or not callable(func):
            raise LookupError(f"unknown method {handler} in {method}")
        return func(args)


@dataclass
class ApplyMsg:
    """A committed command or a snapshot, delivered to the service."""

    command_valid: bool = False
    command: Any = None
    command_index: int = 0
    snapshot_valid: bool = False
    snapshot: bytes | None = None
    snapshot_term: int = 0
    snapshot_index: int = 0


@dataclass
class RequestVoteArgs:
    term: int
    candidate_id: int
    last_log_index: int
    last_log_term: int


@dataclass
class RequestVoteReply:
    term: int = 0
    vote_granted: bool = False


@dataclass
class AppendEntriesArgs:
    term: int
    leader_id: int
    leader_commit: int
    prev_log_index: int
    prev_log_term: int
    entries: list[LogEntry] = field(default_factory=list)


@dataclass
class AppendEntriesReply:
    term: int = 0
    success: bool = False


@dataclass
class InstallSnapshotArgs:
    term: int
    leader_id: int
    last_included_index: int
    last_included_term: int
    snapshot: bytes | None = None


@dataclass
class InstallSnapshotReply:
    pass