"""Client of the shard controller service."""

from __future__ import annotations

import secrets
import time
from typing import Any, Mapping, Sequence

from shardraft.raft.messages import Peer
from shardraft.shardctrler.common import (
    Config,
    Err,
    JoinArgs,
    LeaveArgs,
    MoveArgs,
    QueryArgs,
    RequestId,
)

RETRY_INTERVAL = 0.1


def nrand() -> int:
    """A random client id in [0, 2**62)."""
    return secrets.randbelow(1 << 62)


class Clerk:
    """Sends requests to the controller replicas until one of them succeeds."""

    def __init__(self, servers: Sequence[Peer]) -> None:
        self.servers = list(servers)
        self.client_id = nrand()
        self.seq_no = 0

    def _new_request_id(self) -> RequestId:
        self.seq_no += 1
        return RequestId(self.client_id, self.seq_no)

    def _call(self, method: str, args: Any) -> Any:
        while True:
            for server in self.servers:
                reply = server.call(method, args)
                if reply is not None and reply.err == Err.OK:
                    return reply
            time.sleep(RETRY_INTERVAL)

    def query(self, num: int) -> Config:
        """Fetch configuration num, or the latest one if num is -1 or unknown."""
        reply = self._call("ShardCtrler.Query", QueryArgs(self._new_request_id(), num))
        return reply.config

    def join(self, servers: Mapping[int, Sequence[str]]) -> None:
        """Add replica groups, given as gid -> server names."""
        groups = {gid: list(names) for gid, names in servers.items()}
        self._call("ShardCtrler.Join", JoinArgs(self._new_request_id(), groups))

    def leave(self, gids: Sequence[int]) -> None:
        """Remove replica groups."""
        self._call("ShardCtrler.Leave", LeaveArgs(self._new_request_id(), list(gids)))

    def move(self, shard: int, gid: int) -> None:
        """Hand one shard to a group."""
        self._call("ShardCtrler.Move", MoveArgs(self._new_request_id(), shard, gid))