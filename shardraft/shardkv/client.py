"""Client of the sharded key/value service.

The client asks the shard controller which group holds a key's shard, then
talks to that group.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Collection, Sequence

from shardraft.raft.messages import Peer
from shardraft.shardctrler.client import Clerk as CtrlerClerk
from shardraft.shardctrler.common import N_SHARDS, Config
from shardraft.shardkv.common import Err, GetArgs, PutAppendArgs, RequestId

RETRY_INTERVAL = 0.1


def key2shard(key: str) -> int:
    """The shard a key belongs to, decided by its first byte."""
    data = key.encode("utf-8")
    shard = data[0] if data else 0
    return shard % N_SHARDS


def nrand() -> int:
    """A random client id in [0, 2**62)."""
    return secrets.randbelow(1 << 62)


class Clerk:
    """Gets, puts and appends keys, retrying until the owning group answers."""

    def __init__(self, ctrlers: Sequence[Peer], make_end: Callable[[str], Peer]) -> None:
        self.sm = CtrlerClerk(ctrlers)
        self.make_end = make_end
        self.config = Config()
        self.client_id = nrand()
        self.seq_no = 0

    def _new_request_id(self) -> RequestId:
        self.seq_no += 1
        return RequestId(self.client_id, self.seq_no)

    def _try_group(self, key: str, method: str, args: Any,
                   done: Collection[Err]) -> Any | None:
        gid = self.config.shards[key2shard(key)]
        for name in self.config.groups.get(gid, ()):
            reply = self.make_end(name).call(method, args)
            if reply is None:
                continue
            if reply.err in done:
                return reply
            if reply.err == Err.WRONG_GROUP:
                break
        return None

    def _refresh(self) -> None:
        time.sleep(RETRY_INTERVAL)
        self.config = self.sm.query(-1)

    def get(self, key: str) -> str:
        """Return the value of key, or "" if it does not exist."""
        args = GetArgs(self._new_request_id(), key)
        while True:
            reply = self._try_group(key, "ShardKV.Get", args, (Err.OK, Err.NO_KEY))
            if reply is not None:
                return reply.value
            self._refresh()

    def put_append(self, key: str, value: str, op: str) -> None:
        """Put or append a value, op being "Put" or "Append"."""
        args = PutAppendArgs(self._new_request_id(), key, value, op)
        while True:
            if self._try_group(key, "ShardKV.PutAppend", args, (Err.OK,)) is not None:
                return
            self._refresh()

    def put(self, key: str, value: str) -> None:
        self.put_append(key, value, "Put")

    def append(self, key: str, value: str) -> None:
        self.put_append(key, value, "Append")