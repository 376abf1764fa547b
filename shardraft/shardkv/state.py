"""Per-group shard state of a key/value server: data, duplicate tables and shard lifecycle.

The store holds no lock of its own; the server serialises access to it.
"""

from __future__ import annotations

import enum
import logging
import pickle
from dataclasses import dataclass, field
from typing import Mapping

from shardraft.shardctrler.common import N_SHARDS, Config
from shardraft.shardkv.common import Err, ExecutionResult, RequestId

_logger = logging.getLogger("shardraft.shardkv")

KvStore = dict[str, str]
DupTable = dict[int, ExecutionResult]


@dataclass
class KvOp:
    """A client operation as it travels through the Raft log."""

    req_id: RequestId
    type: str  # "Get", "Put" or "Append"
    key: str
    value: str = ""


@dataclass
class ShardData:
    """The contents of one shard at a configuration, as sent between groups."""

    config_version: int
    shard: int
    kv_data: KvStore = field(default_factory=dict)
    op_results: DupTable = field(default_factory=dict)


@dataclass
class ReConfigOp:
    config: Config


@dataclass
class RemoveShardOp:
    config_version: int
    shard: int


class ShardState(enum.IntEnum):
    MISSING = 0
    NORMAL = 1
    RETIRING = 2


def copy_shard_data(kv_data: Mapping[str, str] | None,
                    op_results: Mapping[int, ExecutionResult] | None) -> tuple[KvStore, DupTable]:
    """Return independent copies of a shard's data and duplicate table."""
    return dict(kv_data or {}), dict(op_results or {})


class ShardStore:
    """Key/value data, duplicate tables and shard states of one replica group."""

    def __init__(self, gid: int) -> None:
        self.gid = gid
        self.kv_data: dict[int, KvStore] = {}
        self.op_results: dict[int, DupTable] = {}
        self.shards_state: dict[int, ShardState] = {}
        self.config = Config()
        self.last_applied = 0

    def is_in_service(self, shard: int) -> Err:
        """OK if this group serves shard now; otherwise the reason it does not."""
        if self.config.shards[shard] != self.gid:
            return Err.WRONG_GROUP
        state = self.shards_state.get(shard, ShardState.MISSING)
        if state == ShardState.NORMAL:
            return Err.OK
        if state == ShardState.MISSING:
            return Err.NOT_READY
        return Err.WRONG_GROUP

    def ready_for_new_config(self) -> bool:
        """True once no shard is still waiting to arrive or to leave."""
        return all(state == ShardState.NORMAL for state in self.shards_state.values())

    def query_duplicate_table(self, shard: int, req_id: RequestId) -> tuple[str, bool]:
        """Return (value, True) if req_id was the client's last executed request."""
        recent = self.op_results.get(shard, {}).get(req_id.client_id)
        if recent is None or req_id.seq_no > recent.req_id.seq_no:
            return "", False
        if req_id.seq_no == recent.req_id.seq_no:
            return recent.value, True
        raise RuntimeError(
            f"group {self.gid}: shard {shard}: request {req_id} is older than {recent.req_id}")

    def execute_kv_op(self, shard: int, op: KvOp) -> str:
        """Apply op to the shard's data; return the value read by a Get, else ""."""
        if op.type == "Get":
            return self.kv_data.get(shard, {}).get(op.key, "")
        data = self.kv_data.setdefault(shard, {})
        if op.type == "Put":
            data[op.key] = op.value
        elif op.type == "Append":
            data[op.key] = data.get(op.key, "") + op.value
        else:
            raise ValueError(f"unsupported op {op.type}")
        return ""

    def update_config(self, new_config: Config) -> bool:
        """Move to the next configuration; refuse anything but the next number."""
        if new_config.num != self.config.num + 1:
            _logger.info("group %d: refuse config version %d, expected %d",
                         self.gid, new_config.num, self.config.num + 1)
            return False
        old = self.config
        for shard in range(N_SHARDS):
            prev_gid = old.shards[shard]
            prev = prev_gid == self.gid
            curr = new_config.shards[shard] == self.gid
            if not prev and curr:
                if prev_gid in old.groups:
                    state = ShardState.MISSING
                else:
                    # no valid previous owner: the shard starts out empty
                    state = ShardState.NORMAL
                    self.kv_data[shard] = {}
                    self.op_results[shard] = {}
            elif prev and not curr:
                state = ShardState.RETIRING
            else:
                state = ShardState.NORMAL
            self.shards_state[shard] = state
        self.config = new_config.copy()
        _logger.info("group %d: config %d, shard states %s",
                     self.gid, new_config.num, self.shards_state)
        return True

    def accept_shard_data(self, op: ShardData) -> bool:
        """Take in a shard sent by its previous owner; False on a version mismatch."""
        if op.config_version != self.config.num:
            _logger.info("group %d: current version %d, incoming version %d",
                         self.gid, self.config.num, op.config_version)
            return False
        if self.shards_state.get(op.shard, ShardState.MISSING) == ShardState.MISSING:
            self.kv_data[op.shard], self.op_results[op.shard] = copy_shard_data(
                op.kv_data, op.op_results)
            self.shards_state[op.shard] = ShardState.NORMAL
            _logger.info("group %d: accept shard %d at config %d",
                         self.gid, op.shard, op.config_version)
        return True

    def remove_shard_data(self, op: RemoveShardOp) -> bool:
        """Drop a shard handed over to its new owner; True if it was dropped."""
        if op.config_version != self.config.num:
            return False
        if self.shards_state.get(op.shard) != ShardState.RETIRING:
            return False
        self.kv_data.pop(op.shard, None)
        self.op_results.pop(op.shard, None)
        self.shards_state[op.shard] = ShardState.NORMAL
        _logger.info("group %d: remove shard %d", self.gid, op.shard)
        return True

    def retiring_shards(self) -> list[ShardData]:
        """Copies of every shard that must still be sent to its new owner."""
        result = []
        for shard in range(N_SHARDS):
            if self.shards_state.get(shard) == ShardState.RETIRING:
                kv_data, op_results = copy_shard_data(
                    self.kv_data.get(shard), self.op_results.get(shard))
                result.append(ShardData(self.config.num, shard, kv_data, op_results))
        return result

    def make_snapshot(self) -> bytes:
        return pickle.dumps((self.kv_data, self.op_results, self.shards_state,
                             self.config, self.last_applied))

    def apply_snapshot(self, data: bytes) -> None:
        """Restore the state saved by make_snapshot."""
        try:
            kv_data, op_results, shards_state, config, last_applied = pickle.loads(data)
        except Exception as exc:
            raise ValueError("bad snapshot") from exc
        self.kv_data = kv_data
        self.op_results = op_results
        self.shards_state = shards_state
        self.config = config
        self.last_applied = last_applied