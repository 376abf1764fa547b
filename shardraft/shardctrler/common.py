"""Shard controller records: configurations, errors and RPC arguments and replies.

Config number 0 is the initial configuration, with no groups and every
shard assigned to group 0, the invalid group.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

N_SHARDS = 10


def _unassigned() -> list[int]:
    return [0] * N_SHARDS


@dataclass
class Config:
    """An assignment of shards to replica groups."""

    num: int = 0
    shards: list[int] = field(default_factory=_unassigned)
    groups: dict[int, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.shards = list(self.shards)
        if len(self.shards) != N_SHARDS:
            raise ValueError(f"a config maps exactly {N_SHARDS} shards, got {len(self.shards)}")

    def copy(self) -> Config:
        """Return a copy that shares nothing with this config."""
        return Config(self.num, list(self.shards),
                      {gid: list(servers) for gid, servers in self.groups.items()})


class Err(str, enum.Enum):
    OK = "OK"
    RETRY = "ErrRetry"
    TIMEOUT = "ErrTimeout"
    WRONG_LEADER = "ErrWrongLeader"


@dataclass(frozen=True)
class RequestId:
    client_id: int
    seq_no: int


@dataclass
class JoinArgs:
    req_id: RequestId
    servers: dict[int, list[str]] = field(default_factory=dict)


@dataclass
class JoinReply:
    err: Err | None = None


@dataclass
class LeaveArgs:
    req_id: RequestId
    gids: list[int] = field(default_factory=list)


@dataclass
class LeaveReply:
    err: Err | None = None


@dataclass
class MoveArgs:
    req_id: RequestId
    shard: int
    gid: int


@dataclass
class MoveReply:
    err: Err | None = None


@dataclass
class QueryArgs:
    req_id: RequestId
    num: int


@dataclass
class QueryReply:
    err: Err | None = None
    config: Config = field(default_factory=Config)