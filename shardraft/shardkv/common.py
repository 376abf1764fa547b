"""Sharded key/value service records: errors, request ids, RPC arguments and replies."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class Err(str, enum.Enum):
    OK = "OK"
    NO_KEY = "ErrNoKey"
    WRONG_GROUP = "ErrWrongGroup"
    WRONG_LEADER = "ErrWrongLeader"
    NOT_READY = "ErrNotReady"
    TIMEOUT = "ErrTimeout"
    REJECT = "ErrReject"


@dataclass(frozen=True)
class RequestId:
    client_id: int
    seq_no: int


@dataclass
class ExecutionResult:
    """The most recent request executed for a client, with its result."""

    req_id: RequestId
    value: str = ""


@dataclass
class PutAppendArgs:
    req_id: RequestId
    key: str
    value: str
    op: str  # "Put" or "Append"


@dataclass
class PutAppendReply:
    err: Err | None = None


@dataclass
class GetArgs:
    req_id: RequestId
    key: str


@dataclass
class GetReply:
    err: Err | None = None
    value: str = ""