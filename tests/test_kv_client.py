import pytest

from shardraft.raft.messages import Peer
from shardraft.shardctrler.common import N_SHARDS, Config, Err as CtrlerErr, QueryReply
from shardraft.shardkv import client as kv_client
from shardraft.shardkv.client import Clerk, key2shard, nrand
from shardraft.shardkv.common import Err, GetReply, PutAppendReply


class ShardCtrler:
    def __init__(self, config):
        self.config = config
        self.queries = 0

    def query(self, args):
        self.queries += 1
        return QueryReply(CtrlerErr.OK, self.config.copy())


class ShardKV:
    def __init__(self, store=None, err=None):
        self.store = store if store is not None else {}
        self.err = err
        self.requests = []

    def get(self, args):
        self.requests.append(args.req_id)
        if self.err is not None:
            return GetReply(self.err)
        if args.key not in self.store:
            return GetReply(Err.NO_KEY, "")
        return GetReply(Err.OK, self.store[args.key])

    def put_append(self, args):
        self.requests.append(args.req_id)
        if self.err is not None:
            return PutAppendReply(self.err)
        if args.op == "Put":
            self.store[args.key] = args.value
        else:
            self.store[args.key] = self.store.get(args.key, "") + args.value
        return PutAppendReply(Err.OK)


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr(kv_client, "RETRY_INTERVAL", 0)


def make_clerk(servers, config):
    ctrler = ShardCtrler(config)
    peers = {name: Peer(svc) for name, svc in servers.items()}
    clerk = Clerk([Peer(ctrler)], lambda name: peers[name])
    return clerk, ctrler


def single_group_config(names):
    return Config(1, [1] * N_SHARDS, {1: list(names)})


def test_key2shard_empty_key_is_shard_zero():
    assert key2shard("") == 0


def test_key2shard_matches_first_byte():
    for key in ["0", "1", "9", "abc", "Zz"]:
        assert key2shard(key) == ord(key[0]) % 10


@pytest.mark.parametrize("key", ["a", "hello", "42", "x" * 50])
def test_key2shard_in_range_and_depends_on_first_char(key):
    shard = key2shard(key)
    assert 0 <= shard < N_SHARDS
    assert key2shard(key[0]) == shard


def test_nrand_in_range():
    values = {nrand() for _ in range(20)}
    assert all(0 <= v < (1 << 62) for v in values)
    assert len(values) > 1


def test_put_then_get_round_trip():
    kv = ShardKV()
    clerk, ctrler = make_clerk({"s1": kv}, single_group_config(["s1"]))
    clerk.put("k", "v1")
    assert clerk.get("k") == "v1"
    assert ctrler.queries >= 1


def test_append_accumulates():
    kv = ShardKV()
    clerk, _ = make_clerk({"s1": kv}, single_group_config(["s1"]))
    clerk.put("k", "a")
    clerk.append("k", "b")
    clerk.append("k", "c")
    assert clerk.get("k") == kv.store["k"]
    assert kv.store["k"].startswith("a") and kv.store["k"].endswith("c")


def test_missing_key_gives_empty_string():
    clerk, _ = make_clerk({"s1": ShardKV()}, single_group_config(["s1"]))
    assert clerk.get("nothing") == ""


def test_skips_server_that_is_not_leader():
    follower = ShardKV(err=Err.WRONG_LEADER)
    leader = ShardKV({"k": "value"})
    clerk, _ = make_clerk({"f": follower, "l": leader}, single_group_config(["f", "l"]))
    assert clerk.get("k") == "value"
    assert len(follower.requests) >= 1


def test_request_ids_increase_per_call():
    kv = ShardKV()
    clerk, _ = make_clerk({"s1": kv}, single_group_config(["s1"]))
    clerk.put("a", "1")
    clerk.get("a")
    ids = kv.requests
    assert {r.client_id for r in ids} == {clerk.client_id}
    assert [r.seq_no for r in ids] == [1, 2]


def test_wrong_group_moves_to_refreshed_config():
    old = ShardKV(err=Err.WRONG_GROUP)
    new = ShardKV({"k": "fresh"})
    clerk, ctrler = make_clerk({"old": old, "new": new}, single_group_config(["old"]))
    clerk.config = single_group_config(["old"])
    ctrler.config = Config(2, [2] * N_SHARDS, {2: ["new"]})
    assert clerk.get("k") == "fresh"
    assert len(old.requests) == 1
    assert clerk.config.num == 2