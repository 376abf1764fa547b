import pytest

from shardraft.shardctrler.common import N_SHARDS, Config
from shardraft.shardkv.common import Err, ExecutionResult, RequestId
from shardraft.shardkv.state import (
    KvOp,
    RemoveShardOp,
    ShardData,
    ShardState,
    ShardStore,
    copy_shard_data,
)

GROUPS_1 = {100: ["server-100-0"]}
GROUPS_2 = {100: ["server-100-0"], 101: ["server-101-0"]}


def config1():
    return Config(1, [100] * N_SHARDS, GROUPS_1)


def config2():
    return Config(2, [100] * 5 + [101] * 5, GROUPS_2)


def req(seq, client=9):
    return RequestId(client, seq)


def test_fresh_store_serves_nothing():
    store = ShardStore(100)
    assert store.is_in_service(0) == Err.WRONG_GROUP
    assert store.ready_for_new_config() is True


def test_first_config_starts_shards_empty_and_normal():
    store = ShardStore(100)
    assert store.update_config(config1()) is True
    assert all(store.shards_state[s] == ShardState.NORMAL for s in range(N_SHARDS))
    assert store.is_in_service(3) == Err.OK
    assert store.kv_data[3] == {}


def test_non_consecutive_config_is_refused():
    store = ShardStore(100)
    assert store.update_config(config2()) is False
    assert store.config.num == 0


def test_execute_put_append_get():
    store = ShardStore(100)
    store.update_config(config1())
    store.execute_kv_op(0, KvOp(req(1), "Put", "k", "a"))
    store.execute_kv_op(0, KvOp(req(2), "Append", "k", "b"))
    assert store.execute_kv_op(0, KvOp(req(3), "Get", "k")) == "ab"
    assert store.execute_kv_op(0, KvOp(req(4), "Get", "missing")) == ""


def test_unknown_op_raises():
    store = ShardStore(100)
    store.update_config(config1())
    with pytest.raises(ValueError):
        store.execute_kv_op(0, KvOp(req(1), "Delete", "k"))


def test_duplicate_table():
    store = ShardStore(100)
    store.update_config(config1())
    store.op_results[0][9] = ExecutionResult(req(2), "x")
    assert store.query_duplicate_table(0, req(2)) == ("x", True)
    assert store.query_duplicate_table(0, req(3)) == ("", False)
    assert store.query_duplicate_table(0, req(1, client=5)) == ("", False)
    assert store.query_duplicate_table(4, req(2)) == ("", False)
    with pytest.raises(RuntimeError):
        store.query_duplicate_table(0, req(1))


def test_losing_shards_retires_and_removes_them():
    store = ShardStore(100)
    store.update_config(config1())
    store.execute_kv_op(5, KvOp(req(1), "Put", "five", "v5"))
    assert store.update_config(config2()) is True
    assert store.shards_state[5] == ShardState.RETIRING
    assert store.shards_state[0] == ShardState.NORMAL
    assert store.is_in_service(5) == Err.WRONG_GROUP
    assert store.ready_for_new_config() is False

    outgoing = store.retiring_shards()
    assert [d.shard for d in outgoing] == [5, 6, 7, 8, 9]
    assert all(d.config_version == 2 for d in outgoing)
    assert outgoing[0].kv_data == {"five": "v5"}
    outgoing[0].kv_data["five"] = "changed"
    assert store.kv_data[5]["five"] == "v5"

    assert store.remove_shard_data(RemoveShardOp(1, 5)) is False
    assert store.remove_shard_data(RemoveShardOp(2, 5)) is True
    assert store.shards_state[5] == ShardState.NORMAL
    assert 5 not in store.kv_data
    assert store.remove_shard_data(RemoveShardOp(2, 5)) is False


def test_gaining_shards_waits_for_data():
    store = ShardStore(101)
    store.update_config(config1())
    store.update_config(config2())
    assert store.is_in_service(5) == Err.NOT_READY
    assert store.is_in_service(0) == Err.WRONG_GROUP

    results = {9: ExecutionResult(req(4), "")}
    assert store.accept_shard_data(ShardData(1, 5, {"k": "v"}, results)) is False
    assert store.is_in_service(5) == Err.NOT_READY

    assert store.accept_shard_data(ShardData(2, 5, {"k": "v"}, results)) is True
    assert store.is_in_service(5) == Err.OK
    assert store.execute_kv_op(5, KvOp(req(5), "Get", "k")) == "v"
    assert store.query_duplicate_table(5, req(4)) == ("", True)

    # a second delivery leaves the accepted data alone
    assert store.accept_shard_data(ShardData(2, 5, {"k": "other"}, {})) is True
    assert store.kv_data[5] == {"k": "v"}


def test_snapshot_round_trip():
    store = ShardStore(100)
    store.update_config(config1())
    store.execute_kv_op(2, KvOp(req(1), "Put", "k", "v"))
    store.op_results[2][9] = ExecutionResult(req(1), "")
    store.update_config(config2())
    store.last_applied = 17

    restored = ShardStore(100)
    restored.apply_snapshot(store.make_snapshot())
    assert restored.kv_data == store.kv_data
    assert restored.op_results == store.op_results
    assert restored.shards_state == store.shards_state
    assert restored.config == store.config
    assert restored.last_applied == 17


def test_bad_snapshot_raises():
    with pytest.raises(ValueError):
        ShardStore(100).apply_snapshot(b"not a snapshot")


def test_copy_shard_data_is_independent():
    kv = {"a": "1"}
    results = {1: ExecutionResult(req(1, client=1), "1")}
    kv_copy, results_copy = copy_shard_data(kv, results)
    kv_copy["b"] = "2"
    results_copy.clear()
    assert kv == {"a": "1"}
    assert list(results) == [1]


def test_copy_shard_data_of_nothing_is_empty():
    assert copy_shard_data(None, None) == ({}, {})