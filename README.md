# shardraft

Building blocks for fault-tolerant replicated services, in three parts:

- `shardraft.raft`: a Raft peer with leader election, log replication,
  persistence through a `Persister`, and log compaction with snapshots.
- `shardraft.shardctrler`: the records of a shard controller (`Config`,
  request ids, RPC arguments and replies) and a `Clerk` that talks to one.
- `shardraft.shardkv`: the records and `Clerk` of a sharded key/value store,
  the `key2shard` function, and `ShardStore`, the per-group shard state.

There are no third-party dependencies.

## Installing

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Raft

`shardraft.raft.driver.make(peers, me, persister, apply_queue)` creates a
`Raft` peer and starts its background threads (elections, heartbeats and
delivery of committed entries). `peers` is a list of
`shardraft.raft.messages.Peer` endpoints, one per server with this server at
index `me`; `persister` is a `shardraft.raft.persister.Persister`; committed
entries and installed snapshots arrive on the `queue.Queue` `apply_queue` as
`ApplyMsg` values.

A `Raft` peer offers:

- `start(command)` returns `(index, term, is_leader)`; when the peer leads, the
  command is appended and replication begins at once.
- `get_state()` returns `(term, is_leader)`.
- `snapshot(index, data)` tells the peer that the service has saved a snapshot
  through `index`, so the log up to there is discarded.
- `request_vote`, `append_entries` and `install_snapshot` are the RPC handlers.
- `kill()` stops the background loops; `killed()` reports whether it was called.

Peer 0 starts as leader of term 1. Log indices start from 1. Term, vote and
log are pickled and saved together with the snapshot on every change.

`Peer` delivers calls within the process: `Peer(raft)` registers a service
under its class name, and `call("Raft.RequestVote", args)` invokes
`raft.request_vote(args)` and returns the reply. A disabled endpoint
(`peer.enabled = False`) returns `None`, as a lost message would.

`shardraft.raft.raftlog.SnapshotLog` is the log itself, with its compacted
prefix; `shardraft.raft.persister.Persister` stores Raft state and snapshot
under one lock. Setting the `VERBOSE` environment variable to a positive
integer turns on timestamped, topic-tagged debug lines logged through the
`shardraft.raft` logger (`shardraft.raft.debug`).

## Shard controller client

`shardraft.shardctrler.client.Clerk(servers)` sends requests to a list of
`Peer` endpoints:

- `join({gid: [server names]})` asks for replica groups to be added,
- `leave([gid, ...])` asks for them to be removed,
- `move(shard, gid)` asks for one shard to be given to a group,
- `query(num)` returns the `Config` the service answers with.

Each request carries a `RequestId` (a random client id and a sequence number).
The clerk tries every server in turn and retries every 0.1 s until one replies
with `Err.OK`.

A `Config` has a number, a list of `N_SHARDS` (10) group ids, and a map of
group ids to server names; `Config()` is configuration 0, with no groups and
every shard assigned to group 0.

## Sharded key/value client and shard state

`shardraft.shardkv.client.Clerk(ctrlers, make_end)` offers `get(key)`,
`put(key, value)` and `append(key, value)`. It looks up the owning group in
its cached `Config`, calls that group's servers through `make_end(name)`, and
on failure or `Err.WRONG_GROUP` waits 0.1 s and fetches the latest config from
the controller with `query(-1)`. `get` returns `""` for a missing key. A key's
shard is `key2shard(key)`: the first byte of the key modulo the number of
shards.

`shardraft.shardkv.state.ShardStore(gid)` holds one group's data, per-shard
duplicate tables and shard states (`MISSING`, `NORMAL`, `RETIRING`). It
applies `KvOp`s, moves to the next configuration with `update_config`, accepts
and removes handed-over shards (`accept_shard_data`, `remove_shard_data`),
lists shards still to be sent (`retiring_shards`), and saves and restores
itself with `make_snapshot` and `apply_snapshot`. It takes no lock; the caller
serialises access.

## What this package does not do

It contains no shard controller server and no key/value server: nothing here
runs a replicated controller that keeps the configuration history and
rebalances shards, and nothing applies client operations through Raft to a
`ShardStore` or moves shards between groups. The two clerks need such
services to talk to: objects registered on a `Peer` whose class is named
`ShardCtrler` (with `query`, `join`, `leave` and `move` handlers) or
`ShardKV` (with `get` and `put_append` handlers), each returning a reply that
has an `err` field. Messages travel only between objects in one process;
there is no network transport.