"""Sharded key/value records, client and per-group shard state."""