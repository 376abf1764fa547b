"""Raft consensus peers, with shard controller and sharded key/value clients and shard state."""

__version__ = "0.1.0"