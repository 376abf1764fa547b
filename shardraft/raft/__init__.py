"""Raft peers: log, persistence, messages, debug output and the background driver."""