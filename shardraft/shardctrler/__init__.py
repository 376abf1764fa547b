"""Shard controller records and the client that talks to a controller service."""