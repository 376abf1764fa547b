[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "shardraft"
version = "0.1.0"
description = "Raft consensus peers, with shard controller and sharded key/value clients and shard state"
requires-python = ">=3.10"
dependencies = []
keywords = ["raft", "consensus", "sharding", "key-value", "replication", "distributed"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["shardraft"]

[tool.pytest.ini_options]
addopts = "-ra"
