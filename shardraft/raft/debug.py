"""Topic-based debug output, switched on by the VERBOSE environment variable."""

from __future__ import annotations

import enum
import logging
import os
import re
import threading
import time
from dataclasses import dataclass, field

_logger = logging.getLogger("shardraft.raft")


class LogTopic(str, enum.Enum):
    CLIENT = "CLNT"
    COMMIT = "CMIT"
    DROP = "DROP"
    ERROR = "ERRO"
    INFO = "INFO"
    LEADER = "LEAD"
    LOG1 = "LOG1"
    LOG2 = "LOG2"
    PERSIST = "PERS"
    SNAP = "SNAP"
    TERM = "TERM"
    TEST = "TEST"
    TIMER = "TIMR"
    TRACE = "TRCE"
    VOTE = "VOTE"
    WARN = "WARN"


@dataclass
class _DebugState:
    verbosity: int = 0
    start: float = field(default_factory=time.monotonic)
    initialized: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


_state = _DebugState()


def get_verbosity() -> int:
    """Read the verbosity level from VERBOSE; 0 when unset."""
    value = os.environ.get("VERBOSE", "")
    if value == "":
        return 0
    if not re.fullmatch(r"[+-]?\d+", value):
        raise ValueError(f"Invalid verbosity {value}")
    return int(value)


def init_debug() -> int:
    """Set up debug output once per process and return the active verbosity."""
    with _state.lock:
        if not _state.initialized:
            _state.verbosity = get_verbosity()
            _state.start = time.monotonic()
            _state.initialized = True
        return _state.verbosity


def dprint(topic: LogTopic | str, message: str, *args: object) -> str | None:
    """Log a debug line under a topic; return the line, or None when silent."""
    if _state.verbosity <= 0:
        return None
    elapsed = int((time.monotonic() - _state.start) * 1000)
    name = topic.value if isinstance(topic, LogTopic) else str(topic)
    body = message % args if args else message
    line = f"{elapsed:06d} {name} {body}"
    _logger.info(line)
    return line