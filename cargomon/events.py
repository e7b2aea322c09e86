"""
Data types shared by the watch/build/run loop.

Everything the loop controller reacts to arrives as one of the message
classes below, posted on its queue by the watcher, the debounce timer or a
process monitor thread.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .builder import BuildTask
    from .supervisor import ChildProcess


class ChangeKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


@dataclass(frozen=True)
class ChangeEvent:
    path: str
    kind: ChangeKind
    timestamp: float = field(default_factory=time.monotonic)
    # Origin of a rename; None for every other kind.
    src_path: Optional[str] = None


class BuildStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProcessState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"


class LoopState(Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    BUILDING = "building"
    LAUNCHING = "launching"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class Message:
    timestamp: float = field(default_factory=time.monotonic, kw_only=True)


@dataclass
class FileChanged(Message):
    event: ChangeEvent


@dataclass
class DebounceElapsed(Message):
    generation: int


@dataclass
class BuildFinished(Message):
    task: "BuildTask"


@dataclass
class ProcessStarted(Message):
    child: "ChildProcess"


@dataclass
class ProcessExited(Message):
    child: "ChildProcess"


@dataclass
class WatchFailed(Message):
    error: Exception


@dataclass
class ShutdownRequested(Message):
    reason: str = "shutdown requested"

