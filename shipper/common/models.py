"""Value types passed between the shipper components."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import NewType

from common.state_persistence import FileIdentity

# One line read from the source file, before escape decoding.
LogLine = NewType("LogLine", str)

CONTENT_TYPE_STRUCTURED = "application/json"
CONTENT_TYPE_PLAIN = "text/plain"


@dataclass(frozen=True)
class QueuedLine:
    """A line on its way to the broker, with the file position just past it.

    Once the line is published that position is safe to checkpoint.
    """

    line: LogLine
    offset: int
    identity: FileIdentity


@dataclass(frozen=True)
class Message:
    body: bytes
    content_type: str


class TerminationSource(str, enum.Enum):
    SIGNAL = "signal"
    FOLLOWER = "follower"
    PUBLISHER = "publisher"


@dataclass(frozen=True)
class TerminationEvent:
    source: TerminationSource
    reason: str

    def __str__(self) -> str:
        return f"[{self.source.value}] {self.reason}"


class FollowerState(enum.Enum):
    STARTING = "starting"
    FOLLOWING = "following"
    DRAINING = "draining"
    STOPPED = "stopped"
