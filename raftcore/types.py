"""Core log data types, size accounting helpers and error classes."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Sequence

NO_LIMIT = (1 << 64) - 1
"""Size limit meaning "no limit at all"."""


def _varint_size(value: int) -> int:
    """Number of bytes a protobuf varint takes for ``value``."""
    return max(1, (value.bit_length() + 6) // 7)


class EntryType(enum.IntEnum):
    NORMAL = 0
    CONF_CHANGE = 1
    CONF_CHANGE_V2 = 2


@dataclass(frozen=True)
class Entry:
    """A single replicated log entry."""

    term: int = 0
    index: int = 0
    type: EntryType = EntryType.NORMAL
    data: bytes | None = None

    def size(self) -> int:
        """Encoded size of the entry in its wire format."""
        n = 1 + _varint_size(int(self.type))
        n += 1 + _varint_size(self.term)
        n += 1 + _varint_size(self.index)
        if self.data is not None:
            length = len(self.data)
            n += 1 + length + _varint_size(length)
        return n


@dataclass
class ConfState:
    """Membership of a cluster as recorded in a snapshot."""

    voters: list[int] = field(default_factory=list)
    learners: list[int] = field(default_factory=list)
    voters_outgoing: list[int] = field(default_factory=list)
    learners_next: list[int] = field(default_factory=list)
    auto_leave: bool = False


@dataclass(frozen=True)
class SnapshotMetadata:
    conf_state: ConfState = field(default_factory=ConfState)
    index: int = 0
    term: int = 0


@dataclass(frozen=True)
class Snapshot:
    metadata: SnapshotMetadata = field(default_factory=SnapshotMetadata)
    data: bytes | None = None


class ConfChangeType(enum.IntEnum):
    ADD_NODE = 0
    REMOVE_NODE = 1
    UPDATE_NODE = 2
    ADD_LEARNER_NODE = 3

    def __str__(self) -> str:
        return _CONF_CHANGE_NAMES[self]


_CONF_CHANGE_NAMES = {
    ConfChangeType.ADD_NODE: "ConfChangeAddNode",
    ConfChangeType.REMOVE_NODE: "ConfChangeRemoveNode",
    ConfChangeType.UPDATE_NODE: "ConfChangeUpdateNode",
    ConfChangeType.ADD_LEARNER_NODE: "ConfChangeAddLearnerNode",
}


@dataclass(frozen=True)
class ConfChangeSingle:
    type: ConfChangeType = ConfChangeType.ADD_NODE
    node_id: int = 0


class RaftError(Exception):
    """Base class for recoverable log errors."""


class CompactedError(RaftError):
    """The requested index lies before the first retained entry."""

    def __init__(self, message: str = "requested index is compacted") -> None:
        super().__init__(message)


class UnavailableError(RaftError):
    """The requested index lies beyond the last known entry."""

    def __init__(self, message: str = "requested index is not available") -> None:
        super().__init__(message)


class RaftPanic(RuntimeError):
    """An invariant of the log was violated; the state can no longer be trusted."""


def ents_size(entries: Sequence[Entry]) -> int:
    """Total encoded size of the given entries."""
    return sum(entry.size() for entry in entries)


def limit_size(entries: Sequence[Entry], max_size: int) -> list[Entry]:
    """Return the longest prefix whose size fits ``max_size``; never fewer than one entry."""
    if not entries:
        return []
    size = entries[0].size()
    for limit, entry in enumerate(entries[1:], start=1):
        size += entry.size()
        if size > max_size:
            return list(entries[:limit])
    return list(entries)