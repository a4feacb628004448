"""The replicated log: stable storage plus the unstable tail."""

from __future__ import annotations

from typing import Any, Callable, NoReturn, Protocol, Sequence

from .logger import get_logger
from .types import (
    NO_LIMIT,
    CompactedError,
    Entry,
    RaftError,
    RaftPanic,
    Snapshot,
    UnavailableError,
    ents_size,
    limit_size,
)
from .unstable import Unstable


class Storage(Protocol):
    """Read access to the entries and snapshot persisted so far.

    Lookups outside the retained range raise :class:`CompactedError` or
    :class:`UnavailableError`.
    """

    def first_index(self) -> int:
        """Index of the first entry still available."""

    def last_index(self) -> int:
        """Index of the last entry in storage."""

    def term(self, i: int) -> int:
        """Term of entry ``i``; valid for ``first_index() - 1 <= i <= last_index()``."""

    def entries(self, lo: int, hi: int, max_size: int) -> list[Entry]:
        """Entries in ``[lo, hi)`` limited to ``max_size`` bytes (at least one entry)."""

    def snapshot(self) -> Snapshot:
        """The most recent snapshot."""


class RaftLog:
    """Log positions and entries, combining stable storage and unstable state."""

    def __init__(
        self,
        storage: Storage,
        logger: Any = None,
        max_applying_ents_size: int = NO_LIMIT,
    ) -> None:
        if storage is None:
            raise ValueError("storage must not be None")
        self.storage = storage
        self.logger = logger if logger is not None else get_logger()
        self.max_applying_ents_size = max_applying_ents_size
        self.applying_ents_size = 0
        self.applying_ents_paused = False

        first_index = storage.first_index()
        last_index = storage.last_index()
        self.unstable = Unstable(
            offset=last_index + 1,
            offset_in_progress=last_index + 1,
            logger=self.logger,
        )
        # Start out committed and applied up to the last compaction.
        self.committed = first_index - 1
        self.applying = first_index - 1
        self.applied = first_index - 1

    def __str__(self) -> str:
        return (
            f"committed={self.committed}, applied={self.applied}, "
            f"applying={self.applying}, unstable.offset={self.unstable.offset}, "
            f"unstable.offsetInProgress={self.unstable.offset_in_progress}, "
            f"len(unstable.Entries)={len(self.unstable.entries)}"
        )

    def _panic(self, msg: str, *args: Any) -> NoReturn:
        self.logger.panic(msg, *args)
        raise RaftPanic(msg % args if args else msg)

    def maybe_append(
        self, index: int, log_term: int, committed: int, entries: Sequence[Entry]
    ) -> int | None:
        """Append if ``(index, log_term)`` matches; return the last new index or None."""
        if not self.match_term(index, log_term):
            return None
        last_new = index + len(entries)
        ci = self.find_conflict(entries)
        if ci == 0:
            pass
        elif ci <= self.committed:
            self._panic(
                "entry %d conflict with committed entry [committed(%d)]", ci, self.committed
            )
        else:
            offset = index + 1
            if ci - offset > len(entries):
                self._panic("index, %d, is out of range [%d]", ci - offset, len(entries))
            self.append(entries[ci - offset:])
        self.commit_to(min(committed, last_new))
        return last_new

    def append(self, entries: Sequence[Entry]) -> int:
        """Append entries to the unstable tail and return the new last index."""
        if not entries:
            return self.last_index()
        after = entries[0].index - 1
        if after < self.committed:
            self._panic("after(%d) is out of range [committed(%d)]", after, self.committed)
        self.unstable.truncate_and_append(entries)
        return self.last_index()

    def find_conflict(self, entries: Sequence[Entry]) -> int:
        """Index of the first entry that conflicts with or extends the log, else 0."""
        for entry in entries:
            if not self.match_term(entry.index, entry.term):
                if entry.index <= self.last_index():
                    self.logger.info(
                        "found conflict at index %d [existing term: %d, conflicting term: %d]",
                        entry.index,
                        self.zero_term_on_out_of_bounds(entry.index),
                        entry.term,
                    )
                return entry.index
        return 0

    def find_conflict_by_term(self, index: int, term: int) -> tuple[int, int]:
        """Largest ``i <= index`` whose term is ``<= term`` or unknown, with that term (0 if unknown)."""
        while index > 0:
            try:
                our_term = self.term(index)
            except (CompactedError, UnavailableError):
                return index, 0
            if our_term <= term:
                return index, our_term
            index -= 1
        return 0, 0

    def next_unstable_ents(self) -> list[Entry]:
        return self.unstable.next_entries()

    def has_next_unstable_ents(self) -> bool:
        return bool(self.next_unstable_ents())

    def has_next_or_in_progress_unstable_ents(self) -> bool:
        return bool(self.unstable.entries)

    def next_committed_ents(self, allow_unstable: bool) -> list[Entry]:
        """Committed entries that may be handed to the application now."""
        if self.applying_ents_paused or self.has_next_or_in_progress_snapshot():
            return []
        lo, hi = self.applying + 1, self.max_appliable_index(allow_unstable) + 1
        if lo >= hi:
            return []
        max_size = self.max_applying_ents_size - self.applying_ents_size
        if max_size <= 0:
            self._panic(
                "applying entry size (%d-%d)=%d not positive",
                self.max_applying_ents_size, self.applying_ents_size, max_size,
            )
        try:
            return self.slice(lo, hi, max_size)
        except RaftError as err:
            self._panic("unexpected error when getting unapplied entries (%s)", err)

    def has_next_committed_ents(self, allow_unstable: bool) -> bool:
        if self.applying_ents_paused or self.has_next_or_in_progress_snapshot():
            return False
        return self.applying + 1 < self.max_appliable_index(allow_unstable) + 1

    def max_appliable_index(self, allow_unstable: bool) -> int:
        hi = self.committed
        if not allow_unstable:
            hi = min(hi, self.unstable.offset - 1)
        return hi

    def next_unstable_snapshot(self) -> Snapshot | None:
        return self.unstable.next_snapshot()

    def has_next_unstable_snapshot(self) -> bool:
        return self.unstable.next_snapshot() is not None

    def has_next_or_in_progress_snapshot(self) -> bool:
        return self.unstable.snapshot is not None

    def snapshot(self) -> Snapshot:
        if self.unstable.snapshot is not None:
            return self.unstable.snapshot
        return self.storage.snapshot()

    def first_index(self) -> int:
        index = self.unstable.maybe_first_index()
        if index is not None:
            return index
        return self.storage.first_index()

    def last_index(self) -> int:
        index = self.unstable.maybe_last_index()
        if index is not None:
            return index
        return self.storage.last_index()

    def commit_to(self, tocommit: int) -> None:
        """Raise the commit index; it never decreases."""
        if self.committed < tocommit:
            if self.last_index() < tocommit:
                self._panic(
                    "tocommit(%d) is out of range [lastIndex(%d)]. "
                    "Was the raft log corrupted, truncated, or lost?",
                    tocommit, self.last_index(),
                )
            self.committed = tocommit

    def applied_to(self, i: int, size: int) -> None:
        if self.committed < i or i < self.applied:
            self._panic(
                "applied(%d) is out of range [prevApplied(%d), committed(%d)]",
                i, self.applied, self.committed,
            )
        self.applied = i
        self.applying = max(self.applying, i)
        self.applying_ents_size = max(self.applying_ents_size - size, 0)
        self.applying_ents_paused = self.applying_ents_size >= self.max_applying_ents_size

    def accept_applying(self, i: int, size: int, allow_unstable: bool) -> None:
        if self.committed < i:
            self._panic(
                "applying(%d) is out of range [prevApplying(%d), committed(%d)]",
                i, self.applying, self.committed,
            )
        self.applying = i
        self.applying_ents_size += size
        # Pause when over the limit, or when the returned batch was cut short by it.
        self.applying_ents_paused = (
            self.applying_ents_size >= self.max_applying_ents_size
            or i < self.max_appliable_index(allow_unstable)
        )

    def stable_to(self, i: int, t: int) -> None:
        self.unstable.stable_to(i, t)

    def stable_snap_to(self, i: int) -> None:
        self.unstable.stable_snap_to(i)

    def accept_unstable(self) -> None:
        """Mark the current unstable entries and snapshot as being persisted."""
        self.unstable.accept_in_progress()

    def last_term(self) -> int:
        try:
            return self.term(self.last_index())
        except RaftError as err:
            self._panic("unexpected error when getting the last term (%s)", err)

    def term(self, i: int) -> int:
        """Term of entry ``i``; raises CompactedError or UnavailableError."""
        term = self.unstable.maybe_term(i)
        if term is not None:
            return term
        # Valid range is [first_index - 1, last_index].
        if i + 1 < self.first_index():
            raise CompactedError()
        if i > self.last_index():
            raise UnavailableError()
        return self.storage.term(i)

    def entries(self, i: int, max_size: int) -> list[Entry]:
        if i > self.last_index():
            return []
        return self.slice(i, self.last_index() + 1, max_size)

    def all_entries(self) -> list[Entry]:
        """Every entry in the log, retrying across a racing compaction."""
        while True:
            try:
                return self.entries(self.first_index(), NO_LIMIT)
            except CompactedError:
                continue

    def is_up_to_date(self, last_index: int, term: int) -> bool:
        """Whether a log ending at ``(last_index, term)`` is at least as recent as ours."""
        last_term = self.last_term()
        return term > last_term or (term == last_term and last_index >= self.last_index())

    def match_term(self, i: int, term: int) -> bool:
        try:
            return self.term(i) == term
        except (CompactedError, UnavailableError):
            return False

    def maybe_commit(self, max_index: int, term: int) -> bool:
        if (
            max_index > self.committed
            and term != 0
            and self.zero_term_on_out_of_bounds(max_index) == term
        ):
            self.commit_to(max_index)
            return True
        return False

    def restore(self, snapshot: Snapshot) -> None:
        self.logger.info(
            "log [%s] starts to restore snapshot [index: %d, term: %d]",
            self, snapshot.metadata.index, snapshot.metadata.term,
        )
        self.committed = snapshot.metadata.index
        self.unstable.restore(snapshot)

    def scan(
        self, lo: int, hi: int, page_size: int, visit: Callable[[list[Entry]], Any]
    ) -> None:
        """Pass entries in ``[lo, hi)`` to ``visit`` in pages of about ``page_size`` bytes.

        An exception raised by ``visit`` stops the scan and propagates.
        """
        while lo < hi:
            entries = self.slice(lo, hi, page_size)
            if not entries:
                raise RaftError(f"got 0 entries in [{lo}, {hi})")
            visit(entries)
            lo += len(entries)

    def slice(self, lo: int, hi: int, max_size: int) -> list[Entry]:
        """Entries from ``lo`` to ``hi - 1``, limited to ``max_size`` bytes (at least one)."""
        self.must_check_out_of_bounds(lo, hi)
        if lo == hi:
            return []
        offset = self.unstable.offset
        if lo >= offset:
            return limit_size(self.unstable.slice(lo, hi), max_size)

        cut = min(hi, offset)
        try:
            entries = list(self.storage.entries(lo, cut, max_size))
        except UnavailableError:
            self._panic("entries[%d:%d) is unavailable from storage", lo, cut)
        if hi <= offset:
            return entries
        # The storage already stopped short because of the size limit.
        if len(entries) < cut - lo:
            return entries
        size = ents_size(entries)
        if size >= max_size:
            return entries

        tail = limit_size(self.unstable.slice(offset, hi), max_size - size)
        # A single entry may exceed the remaining budget; leave it out then.
        if len(tail) == 1 and size + ents_size(tail) > max_size:
            return entries
        return entries + tail

    def must_check_out_of_bounds(self, lo: int, hi: int) -> None:
        """Require ``first_index <= lo <= hi <= last_index + 1``.

        Raises CompactedError if ``lo`` is compacted; panics on other violations.
        """
        if lo > hi:
            self._panic("invalid slice %d > %d", lo, hi)
        first = self.first_index()
        if lo < first:
            raise CompactedError()
        last = self.last_index()
        if hi > last + 1:
            self._panic("slice[%d,%d) out of bound [%d,%d]", lo, hi, first, last)

    def zero_term_on_out_of_bounds(self, i: int) -> int:
        """Term of entry ``i``, or 0 if it is compacted or unavailable."""
        try:
            return self.term(i)
        except (CompactedError, UnavailableError):
            return 0