"""The raft log: stable storage plus the unstable tail not yet persisted."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .logger import get_logger
from .unstable import Entry, EntryID, Snapshot, Unstable

NO_LIMIT = 2**64 - 1


class StorageError(Exception):
    """Base class for errors reported by log storage."""


class CompactedError(StorageError):
    """The requested index precedes the first available entry."""

    def __init__(self, message: str = "requested index is unavailable due to compaction") -> None:
        super().__init__(message)


class UnavailableError(StorageError):
    """The requested index lies beyond the last available entry."""

    def __init__(self, message: str = "requested entry at index is unavailable") -> None:
        super().__init__(message)


class Storage(abc.ABC):
    """Read access to the stable part of the raft log."""

    @abc.abstractmethod
    def first_index(self) -> int:
        """Index of the first entry that may be available."""

    @abc.abstractmethod
    def last_index(self) -> int:
        """Index of the last entry in storage."""

    @abc.abstractmethod
    def term(self, i: int) -> int:
        """Term of entry i; raises CompactedError or UnavailableError."""

    @abc.abstractmethod
    def entries(self, lo: int, hi: int, max_size: int) -> list[Entry]:
        """Entries in [lo, hi), limited to max_size bytes but at least one."""

    @abc.abstractmethod
    def snapshot(self) -> Snapshot:
        """The most recent snapshot."""


def ents_size(entries: Sequence[Entry]) -> int:
    """Total encoded size of the given entries."""
    return sum(entry.size() for entry in entries)


def limit_size(entries: Sequence[Entry], max_size: int) -> list[Entry]:
    """Longest prefix within max_size bytes; always keeps the first entry."""
    if not entries:
        return []
    size = entries[0].size()
    for limit, entry in enumerate(entries[1:], start=1):
        size += entry.size()
        if size > max_size:
            return list(entries[:limit])
    return list(entries)


@dataclass
class LogSlice:
    """A run of entries following prev, as sent by a leader at the given term."""

    term: int = 0
    prev: EntryID = field(default_factory=EntryID)
    entries: list[Entry] = field(default_factory=list)

    def valid(self) -> None:
        """Raise ValueError if the slice is not internally consistent."""
        prev = self.prev
        for entry in self.entries:
            current = EntryID(term=entry.term, index=entry.index)
            if current.term < prev.term or current.index != prev.index + 1:
                raise ValueError(
                    f"leader term {self.term}: entries {prev} and {current} not consistent"
                )
            prev = current
        if self.term < prev.term:
            raise ValueError(f"leader term {self.term}: entry {prev} has a newer term")


class RaftLog:
    """Combines stable storage with unstable entries and tracks commit state."""

    def __init__(
        self,
        storage: Storage,
        logger: Any = None,
        max_applying_ents_size: int = NO_LIMIT,
    ) -> None:
        if logger is None:
            logger = get_logger()
        first_index = storage.first_index()
        last_index = storage.last_index()
        self.storage = storage
        self.logger = logger
        self.unstable = Unstable(
            offset=last_index + 1,
            offset_in_progress=last_index + 1,
            logger=logger,
        )
        self.committed = first_index - 1
        self.applying = first_index - 1
        self.applied = first_index - 1
        self.max_applying_ents_size = max_applying_ents_size
        self.applying_ents_size = 0
        self.applying_ents_paused = False

    def __str__(self) -> str:
        return (
            f"committed={self.committed}, applied={self.applied}, "
            f"applying={self.applying}, unstable.offset={self.unstable.offset}, "
            f"unstable.offsetInProgress={self.unstable.offset_in_progress}, "
            f"len(unstable.Entries)={len(self.unstable.entries)}"
        )

    def maybe_append(self, log_slice: LogSlice, committed: int) -> int | None:
        """Append the slice if it matches; return its last index or None."""
        if not self.match_term(log_slice.prev):
            return None
        entries = log_slice.entries
        lastnewi = log_slice.prev.index + len(entries)
        ci = self.find_conflict(entries)
        if ci == 0:
            pass
        elif ci <= self.committed:
            self.logger.panic(
                "entry %d conflict with committed entry [committed(%d)]", ci, self.committed
            )
        else:
            offset = log_slice.prev.index + 1
            if ci - offset > len(entries):
                self.logger.panic("index, %d, is out of range [%d]", ci - offset, len(entries))
            self.append(*entries[ci - offset:])
        self.commit_to(min(committed, lastnewi))
        return lastnewi

    def append(self, *args: Entry) -> int:
        if not args:
            return self.last_index()
        after = args[0].index - 1
        if after < self.committed:
            self.logger.panic(
                "after(%d) is out of range [committed(%d)]", after, self.committed
            )
        self.unstable.truncate_and_append(args)
        return self.last_index()

    def find_conflict(self, entries: Sequence[Entry]) -> int:
        """Index of the first entry that conflicts or is new, or 0."""
        for entry in entries:
            entry_id = EntryID(term=entry.term, index=entry.index)
            if not self.match_term(entry_id):
                if entry_id.index <= self.last_index():
                    self.logger.info(
                        "found conflict at index %d [existing term: %d, conflicting term: %d]",
                        entry_id.index, self._term_or_zero(entry_id.index), entry_id.term,
                    )
                return entry_id.index
        return 0

    def find_conflict_by_term(self, index: int, term: int) -> tuple[int, int]:
        """Largest index <= index whose term is <= term or unknown, with that term."""
        while index > 0:
            try:
                our_term = self.term(index)
            except StorageError:
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
        """Committed entries available for application."""
        if self.applying_ents_paused or self.has_next_or_in_progress_snapshot():
            return []
        lo, hi = self.applying + 1, self.max_appliable_index(allow_unstable) + 1
        if lo >= hi:
            return []
        max_size = self.max_applying_ents_size - self.applying_ents_size
        if max_size <= 0:
            self.logger.panic(
                "applying entry size (%d-%d)=%d not positive",
                self.max_applying_ents_size, self.applying_ents_size, max_size,
            )
        try:
            return self.slice(lo, hi, max_size)
        except StorageError as err:
            self.logger.panic("unexpected error when getting unapplied entries (%s)", err)
            raise

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
                self.logger.panic(
                    "tocommit(%d) is out of range [lastIndex(%d)]. "
                    "Was the raft log corrupted, truncated, or lost?",
                    tocommit, self.last_index(),
                )
            self.committed = tocommit

    def applied_to(self, i: int, size: int) -> None:
        if self.committed < i or i < self.applied:
            self.logger.panic(
                "applied(%d) is out of range [prevApplied(%d), committed(%d)]",
                i, self.applied, self.committed,
            )
        self.applied = i
        self.applying = max(self.applying, i)
        self.applying_ents_size = max(self.applying_ents_size - size, 0)
        self.applying_ents_paused = self.applying_ents_size >= self.max_applying_ents_size

    def accept_applying(self, i: int, size: int, allow_unstable: bool) -> None:
        if self.committed < i:
            self.logger.panic(
                "applying(%d) is out of range [prevApplying(%d), committed(%d)]",
                i, self.applying, self.committed,
            )
        self.applying = i
        self.applying_ents_size += size
        self.applying_ents_paused = (
            self.applying_ents_size >= self.max_applying_ents_size
            or i < self.max_appliable_index(allow_unstable)
        )

    def stable_to(self, entry_id: EntryID) -> None:
        self.unstable.stable_to(entry_id)

    def stable_snap_to(self, i: int) -> None:
        self.unstable.stable_snap_to(i)

    def accept_unstable(self) -> None:
        """Mark current unstable entries and snapshot as being persisted."""
        self.unstable.accept_in_progress()

    def last_entry_id(self) -> EntryID:
        index = self.last_index()
        try:
            term = self.term(index)
        except StorageError as err:
            self.logger.panic(
                "unexpected error when getting the last term at %d: %s", index, err
            )
            raise
        return EntryID(term=term, index=index)

    def term(self, i: int) -> int:
        """Term of entry i; raises CompactedError or UnavailableError."""
        term = self.unstable.maybe_term(i)
        if term is not None:
            return term
        if i + 1 < self.first_index():
            raise CompactedError()
        if i > self.last_index():
            raise UnavailableError()
        return self.storage.term(i)

    def _term_or_zero(self, i: int) -> int:
        try:
            return self.term(i)
        except StorageError:
            return 0

    def entries(self, i: int, max_size: int) -> list[Entry]:
        last = self.last_index()
        if i > last:
            return []
        return self.slice(i, last + 1, max_size)

    def all_entries(self) -> list[Entry]:
        while True:
            try:
                return self.entries(self.first_index(), NO_LIMIT)
            except CompactedError:
                continue

    def is_up_to_date(self, their: EntryID) -> bool:
        """Whether a log ending at their is at least as up to date as ours."""
        our = self.last_entry_id()
        return their.term > our.term or (their.term == our.term and their.index >= our.index)

    def match_term(self, entry_id: EntryID) -> bool:
        try:
            return self.term(entry_id.index) == entry_id.term
        except StorageError:
            return False

    def maybe_commit(self, at: EntryID) -> bool:
        if at.term != 0 and at.index > self.committed and self.match_term(at):
            self.commit_to(at.index)
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
        """Pass entries in [lo, hi) to visit in pages of about page_size bytes.

        An exception raised by visit stops the scan and propagates.
        """
        while lo < hi:
            entries = self.slice(lo, hi, page_size)
            if not entries:
                raise StorageError(f"got 0 entries in [{lo}, {hi})")
            visit(entries)
            lo += len(entries)

    def slice(self, lo: int, hi: int, max_size: int) -> list[Entry]:
        """Entries in [lo, hi), limited to max_size bytes but at least one."""
        self.check_out_of_bounds(lo, hi)
        if lo == hi:
            return []
        offset = self.unstable.offset
        if lo >= offset:
            return limit_size(self.unstable.slice(lo, hi), max_size)

        cut = min(hi, offset)
        try:
            stable = list(self.storage.entries(lo, cut, max_size))
        except UnavailableError:
            self.logger.panic("entries[%d:%d) is unavailable from storage", lo, cut)
            raise
        if hi <= offset:
            return stable
        if len(stable) < cut - lo:
            return stable
        size = ents_size(stable)
        if size >= max_size:
            return stable

        tail = limit_size(self.unstable.slice(offset, hi), max_size - size)
        if len(tail) == 1 and size + ents_size(tail) > max_size:
            return stable
        return stable + tail

    def check_out_of_bounds(self, lo: int, hi: int) -> None:
        """Raise CompactedError below the first index; panic on bad ranges."""
        if lo > hi:
            self.logger.panic("invalid slice %d > %d", lo, hi)
        first = self.first_index()
        if lo < first:
            raise CompactedError()
        last = self.last_index()
        if hi > last + 1:
            self.logger.panic("slice[%d,%d) out of bound [%d,%d]", lo, hi, first, last)