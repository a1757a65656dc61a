"""The replicated log: stable storage plus the unstable tail."""

from __future__ import annotations

import abc
from typing import Callable, List, Optional, Sequence, Tuple

from raftlog.logger import Logger, RaftPanic, get_logger
from raftlog.unstable import Entry, Snapshot, Unstable

NO_LIMIT = (1 << 64) - 1


class StorageError(Exception):
    """Base class for errors reported while reading the log."""


class CompactedError(StorageError):
    """The requested index is older than the last compaction."""

    def __init__(self, message: str = "requested index is unavailable due to compaction") -> None:
        super().__init__(message)


class UnavailableError(StorageError):
    """The requested index is not yet available."""

    def __init__(self, message: str = "requested entry at index is unavailable") -> None:
        super().__init__(message)


class Storage(abc.ABC):
    """Read access to the stable part of the log."""

    @abc.abstractmethod
    def first_index(self) -> int:
        """Index of the first entry that may be available."""

    @abc.abstractmethod
    def last_index(self) -> int:
        """Index of the last entry in storage."""

    @abc.abstractmethod
    def term(self, i: int) -> int:
        """Term of entry ``i``; raises CompactedError or UnavailableError."""

    @abc.abstractmethod
    def entries(self, lo: int, hi: int, max_size: int) -> List[Entry]:
        """Entries in ``[lo, hi)``, limited to ``max_size`` bytes (at least one)."""

    @abc.abstractmethod
    def snapshot(self) -> Snapshot:
        """The most recent snapshot."""


def ents_size(ents: Sequence[Entry]) -> int:
    """Total encoded size of the entries."""
    return sum(e.size() for e in ents)


def limit_size(ents: Sequence[Entry], max_size: int) -> List[Entry]:
    """Longest prefix within ``max_size`` bytes; never fewer than one entry."""
    ents = list(ents)
    if not ents:
        return ents
    size = ents[0].size()
    for limit, ent in enumerate(ents[1:], start=1):
        size += ent.size()
        if size > max_size:
            return ents[:limit]
    return ents


class RaftLog:
    """Combines stable storage with unstable entries and tracks commit/apply positions."""

    def __init__(
        self,
        storage: Storage,
        logger: Optional[Logger] = None,
        max_applying_ents_size: int = NO_LIMIT,
    ) -> None:
        if storage is None:
            raise RaftPanic("storage must not be nil")
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
        self.committed = first_index - 1
        self.applying = first_index - 1
        self.applied = first_index - 1

    def __str__(self) -> str:
        return (
            f"committed={self.committed}, applied={self.applied}, applying={self.applying}, "
            f"unstable.offset={self.unstable.offset}, "
            f"unstable.offsetInProgress={self.unstable.offset_in_progress}, "
            f"len(unstable.Entries)={len(self.unstable.entries)}"
        )

    def _panic(self, msg: str, *args: object) -> None:
        self.logger.panic(msg, *args)
        raise RaftPanic(msg % args if args else msg)

    def maybe_append(
        self, index: int, log_term: int, committed: int, ents: Sequence[Entry]
    ) -> Optional[int]:
        """Append if (index, log_term) matches; return the last new index or None."""
        ents = list(ents)
        if not self.match_term(index, log_term):
            return None
        lastnewi = index + len(ents)
        ci = self.find_conflict(ents)
        if ci == 0:
            pass
        elif ci <= self.committed:
            self._panic("entry %d conflict with committed entry [committed(%d)]", ci, self.committed)
        else:
            offset = index + 1
            if ci - offset > len(ents):
                self._panic("index, %d, is out of range [%d]", ci - offset, len(ents))
            self.append(*ents[ci - offset:])
        self.commit_to(min(committed, lastnewi))
        return lastnewi

    def append(self, *args: Entry) -> int:
        """Append entries to the unstable tail and return the new last index."""
        if not args:
            return self.last_index()
        after = args[0].index - 1
        if after < self.committed:
            self._panic("after(%d) is out of range [committed(%d)]", after, self.committed)
        self.unstable.truncate_and_append(args)
        return self.last_index()

    def find_conflict(self, ents: Sequence[Entry]) -> int:
        """Index of the first entry that conflicts or is new; 0 if none."""
        for ne in ents:
            if not self.match_term(ne.index, ne.term):
                if ne.index <= self.last_index():
                    self.logger.info(
                        "found conflict at index %d [existing term: %d, conflicting term: %d]",
                        ne.index, self.term_or_zero(ne.index), ne.term,
                    )
                return ne.index
        return 0

    def find_conflict_by_term(self, index: int, term: int) -> Tuple[int, int]:
        """Largest index <= ``index`` whose term is <= ``term`` or unknown, and that term."""
        while index > 0:
            try:
                our_term = self.term(index)
            except (CompactedError, UnavailableError):
                return index, 0
            if our_term <= term:
                return index, our_term
            index -= 1
        return 0, 0

    def next_unstable_ents(self) -> List[Entry]:
        return self.unstable.next_entries()

    def has_next_unstable_ents(self) -> bool:
        return bool(self.next_unstable_ents())

    def has_next_or_in_progress_unstable_ents(self) -> bool:
        return bool(self.unstable.entries)

    def next_committed_ents(self, allow_unstable: bool) -> List[Entry]:
        """Committed entries ready to be applied."""
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
        except StorageError as exc:
            self._panic("unexpected error when getting unapplied entries (%s)", exc)
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

    def next_unstable_snapshot(self) -> Optional[Snapshot]:
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
        if self.applying_ents_size > size:
            self.applying_ents_size -= size
        else:
            self.applying_ents_size = 0
        self.applying_ents_paused = self.applying_ents_size >= self.max_applying_ents_size

    def accept_applying(self, i: int, size: int, allow_unstable: bool) -> None:
        if self.committed < i:
            self._panic(
                "applying(%d) is out of range [prevApplying(%d), committed(%d)]",
                i, self.applying, self.committed,
            )
        self.applying = i
        self.applying_ents_size += size
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
        except StorageError as exc:
            self._panic("unexpected error when getting the last term (%s)", exc)
            raise

    def term(self, i: int) -> int:
        """Term of entry ``i``; raises CompactedError or UnavailableError."""
        t = self.unstable.maybe_term(i)
        if t is not None:
            return t
        if i + 1 < self.first_index():
            raise CompactedError()
        if i > self.last_index():
            raise UnavailableError()
        return self.storage.term(i)

    def term_or_zero(self, i: int) -> int:
        """Term of entry ``i``, or 0 if it is compacted or unavailable."""
        try:
            return self.term(i)
        except (CompactedError, UnavailableError):
            return 0

    def entries(self, i: int, max_size: int) -> List[Entry]:
        if i > self.last_index():
            return []
        return self.slice(i, self.last_index() + 1, max_size)

    def all_entries(self) -> List[Entry]:
        """All entries in the log, retrying if a compaction races with the read."""
        while True:
            try:
                return self.entries(self.first_index(), NO_LIMIT)
            except CompactedError:
                continue

    def is_up_to_date(self, lasti: int, term: int) -> bool:
        last_term = self.last_term()
        return term > last_term or (term == last_term and lasti >= self.last_index())

    def match_term(self, i: int, term: int) -> bool:
        try:
            return self.term(i) == term
        except (CompactedError, UnavailableError):
            return False

    def maybe_commit(self, max_index: int, term: int) -> bool:
        if max_index > self.committed and term != 0 and self.term_or_zero(max_index) == term:
            self.commit_to(max_index)
            return True
        return False

    def restore(self, s: Snapshot) -> None:
        self.logger.info(
            "log [%s] starts to restore snapshot [index: %d, term: %d]",
            str(self), s.metadata.index, s.metadata.term,
        )
        self.committed = s.metadata.index
        self.unstable.restore(s)

    def scan(
        self, lo: int, hi: int, page_size: int, visit: Callable[[List[Entry]], None]
    ) -> None:
        """Pass the entries in ``[lo, hi)`` to ``visit`` in pages of about ``page_size`` bytes."""
        while lo < hi:
            ents = self.slice(lo, hi, page_size)
            if not ents:
                raise StorageError(f"got 0 entries in [{lo}, {hi})")
            visit(ents)
            lo += len(ents)

    def slice(self, lo: int, hi: int, max_size: int) -> List[Entry]:
        """Entries from ``lo`` through ``hi - 1``, limited to ``max_size`` bytes."""
        self.check_out_of_bounds(lo, hi)
        if lo == hi:
            return []
        offset = self.unstable.offset
        if lo >= offset:
            return limit_size(self.unstable.slice(lo, hi), max_size)

        cut = min(hi, offset)
        try:
            ents = list(self.storage.entries(lo, cut, max_size))
        except UnavailableError:
            self._panic("entries[%d:%d) is unavailable from storage", lo, cut)
            raise
        if hi <= offset:
            return ents
        if len(ents) < cut - lo:
            return ents
        size = ents_size(ents)
        if size >= max_size:
            return ents

        unstable = limit_size(self.unstable.slice(offset, hi), max_size - size)
        if len(unstable) == 1 and size + ents_size(unstable) > max_size:
            return ents
        return ents + unstable

    def check_out_of_bounds(self, lo: int, hi: int) -> None:
        """Raise CompactedError if ``lo`` is compacted; panic if the range is invalid."""
        if lo > hi:
            self._panic("invalid slice %d > %d", lo, hi)
        fi = self.first_index()
        if lo < fi:
            raise CompactedError()
        length = self.last_index() + 1 - fi
        if hi > fi + length:
            self._panic("slice[%d,%d) out of bound [%d,%d]", lo, hi, fi, self.last_index())