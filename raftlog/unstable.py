"""Log entries and snapshot not yet written to stable storage."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from raftlog.logger import Logger, get_logger


def _varint_size(value: int) -> int:
    size = 1
    while value >= 0x80:
        value >>= 7
        size += 1
    return size


@dataclass(frozen=True)
class Entry:
    """A single log entry."""

    term: int = 0
    index: int = 0
    type: int = 0
    data: Optional[bytes] = None

    def size(self) -> int:
        """Encoded size of the entry in bytes."""
        n = 1 + _varint_size(self.type)
        n += 1 + _varint_size(self.term)
        n += 1 + _varint_size(self.index)
        if self.data is not None:
            length = len(self.data)
            n += 1 + length + _varint_size(length)
        return n


@dataclass(frozen=True)
class SnapshotMetadata:
    """Position in the log that a snapshot covers."""

    index: int = 0
    term: int = 0


@dataclass(frozen=True)
class Snapshot:
    """A snapshot of the state machine up to a log position."""

    metadata: SnapshotMetadata = field(default_factory=SnapshotMetadata)
    data: Optional[bytes] = None


@dataclass
class Unstable:
    """Entries and snapshot that are not yet known to be in stable storage.

    ``entries[i]`` has log position ``i + offset``. Entries before
    ``offset_in_progress`` are being written to storage.
    """

    snapshot: Optional[Snapshot] = None
    entries: List[Entry] = field(default_factory=list)
    offset: int = 0
    snapshot_in_progress: bool = False
    offset_in_progress: int = 0
    logger: Optional[Logger] = None

    @property
    def _log(self) -> Logger:
        return self.logger if self.logger is not None else get_logger()

    def maybe_first_index(self) -> Optional[int]:
        """First possible entry index if a snapshot is held, else None."""
        if self.snapshot is not None:
            return self.snapshot.metadata.index + 1
        return None

    def maybe_last_index(self) -> Optional[int]:
        """Last index held by entries or snapshot, else None."""
        if self.entries:
            return self.offset + len(self.entries) - 1
        if self.snapshot is not None:
            return self.snapshot.metadata.index
        return None

    def maybe_term(self, i: int) -> Optional[int]:
        """Term of the entry at index ``i`` if known here, else None."""
        if i < self.offset:
            if self.snapshot is not None and self.snapshot.metadata.index == i:
                return self.snapshot.metadata.term
            return None
        last = self.maybe_last_index()
        if last is None or i > last:
            return None
        return self.entries[i - self.offset].term

    def next_entries(self) -> List[Entry]:
        """Entries not already being written to storage."""
        in_progress = self.offset_in_progress - self.offset
        if len(self.entries) == in_progress:
            return []
        return self.entries[in_progress:]

    def next_snapshot(self) -> Optional[Snapshot]:
        """The snapshot, if present and not already being written."""
        if self.snapshot is None or self.snapshot_in_progress:
            return None
        return self.snapshot

    def accept_in_progress(self) -> None:
        """Mark all current entries and the snapshot as being written."""
        if self.entries:
            self.offset_in_progress = self.entries[-1].index + 1
        if self.snapshot is not None:
            self.snapshot_in_progress = True

    def stable_to(self, i: int, t: int) -> None:
        """Drop entries up to (i, t) once they are written to storage."""
        gt = self.maybe_term(i)
        if gt is None:
            self._log.info("entry at index %d missing from unstable log; ignoring", i)
            return
        if i < self.offset:
            self._log.info("entry at index %d matched unstable snapshot; ignoring", i)
            return
        if gt != t:
            self._log.info(
                "entry at (index,term)=(%d,%d) mismatched with "
                "entry at (%d,%d) in unstable log; ignoring",
                i, t, i, gt,
            )
            return
        self.entries = self.entries[i + 1 - self.offset:]
        self.offset = i + 1
        self.offset_in_progress = max(self.offset_in_progress, self.offset)

    def stable_snap_to(self, i: int) -> None:
        """Drop the snapshot once the one at index ``i`` is written."""
        if self.snapshot is not None and self.snapshot.metadata.index == i:
            self.snapshot = None
            self.snapshot_in_progress = False

    def restore(self, s: Snapshot) -> None:
        """Replace everything with the given snapshot."""
        self.offset = s.metadata.index + 1
        self.offset_in_progress = self.offset
        self.entries = []
        self.snapshot = s
        self.snapshot_in_progress = False

    def truncate_and_append(self, ents: Iterable[Entry]) -> None:
        """Append entries, truncating any held entries they overlap."""
        ents = list(ents)
        from_index = ents[0].index
        if from_index == self.offset + len(self.entries):
            self.entries = self.entries + ents
        elif from_index <= self.offset:
            self._log.info("replace the unstable entries from index %d", from_index)
            self.entries = ents
            self.offset = from_index
            self.offset_in_progress = self.offset
        else:
            self._log.info("truncate the unstable entries before index %d", from_index)
            keep = self.slice(self.offset, from_index)
            self.entries = keep + ents
            self.offset_in_progress = min(self.offset_in_progress, from_index)

    def slice(self, lo: int, hi: int) -> List[Entry]:
        """Entries with indexes in ``[lo, hi)``; the whole range must be held."""
        self._check_out_of_bounds(lo, hi)
        return self.entries[lo - self.offset:hi - self.offset]

    def _check_out_of_bounds(self, lo: int, hi: int) -> None:
        if lo > hi:
            self._log.panic("invalid unstable.slice %d > %d", lo, hi)
        upper = self.offset + len(self.entries)
        if lo < self.offset or hi > upper:
            self._log.panic(
                "unstable.slice[%d,%d) out of bound [%d,%d]", lo, hi, self.offset, upper
            )