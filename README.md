# raftlog

`raftlog` models the log that a node in the Raft consensus protocol keeps.
It tracks four things:

- which entries are already in stable storage,
- which entries are still waiting to be written,
- how far the log is committed,
- how far the application has applied it.

## Installing

```
pip install raftlog
```

## Modules

### `raftlog.logger`

- `Logger` is the abstract interface. It has the methods `debug`, `info`,
  `warning`, `error`, `fatal` and `panic`. Each one takes a `%`-style
  format string and its arguments.
- `DefaultLogger(stream=None, prefix="raft")` is the standard
  implementation. It writes one line per message to `stream`, or to
  standard error when `stream` is `None`.
  - Each line starts with the prefix. A timestamp follows if
    `enable_timestamps()` has been called. Then comes a level header:
    `DEBUG:`, `INFO:`, `WARN:`, `ERROR:` or `FATAL:`.
  - Debug output stays off until `enable_debug()` is called.
  - `fatal()` writes its line and then raises `SystemExit(1)`.
  - `panic()` writes the message and then raises `RaftPanic`.
- `set_logger()`, `get_logger()` and `reset_default_logger()` manage the
  process-wide logger. The built-in default writes to standard error with
  timestamps on.

### `raftlog.unstable`

- `Entry`, `SnapshotMetadata` and `Snapshot` are frozen dataclasses.
- `Entry.size()` returns the encoded size of an entry in bytes.
- `Unstable` holds the tail of the log that has not yet reached stable
  storage, plus an optional snapshot. Entries can be marked as in progress
  with `accept_in_progress()` and dropped with `stable_to()` once they are
  written.

### `raftlog.log`

- `Storage` is the abstract read interface for stable storage. Its methods
  are `first_index`, `last_index`, `term`, `entries` and `snapshot`.
- `RaftLog(storage, logger=None, max_applying_ents_size=NO_LIMIT)` combines
  storage and the unstable tail into one log. It provides:
  - appending and conflict resolution: `append`, `maybe_append`,
    `find_conflict`, `find_conflict_by_term`;
  - commit and apply tracking: `commit_to`, `maybe_commit`,
    `accept_applying`, `applied_to`, `next_committed_ents`;
  - reading: `slice`, `scan`, `entries`, `all_entries`.

  `next_committed_ents` can pause once the bytes handed out but not yet
  applied reach `max_applying_ents_size`.
- `ents_size()` and `limit_size()` measure lists of entries and cut them to
  a byte limit. `limit_size()` always keeps at least one entry.
- Term lookups raise `CompactedError` for an index that has been compacted
  and `UnavailableError` for an index past the end. Both are subclasses of
  `StorageError`. `term_or_zero()` and `match_term()` catch both errors.

## Example

```python
from raftlog.log import RaftLog
from raftlog.logger import get_logger
from raftlog.unstable import Entry

log = RaftLog(storage, get_logger())  # storage implements raftlog.log.Storage
log.append(Entry(index=1, term=1), Entry(index=2, term=1))
log.maybe_commit(2, 1)
print(log.next_committed_ents(True))
```

Rules the log must never break raise `RaftPanic` instead of being ignored.
Examples are committing past the last index, rewriting a committed entry,
and slicing outside the log's bounds.

## What it does not do

- It has no `Storage` implementation. You must supply one, for example an
  in-memory or disk-backed store.
- It has no node, no elections, no message handling and no networking. It
  is only the log that such a node would keep.

## Tests

```
pip install raftlog[test]
pytest
```