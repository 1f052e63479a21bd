# raftlog

The log layer of a Raft consensus implementation. It tracks four things:

- which entries are already on stable storage;
- which entries are still unstable, meaning they were handed out to be persisted but are not yet confirmed;
- how far the log is committed;
- how far the application has applied it.

It has no third-party dependencies.

## Installation

    pip install raftlog

To run the test suite:

    pip install "raftlog[test]"
    pytest

## Modules

- `raftlog.logger`
  - `DefaultLogger` writes leveled messages to a stream.
  - `get_logger`, `set_logger` and `reset_default_logger` manage the process-wide logger.
  - `discard_logger` returns a logger that drops all output.
  - `RaftPanic` is raised when an invariant of the log is broken.
- `raftlog.unstable`
  - The frozen value types `Entry`, `EntryID`, `Snapshot` and `SnapshotMetadata`.
  - `Unstable` is the in-memory tail of entries, plus an optional snapshot, that still wait to be written to storage.
- `raftlog.log`
  - `RaftLog` combines a `Storage` with an `Unstable` tail.
  - `LogSlice` is an append request from a leader.
  - The helpers `ents_size` and `limit_size`.
  - The constant `NO_LIMIT`.
  - The storage errors `StorageError`, `CompactedError` and `UnavailableError`.

## Storage

`RaftLog` reads the stable part of the log through an object that subclasses the abstract base class `raftlog.log.Storage`. A subclass implements these methods:

- `first_index()`
- `last_index()`
- `term(i)`
- `entries(lo, hi, max_size)`, which returns at least one entry, and otherwise as many as fit in `max_size` bytes
- `snapshot()`

For indexes that have been compacted away, storage raises `CompactedError`. For indexes it does not hold yet, it raises `UnavailableError`.

The package ships no `Storage` implementation. Neither an in-memory store nor an on-disk store is included, so you supply your own.

## Using the log

```python
from raftlog.log import RaftLog, LogSlice
from raftlog.unstable import Entry, EntryID

log = RaftLog(storage)  # storage: your Storage subclass
log.append(Entry(index=1, term=1), Entry(index=2, term=1))

for entry in log.next_unstable_ents():
    ...  # write it to your storage
log.stable_to(EntryID(term=1, index=2))

log.maybe_commit(log.last_entry_id())
for entry in log.next_committed_ents(allow_unstable=False):
    ...  # apply it
log.applied_to(2, 0)
```

`RaftLog(storage, logger=None, max_applying_ents_size=NO_LIMIT)` takes these arguments:

- `logger`: if it is omitted, the log uses the logger that `get_logger()` returns at construction time.
- `max_applying_ents_size`: caps the byte size of committed entries that have been handed out but not yet acknowledged through `applied_to`.

Entry sizes are the size of the entry's protobuf encoding, as computed by `Entry.size()`.

A follower takes an append from its leader with `maybe_append`. It returns one of two results:

- the last index of the new entries, or
- `None` when the previous entry does not match.

```python
request = LogSlice(term=3, prev=EntryID(term=1, index=2),
                   entries=[Entry(index=3, term=3)])
last_new = log.maybe_append(request, committed=3)
```

`find_conflict_by_term(index, term)` helps a leader and a follower find where their logs stop agreeing.

`scan(lo, hi, page_size, visit)` passes the entries in `[lo, hi)` to `visit` one page at a time. An exception raised by `visit` stops the scan and propagates.

The following violations of the log's invariants go to the logger's `panic`:

- committing past the last index;
- overwriting a committed entry;
- reading outside the log's bounds.

With `DefaultLogger`, `panic` raises `RaftPanic`. These errors mean the caller or the storage is broken, and they are not meant to be recovered from.

## Logging

`DefaultLogger` formats each message like this:

- `msg % args`, prefixed with a level such as `INFO:` or `WARN:`;
- then the prefix `raft` and a timestamp;
- written to standard error unless another stream is given.

Debug output stays off until `enable_debug()` is called.

`fatal` logs the message and raises `SystemExit(1)`.

To replace the logger for the whole process, call `set_logger`. To silence it, call `set_logger(discard_logger())`. The change applies to logs created afterwards.

## What this package does not do

This is only the log. It contains none of the following:

- no Raft node;
- no leader election;
- no message exchange between peers;
- no membership changes;
- no storage implementation.