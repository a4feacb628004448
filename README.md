# raftcore

The log-keeping and membership parts of the Raft consensus algorithm, as
plain Python objects. The package needs nothing outside the standard library.

## What is in the package

- `raftcore.types`: `Entry`, `Snapshot`, `SnapshotMetadata`, `ConfState`,
  `ConfChangeSingle` and the enums `EntryType` and `ConfChangeType`. It also
  has the size helpers `ents_size` and `limit_size`, the `NO_LIMIT` constant,
  and the errors `RaftError`, `CompactedError`, `UnavailableError` and
  `RaftPanic`. `Entry.size()` returns an entry's encoded size in bytes.
- `raftcore.unstable`: `Unstable` holds the entries, and optionally a
  snapshot, that have not yet been written to stable storage. It also records
  which of them are already being written.
- `raftcore.log`: `RaftLog` joins a `Storage` to the unstable tail. It keeps
  the `committed`, `applying` and `applied` positions, and it can limit how
  many bytes of committed entries are waiting to be applied
  (`max_applying_ents_size`).
- `raftcore.confchange`: `Changer` checks and computes membership changes on
  a `ProgressTracker`: `simple`, `enter_joint` and `leave_joint`. It also has
  `TrackerConfig`, `Progress`, `ConfChangeError` and `describe`.
- `raftcore.restore`: `restore` rebuilds a configuration from a `ConfState`.
  `to_conf_change_single` turns a `ConfState` into the list of changes that
  `restore` applies.
- `raftcore.logger`: `DefaultLogger` and the logger shared by the whole
  package, which you manage with `get_logger`, `set_logger` and
  `reset_default_logger`.

## Installation

```
pip install raftcore
```

## Storage

`RaftLog` reads persisted data through the `Storage` protocol. Any object
that has these methods will do: `first_index()`, `last_index()`, `term(i)`,
`entries(lo, hi, max_size)` and `snapshot()`. A lookup outside the retained
range should raise `CompactedError` or `UnavailableError`. A minimal
in-memory example:

```python
from raftcore.types import (
    CompactedError, Entry, Snapshot, UnavailableError, limit_size,
)

class ListStorage:
    def __init__(self, entries=()):
        self._entries = list(entries)  # index 1 upwards

    def first_index(self):
        return 1

    def last_index(self):
        return len(self._entries)

    def term(self, i):
        if i == 0:
            return 0
        if i > len(self._entries):
            raise UnavailableError()
        return self._entries[i - 1].term

    def entries(self, lo, hi, max_size):
        if lo < 1:
            raise CompactedError()
        return limit_size(self._entries[lo - 1:hi - 1], max_size)

    def snapshot(self):
        return Snapshot()
```

## Working with the log

```python
from raftcore.log import RaftLog
from raftcore.types import Entry

log = RaftLog(ListStorage())
log.append([Entry(index=1, term=1), Entry(index=2, term=1)])

to_persist = log.next_unstable_ents()
# ... write to_persist to disk ...
log.stable_to(to_persist[-1].index, to_persist[-1].term)

log.maybe_commit(2, 1)
for entry in log.next_committed_ents(allow_unstable=True):
    ...
```

The log raises `CompactedError` when you ask for data that was compacted
away. It raises `UnavailableError` when you ask for a term past the end of
the log. A broken invariant, such as committing beyond the last index or
slicing past the end, raises `RaftPanic`. `scan(lo, hi, page_size, visit)`
passes a range to `visit` in pages of about `page_size` bytes. If `visit`
raises an exception, the scan stops and the exception propagates.

## Membership changes

```python
from raftcore.confchange import Changer, ProgressTracker, describe
from raftcore.types import ConfChangeSingle, ConfChangeType

changer = Changer(ProgressTracker(max_inflight=10), last_index=0)
add_one = ConfChangeSingle(ConfChangeType.ADD_NODE, 1)
config, progress = changer.simple(add_one)
changer.tracker.config, changer.tracker.progress = config, progress

print(config)              # voters=(1)
print(describe(add_one))   # ConfChangeAddNode(1)
```

None of `simple`, `enter_joint(auto_leave, *changes)` or `leave_joint()`
modifies the tracker. Each one returns a new configuration and progress map,
which you install yourself. A change is refused with `ConfChangeError` when:

- `simple` would change more than one voter, or is called on a joint
  configuration;
- the change would remove all voters;
- the change would break the configuration's invariants.

`ProgressTracker.conf_state()` returns the configuration as a `ConfState`
with sorted id lists. `restore(changer, conf_state)` builds that
configuration from an empty one and returns it. The changer passed in is
not modified.

## Logging

The shared logger starts out as a `DefaultLogger`. It writes lines with a
timestamp to standard error, using the prefix `raft`. On a `DefaultLogger`:

- `debug` writes output only after `enable_debug()` has been called;
- `fatal` writes its message and then raises `SystemExit(1)`;
- `panic` writes its message and then raises `RaftPanic`.

You can pass a logger to `RaftLog` or `Unstable`. If you do not, they use
the shared logger.

## What the package does not do

There is no node or driver loop, no leader election, no message handling
and no networking. Replication progress beyond the fields of `Progress` is
not tracked. The package also ships no `Storage` implementation, so you must
supply the storage, in memory or on disk, yourself.

## Running the tests

```
pip install -e ".[test]"
pytest
```