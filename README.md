# flagstore

An in-memory, thread-safe store for feature flags that arrive from several
sources. When two sources define the same flag, the source listed later in
`State.flag_sources` wins. Every change returns per-flag notifications, so
callers can tell subscribers what was written, updated or deleted.

## Installation

```
pip install flagstore
```

## Usage

```python
from flagstore.store import Flag, State

state = State()
state.flag_sources = ["file:base.json", "file:override.json"]

notifications, resync = state.merge(
    "file:base.json",
    "",
    {"new-ui": Flag(default_variant="off")},
    {"team": "web"},
)
# notifications == {"new-ui": {"type": "write", "source": "file:base.json"}}
# resync is False

flag, metadata = state.get("new-ui")
# flag.source == "file:base.json", metadata == {"team": "web"}

missing, shared_metadata = state.get("unknown")
# missing is None

flags, merged_metadata = state.get_all()
print(state.to_json())
```

### The data types

- `Flag` is a dataclass with `state`, `default_variant`, `variants`,
  `targeting`, `source`, `selector` and `metadata`. `Flag.to_dict()` gives
  its JSON-ready form.
- `SourceDetails` records a `source` and a `selector`; `State.source_details`
  maps a source name to one of these, and `State.selector_for_flag(flag)`
  looks up the selector for the flag's source (an empty string if none).
- `NotificationType` holds the notification kinds: `CREATE` (`"write"`),
  `UPDATE` (`"update"`) and `DELETE` (`"delete"`).

### Main operations

- `State.merge(source, selector, flags, metadata)` replaces the flags that a
  source and selector own with a new set and records the source's metadata.
  Flags missing from the new set are deleted; flags identical to the stored
  ones produce no notification. It returns the notifications and whether a
  resync is needed because flags were deleted.
- `State.add`, `State.update` and `State.delete_flags` apply partial changes
  from a source. `update` skips flags that are not stored yet. Passing an
  empty mapping to `delete_flags` removes every flag that belongs to that
  source; `delete_flags` also drops that source's metadata.
- `State.has_priority(stored, new)` says whether source `new` may overwrite a
  flag held by source `stored`. A source always has priority over itself, and
  sources not listed in `flag_sources` are allowed to overwrite.
- `State.set`, `State.get` and `State.delete` work on a single flag.
  `get` returns the flag (or `None`) together with its source's metadata, or
  the merged metadata when the flag is missing.
- `State.get_metadata_for_source(source)` returns a copy of one source's
  metadata. `State.get_all()` returns a copy of all flags and metadata merged
  across sources, leaving out keys that more than one source defines.
- `State.to_json()` serialises the whole store to a compact JSON string and
  raises `ValueError` if something in it cannot be serialised.

Messages about skipped or missing flags go to the standard `logging` logger
named `flagstore.store`.

## What it does not do

The store only keeps flags in memory. It does not read flag definitions from
files or over the network, does not watch sources for changes, does not
persist anything, and does not evaluate flags or their targeting rules.

## Running the tests

```
pip install -e ".[test]"
pytest
```