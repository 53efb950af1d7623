# statuskeeper

A library for storing the results of service health checks. For each service it
keeps the recent results, the events that mark changes between healthy and
unhealthy, and hourly uptime statistics. It can then answer questions such as
"what was the uptime over the past day?" or "what was the average response
time in each hour?".

## Stores

Both stores implement the abstract interface `statuskeeper.models.Store`, and
both can be used as context managers; leaving the `with` block calls `close()`.

- `statuskeeper.memory.MemoryStore(file="")` keeps everything in memory. When
  `file` is given, the store loads it at construction time (if it exists and is
  not empty) and writes to it on `save()`. The file is a Python pickle, so load
  only files you trust.
- `statuskeeper.sql.SQLStore(driver, path)` keeps everything in an SQLite
  database. Every change is written straight away, so `save()` does nothing.
  The only supported driver is `"sqlite"`. An empty driver, an empty path or
  any other driver raises `ValueError`.

The store interface offers:

- `insert(service, result)`
- `get_all_service_statuses(params)`: sorted by key
- `get_service_status(group_name, service_name, params)` and
  `get_service_status_by_key(key, params)`
- `get_uptime_by_key(key, start, end)`: the share of successful executions, from 0.0 to 1.0
- `get_average_response_time_by_key(key, start, end)`: in milliseconds
- `get_hourly_average_response_time_by_key(key, start, end)`: a dict that maps the
  Unix timestamp of the start of each hour to an average in milliseconds
- `delete_all_service_statuses_not_in_keys(keys)`: returns the number of services deleted
- `clear()`, `save()`, `close()`

## Data model

`statuskeeper.models` defines `Service`, `Result`, `ConditionResult`, `Event`,
`EventType` (`START`, `HEALTHY`, `UNHEALTHY`), `ServiceStatus`, `Uptime` and
`HourlyUptimeStatistics`.

A service's key is built from its group and its name by
`statuskeeper.key.convert_group_and_service_to_key`, which is also what
`Service.key()` calls. For example, `("Core", "Front End")` becomes
`core_front-end`.

## Paging

`statuskeeper.paging.ServiceStatusParams` selects which results and events a
read returns. Its methods chain:

```python
ServiceStatusParams().with_results(1, 20).with_events(1, 50)
```

Results are paged from the most recent, so page 1 holds the newest results.
Within a page they are ordered from oldest to newest. For events, the in-memory
store counts pages from the newest events and the SQLite store counts them from
the oldest. A page size of 0, which is the default, returns no results or
events.

## Limits and retention

- The in-memory store keeps at most 100 results and 50 events for each service
  (`statuskeeper.common.MAXIMUM_NUMBER_OF_RESULTS` and `MAXIMUM_NUMBER_OF_EVENTS`).
- The SQLite store lets these grow to 110 results and 60 events, then trims them
  back to 100 and 50.
- Hourly uptime statistics older than about eight days are dropped once more
  than ten days' worth has built up.

## Errors

All store errors derive from `statuskeeper.common.StoreError`:

- Looking up an unknown service raises `ServiceNotFoundError`, which is also a
  `LookupError`.
- A time range whose start lies after its end raises `InvalidTimeRangeError`,
  which is also a `ValueError`.
- Database failures in the SQLite store are raised as `StoreError`.

## Process-wide store

`statuskeeper.storage` holds a single store for the whole process:

- `initialize(cfg)` takes a `StorageConfig(file=..., type=...)`, where `type`
  is a `StorageType`, and creates the matching store:
  - `StorageType.SQLITE` creates an `SQLStore`, which needs `file`.
  - With no type, or with `StorageType.MEMORY`, it creates a `MemoryStore`.
    When a `file` is given, a background thread saves the store every seven minutes.
  - `StorageType.POSTGRES` is accepted by the configuration, but `initialize`
    raises `ValueError` for it because only SQLite is supported.
- Calling `initialize` again stops any running save thread before it creates the new store.
- `get()` returns the current store. If none was initialized yet, it first
  creates a default in-memory store.
- `auto_save_store(provider, interval, stop_event)` is the save loop. It saves
  at every interval until the `threading.Event` is set.

## Example

```python
from datetime import datetime, timedelta

from statuskeeper.models import Result, Service
from statuskeeper.paging import ServiceStatusParams
from statuskeeper.storage import StorageConfig, StorageType, get, initialize

initialize(StorageConfig(type=StorageType.SQLITE, file="statuses.db"))
store = get()

service = Service(name="Front End", group="Core")
store.insert(service, Result(success=True, timestamp=datetime.now(),
                             duration=timedelta(milliseconds=150)))

status = store.get_service_status(
    "Core", "Front End",
    ServiceStatusParams().with_results(1, 20).with_events(1, 50),
)
print(status.key, len(status.results), len(status.events))

now = datetime.now()
print(store.get_uptime_by_key(service.key(), now - timedelta(hours=24), now))
print(store.get_average_response_time_by_key(service.key(), now - timedelta(hours=24), now))
```

## What this package does not do

This package only stores results and reports on them. It does not:

- run health checks against services;
- evaluate conditions;
- send alerts;
- publish metrics;
- serve a web page or an HTTP API;
- provide a command-line program.

It also has no PostgreSQL store. The results it stores must come from elsewhere.

## Installation and tests

This package has no third-party dependencies. The SQLite store uses the
standard library's `sqlite3`.

```
pip install ".[test]"
pytest
```