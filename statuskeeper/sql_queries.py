"""SQL statements run by the database store, each on a connection owned by the caller.

None of these functions commits or rolls back: the caller decides the transaction.
"""

from __future__ import annotations

import math
import sqlite3
from datetime import datetime, timedelta, timezone

from .common import (
    MAXIMUM_NUMBER_OF_EVENTS,
    MAXIMUM_NUMBER_OF_RESULTS,
    NoRowsReturnedError,
    ServiceNotFoundError,
)
from .models import ConditionResult, Event, EventType, Result, Service

# Several error messages are kept in a single column, joined by this separator.
ARRAY_SEPARATOR = "|~|"

UPTIME_CLEAN_UP_THRESHOLD = timedelta(days=10)
"""Age of the oldest uptime entry past which old entries are cleaned up."""

EVENTS_CLEAN_UP_THRESHOLD = MAXIMUM_NUMBER_OF_EVENTS + 10
"""Number of events past which old events are cleaned up."""

RESULTS_CLEAN_UP_THRESHOLD = MAXIMUM_NUMBER_OF_RESULTS + 10
"""Number of results past which old results are cleaned up."""

UPTIME_RETENTION = timedelta(days=7)
"""How long uptime entries are kept once a clean-up happens."""

_SCHEMA = """
CREATE TABLE IF NOT EXISTS service (
    service_id    INTEGER PRIMARY KEY,
    service_key   TEXT UNIQUE,
    service_name  TEXT,
    service_group TEXT,
    UNIQUE(service_name, service_group)
);
CREATE TABLE IF NOT EXISTS service_event (
    service_event_id   INTEGER PRIMARY KEY,
    service_id         INTEGER REFERENCES service(service_id) ON DELETE CASCADE,
    event_type         TEXT,
    event_timestamp    TIMESTAMP
);
CREATE TABLE IF NOT EXISTS service_result (
    service_result_id      INTEGER PRIMARY KEY,
    service_id             INTEGER REFERENCES service(service_id) ON DELETE CASCADE,
    success                INTEGER,
    errors                 TEXT,
    connected              INTEGER,
    status                 INTEGER,
    dns_rcode              TEXT,
    certificate_expiration INTEGER,
    hostname               TEXT,
    ip                     TEXT,
    duration               INTEGER,
    timestamp              TIMESTAMP
);
CREATE TABLE IF NOT EXISTS service_result_condition (
    service_result_condition_id  INTEGER PRIMARY KEY,
    service_result_id            INTEGER REFERENCES service_result(service_result_id) ON DELETE CASCADE,
    condition                    TEXT,
    success                      INTEGER
);
CREATE TABLE IF NOT EXISTS service_uptime (
    service_uptime_id     INTEGER PRIMARY KEY,
    service_id            INTEGER REFERENCES service(service_id) ON DELETE CASCADE,
    hour_unix_timestamp   INTEGER,
    total_executions      INTEGER,
    successful_executions INTEGER,
    total_response_time   INTEGER,
    UNIQUE(service_id, hour_unix_timestamp)
);
"""

_MICROSECOND = timedelta(microseconds=1)
_MILLISECOND = timedelta(milliseconds=1)


def _unix(moment: datetime) -> int:
    return math.floor(moment.timestamp())


def _hour_floor(moment: datetime) -> int:
    seconds = _unix(moment)
    return seconds - seconds % 3600


def _to_nanoseconds(duration: timedelta) -> int:
    return (duration // _MICROSECOND) * 1000


def _from_nanoseconds(nanoseconds: int | None) -> timedelta:
    return timedelta(microseconds=(nanoseconds or 0) // 1000)


def _format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()


def _parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        moment = value
    else:
        if isinstance(value, bytes):
            value = value.decode()
        moment = datetime.fromisoformat(str(value))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def create_schema(conn: sqlite3.Connection) -> None:
    """Create every table the store needs, leaving existing ones untouched."""
    for statement in _SCHEMA.split(";"):
        if statement.strip():
            conn.execute(statement)


def insert_service(conn: sqlite3.Connection, service: Service) -> int:
    """Insert ``service`` and return its generated id."""
    cursor = conn.execute(
        "INSERT INTO service (service_key, service_name, service_group) VALUES (?, ?, ?)",
        (service.key(), service.name, service.group),
    )
    return cursor.lastrowid


def insert_event(conn: sqlite3.Connection, service_id: int, event: Event) -> None:
    """Insert ``event`` for the service with ``service_id``."""
    conn.execute(
        "INSERT INTO service_event (service_id, event_type, event_timestamp) VALUES (?, ?, ?)",
        (service_id, EventType(event.type).value, _format_timestamp(event.timestamp)),
    )


def insert_result(conn: sqlite3.Connection, service_id: int, result: Result) -> int:
    """Insert ``result`` and its condition results; return the id of the new result row."""
    cursor = conn.execute(
        """
        INSERT INTO service_result (service_id, success, errors, connected, status, dns_rcode,
                                    certificate_expiration, hostname, ip, duration, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            service_id,
            int(result.success),
            ARRAY_SEPARATOR.join(result.errors),
            int(result.connected),
            result.http_status,
            result.dns_rcode,
            _to_nanoseconds(result.certificate_expiration),
            result.hostname,
            result.ip,
            _to_nanoseconds(result.duration),
            _format_timestamp(result.timestamp),
        ),
    )
    service_result_id = cursor.lastrowid
    insert_condition_results(conn, service_result_id, result.condition_results)
    return service_result_id


def insert_condition_results(
    conn: sqlite3.Connection, service_result_id: int, condition_results: list[ConditionResult]
) -> None:
    """Insert the condition results belonging to the result with ``service_result_id``."""
    conn.executemany(
        "INSERT INTO service_result_condition (service_result_id, condition, success) VALUES (?, ?, ?)",
        [(service_result_id, cr.condition, int(cr.success)) for cr in condition_results],
    )


def update_service_uptime(conn: sqlite3.Connection, service_id: int, result: Result) -> None:
    """Add ``result`` to the uptime counters of the hour it falls in."""
    conn.execute(
        """
        INSERT INTO service_uptime (service_id, hour_unix_timestamp, total_executions,
                                    successful_executions, total_response_time)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(service_id, hour_unix_timestamp) DO UPDATE SET
            total_executions = excluded.total_executions + service_uptime.total_executions,
            successful_executions = excluded.successful_executions + service_uptime.successful_executions,
            total_response_time = excluded.total_response_time + service_uptime.total_response_time
        """,
        (
            service_id,
            _hour_floor(result.timestamp),
            1,
            1 if result.success else 0,
            result.duration // _MILLISECOND,
        ),
    )


def get_all_service_keys(conn: sqlite3.Connection) -> list[str]:
    """Return the keys of every stored service, sorted."""
    rows = conn.execute("SELECT service_key FROM service ORDER BY service_key").fetchall()
    return [key for (key,) in rows]


def get_service_id_group_and_name_by_key(conn: sqlite3.Connection, key: str) -> tuple[int, str, str]:
    """Return the id, group and name of the service with ``key``."""
    row = conn.execute(
        "SELECT service_id, service_group, service_name FROM service WHERE service_key = ? LIMIT 1",
        (key,),
    ).fetchone()
    if row is None:
        raise ServiceNotFoundError()
    return row[0], row[1], row[2]


def get_events_by_service_id(
    conn: sqlite3.Connection, service_id: int, page: int, page_size: int
) -> list[Event]:
    """Return one page of the service's events, oldest first."""
    rows = conn.execute(
        """
        SELECT event_type, event_timestamp
        FROM service_event
        WHERE service_id = ?
        ORDER BY service_event_id ASC
        LIMIT ? OFFSET ?
        """,
        (service_id, page_size, (page - 1) * page_size),
    ).fetchall()
    return [Event(type=EventType(kind), timestamp=_parse_timestamp(ts)) for kind, ts in rows]


def get_results_by_service_id(
    conn: sqlite3.Connection, service_id: int, page: int, page_size: int
) -> list[Result]:
    """Return one page of the service's results counted from the newest, ordered oldest first."""
    rows = conn.execute(
        """
        SELECT service_result_id, success, errors, connected, status, dns_rcode,
               certificate_expiration, hostname, ip, duration, timestamp
        FROM service_result
        WHERE service_id = ?
        ORDER BY service_result_id DESC
        LIMIT ? OFFSET ?
        """,
        (service_id, page_size, (page - 1) * page_size),
    ).fetchall()
    by_id: dict[int, Result] = {}
    results: list[Result] = []
    for (result_id, success, joined_errors, connected, status, dns_rcode,
         certificate_expiration, hostname, ip, duration, timestamp) in reversed(rows):
        result = Result(
            timestamp=_parse_timestamp(timestamp),
            success=bool(success),
            hostname=hostname or "",
            ip=ip or "",
            http_status=status or 0,
            dns_rcode=dns_rcode or "",
            errors=joined_errors.split(ARRAY_SEPARATOR) if joined_errors else [],
            connected=bool(connected),
            duration=_from_nanoseconds(duration),
            certificate_expiration=_from_nanoseconds(certificate_expiration),
        )
        by_id[result_id] = result
        results.append(result)
    if not by_id:
        return results
    placeholders = ",".join("?" * len(by_id))
    condition_rows = conn.execute(
        f"""
        SELECT service_result_id, condition, success
        FROM service_result_condition
        WHERE service_result_id IN ({placeholders})
        ORDER BY service_result_condition_id
        """,
        tuple(by_id),
    ).fetchall()
    for result_id, condition, success in condition_rows:
        by_id[result_id].condition_results.append(
            ConditionResult(condition=condition, success=bool(success))
        )
    return results


def get_service_uptime(
    conn: sqlite3.Connection, service_id: int, start: datetime, end: datetime
) -> tuple[float, timedelta]:
    """Return the uptime share and the average response time of the service in the range."""
    row = conn.execute(
        """
        SELECT SUM(total_executions), SUM(successful_executions), SUM(total_response_time)
        FROM service_uptime
        WHERE service_id = ?
            AND hour_unix_timestamp >= ?
            AND hour_unix_timestamp <= ?
        """,
        (service_id, _unix(start), _unix(end)),
    ).fetchone()
    total, successful, response_time = (value or 0 for value in (row or (0, 0, 0)))
    if total <= 0:
        return 0.0, timedelta(0)
    return successful / total, timedelta(milliseconds=int(response_time / total))


def get_service_average_response_time(
    conn: sqlite3.Connection, service_id: int, start: datetime, end: datetime
) -> int:
    """Return the average response time in milliseconds of the service in the range."""
    row = conn.execute(
        """
        SELECT SUM(total_executions), SUM(total_response_time)
        FROM service_uptime
        WHERE service_id = ?
            AND total_executions > 0
            AND hour_unix_timestamp >= ?
            AND hour_unix_timestamp <= ?
        """,
        (service_id, _unix(start), _unix(end)),
    ).fetchone()
    total, response_time = (value or 0 for value in (row or (0, 0)))
    if total == 0:
        return 0
    return int(response_time / total)


def get_service_hourly_average_response_times(
    conn: sqlite3.Connection, service_id: int, start: datetime, end: datetime
) -> dict[int, int]:
    """Return the average response time in milliseconds of each hour with executions in the range."""
    rows = conn.execute(
        """
        SELECT hour_unix_timestamp, total_executions, total_response_time
        FROM service_uptime
        WHERE service_id = ?
            AND total_executions > 0
            AND hour_unix_timestamp >= ?
            AND hour_unix_timestamp <= ?
        """,
        (service_id, _unix(start), _unix(end)),
    ).fetchall()
    return {hour: int(response_time / total) for hour, total, response_time in rows}


def get_service_id(conn: sqlite3.Connection, service: Service) -> int:
    """Return the id of ``service``; raise ServiceNotFoundError if it is not stored."""
    row = conn.execute(
        "SELECT service_id FROM service WHERE service_key = ?", (service.key(),)
    ).fetchone()
    if row is None:
        raise ServiceNotFoundError()
    return row[0]


def get_number_of_events_by_service_id(conn: sqlite3.Connection, service_id: int) -> int:
    """Return how many events the service has."""
    return conn.execute(
        "SELECT COUNT(1) FROM service_event WHERE service_id = ?", (service_id,)
    ).fetchone()[0]


def get_number_of_results_by_service_id(conn: sqlite3.Connection, service_id: int) -> int:
    """Return how many results the service has."""
    return conn.execute(
        "SELECT COUNT(1) FROM service_result WHERE service_id = ?", (service_id,)
    ).fetchone()[0]


def get_age_of_oldest_service_uptime_entry(conn: sqlite3.Connection, service_id: int) -> timedelta:
    """Return how long ago the oldest uptime hour of the service began."""
    row = conn.execute(
        """
        SELECT hour_unix_timestamp
        FROM service_uptime
        WHERE service_id = ?
        ORDER BY hour_unix_timestamp
        LIMIT 1
        """,
        (service_id,),
    ).fetchone()
    if row is None:
        raise NoRowsReturnedError()
    return datetime.now(timezone.utc) - datetime.fromtimestamp(row[0], timezone.utc)


def get_last_service_result_success_value(conn: sqlite3.Connection, service_id: int) -> bool:
    """Return whether the most recent result of the service was a success."""
    row = conn.execute(
        "SELECT success FROM service_result WHERE service_id = ? ORDER BY service_result_id DESC LIMIT 1",
        (service_id,),
    ).fetchone()
    if row is None:
        raise NoRowsReturnedError()
    return bool(row[0])


def delete_old_service_events(conn: sqlite3.Connection, service_id: int) -> None:
    """Delete all but the most recent events of the service."""
    conn.execute(
        """
        DELETE FROM service_event
        WHERE service_id = :service_id
            AND service_event_id NOT IN (
                SELECT service_event_id
                FROM service_event
                WHERE service_id = :service_id
                ORDER BY service_event_id DESC
                LIMIT :limit
            )
        """,
        {"service_id": service_id, "limit": MAXIMUM_NUMBER_OF_EVENTS},
    )


def delete_old_service_results(conn: sqlite3.Connection, service_id: int) -> None:
    """Delete all but the most recent results of the service."""
    conn.execute(
        """
        DELETE FROM service_result
        WHERE service_id = :service_id
            AND service_result_id NOT IN (
                SELECT service_result_id
                FROM service_result
                WHERE service_id = :service_id
                ORDER BY service_result_id DESC
                LIMIT :limit
            )
        """,
        {"service_id": service_id, "limit": MAXIMUM_NUMBER_OF_RESULTS},
    )


def delete_old_uptime_entries(conn: sqlite3.Connection, service_id: int, max_age: datetime) -> None:
    """Delete the service's uptime hours that began before ``max_age``."""
    conn.execute(
        "DELETE FROM service_uptime WHERE service_id = ? AND hour_unix_timestamp < ?",
        (service_id, _unix(max_age)),
    )