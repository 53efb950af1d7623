import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from statuskeeper import sql_queries as q
from statuskeeper.common import (
    MAXIMUM_NUMBER_OF_EVENTS,
    MAXIMUM_NUMBER_OF_RESULTS,
    NoRowsReturnedError,
    ServiceNotFoundError,
)
from statuskeeper.models import ConditionResult, Event, EventType, Result, Service

NOW = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)

SERVICE = Service(
    name="name",
    group="group",
    url="https://example.org/what/ever",
    method="GET",
    body="body",
    interval=timedelta(seconds=30),
    conditions=["[STATUS] == 200", "[RESPONSE_TIME] < 500", "[CERTIFICATE_EXPIRATION] < 72h"],
)

SUCCESSFUL = Result(
    timestamp=NOW,
    success=True,
    hostname="example.org",
    ip="127.0.0.1",
    http_status=200,
    errors=[],
    connected=True,
    duration=timedelta(milliseconds=150),
    certificate_expiration=timedelta(hours=10),
    condition_results=[
        ConditionResult("[STATUS] == 200", True),
        ConditionResult("[RESPONSE_TIME] < 500", True),
        ConditionResult("[CERTIFICATE_EXPIRATION] < 72h", True),
    ],
)

UNSUCCESSFUL = Result(
    timestamp=NOW,
    success=False,
    hostname="example.org",
    ip="127.0.0.1",
    http_status=200,
    errors=["error-1", "error-2"],
    connected=True,
    duration=timedelta(milliseconds=750),
    certificate_expiration=timedelta(hours=10),
    condition_results=[
        ConditionResult("[STATUS] == 200", True),
        ConditionResult("[RESPONSE_TIME] < 500", False),
        ConditionResult("[CERTIFICATE_EXPIRATION] < 72h", False),
    ],
)


@pytest.fixture
def conn(tmp_path):
    connection = sqlite3.connect(tmp_path / "queries.db")
    connection.execute("PRAGMA foreign_keys=ON")
    q.create_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def service_id(conn):
    return q.insert_service(conn, SERVICE)


def _record(conn, service_id, result):
    q.insert_result(conn, service_id, result)
    q.update_service_uptime(conn, service_id, result)


def test_create_schema_is_idempotent(conn):
    q.create_schema(conn)
    tables = {
        name for (name,) in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    }
    assert {
        "service",
        "service_event",
        "service_result",
        "service_result_condition",
        "service_uptime",
    } <= tables


def test_insert_service_and_look_it_up(conn, service_id):
    assert q.get_service_id(conn, SERVICE) == service_id
    assert q.get_service_id_group_and_name_by_key(conn, SERVICE.key()) == (service_id, "group", "name")
    assert q.get_all_service_keys(conn) == ["group_name"]


def test_insert_same_service_twice_violates_uniqueness(conn, service_id):
    with pytest.raises(sqlite3.IntegrityError):
        q.insert_service(conn, SERVICE)


def test_missing_service_raises_not_found(conn):
    with pytest.raises(ServiceNotFoundError):
        q.get_service_id(conn, SERVICE)
    with pytest.raises(ServiceNotFoundError):
        q.get_service_id_group_and_name_by_key(conn, "missing_key")


def test_get_all_service_keys_is_sorted(conn):
    q.insert_service(conn, Service(name="b", group="z"))
    q.insert_service(conn, Service(name="a", group="a"))
    assert q.get_all_service_keys(conn) == ["a_a", "z_b"]


def test_events_round_trip_and_paging(conn, service_id):
    start = Event(type=EventType.START, timestamp=NOW - timedelta(minutes=1))
    q.insert_event(conn, service_id, start)
    q.insert_event(conn, service_id, Event.from_result(SUCCESSFUL))
    q.insert_event(conn, service_id, Event.from_result(UNSUCCESSFUL))
    events = q.get_events_by_service_id(conn, service_id, 1, 50)
    assert [e.type for e in events] == [EventType.START, EventType.HEALTHY, EventType.UNHEALTHY]
    assert events[0].timestamp == start.timestamp
    assert q.get_number_of_events_by_service_id(conn, service_id) == 3
    second_page = q.get_events_by_service_id(conn, service_id, 2, 2)
    assert [e.type for e in second_page] == [EventType.UNHEALTHY]


def test_results_round_trip(conn, service_id):
    q.insert_result(conn, service_id, SUCCESSFUL)
    q.insert_result(conn, service_id, UNSUCCESSFUL)
    results = q.get_results_by_service_id(conn, service_id, 1, 50)
    assert len(results) == 2
    for expected, actual in zip([SUCCESSFUL, UNSUCCESSFUL], results):
        assert actual.success == expected.success
        assert actual.http_status == expected.http_status
        assert actual.dns_rcode == expected.dns_rcode
        assert actual.hostname == expected.hostname
        assert actual.ip == expected.ip
        assert actual.connected == expected.connected
        assert actual.duration == expected.duration
        assert actual.certificate_expiration == expected.certificate_expiration
        assert actual.errors == expected.errors
        assert actual.condition_results == expected.condition_results
        assert actual.timestamp == expected.timestamp
    assert q.get_number_of_results_by_service_id(conn, service_id) == 2


def test_results_page_one_holds_the_most_recent(conn, service_id):
    q.insert_result(conn, service_id, replace(SUCCESSFUL, timestamp=NOW - timedelta(minutes=1)))
    q.insert_result(conn, service_id, replace(UNSUCCESSFUL, timestamp=NOW))
    page1 = q.get_results_by_service_id(conn, service_id, 1, 1)
    page2 = q.get_results_by_service_id(conn, service_id, 2, 1)
    assert len(page1) == 1 and len(page2) == 1
    assert page1[0].timestamp > page2[0].timestamp


def test_results_of_unknown_service_are_empty(conn):
    assert q.get_results_by_service_id(conn, 42, 1, 20) == []


def test_last_result_success_value(conn, service_id):
    q.insert_result(conn, service_id, SUCCESSFUL)
    assert q.get_last_service_result_success_value(conn, service_id) is True
    q.insert_result(conn, service_id, UNSUCCESSFUL)
    assert q.get_last_service_result_success_value(conn, service_id) is False


def test_no_rows(conn):
    with pytest.raises(NoRowsReturnedError):
        q.get_last_service_result_success_value(conn, 1)
    with pytest.raises(NoRowsReturnedError):
        q.get_age_of_oldest_service_uptime_entry(conn, 1)


def test_uptime_is_half_after_one_success_and_one_failure(conn, service_id):
    _record(conn, service_id, replace(SUCCESSFUL, timestamp=NOW - timedelta(minutes=1)))
    _record(conn, service_id, replace(UNSUCCESSFUL, timestamp=NOW))
    now = datetime.now(timezone.utc)
    for window in (timedelta(hours=1), timedelta(hours=24), timedelta(days=7)):
        uptime, average = q.get_service_uptime(conn, service_id, NOW - window, now)
        assert uptime == 0.5
        assert average == timedelta(milliseconds=450)


def test_uptime_without_data_is_zero(conn, service_id):
    now = datetime.now(timezone.utc)
    assert q.get_service_uptime(conn, service_id, now - timedelta(hours=1), now) == (0.0, timedelta(0))


@pytest.fixture
def four_results(conn, service_id):
    _record(conn, service_id, replace(SUCCESSFUL, timestamp=NOW - timedelta(hours=2),
                                      duration=timedelta(milliseconds=300)))
    _record(conn, service_id, replace(SUCCESSFUL, timestamp=NOW - timedelta(hours=1, minutes=30),
                                      duration=timedelta(milliseconds=150)))
    _record(conn, service_id, replace(UNSUCCESSFUL, timestamp=NOW - timedelta(hours=1),
                                      duration=timedelta(milliseconds=200)))
    _record(conn, service_id, replace(SUCCESSFUL, timestamp=NOW,
                                      duration=timedelta(milliseconds=500)))
    return service_id


@pytest.mark.parametrize(
    "start, end, expected",
    [
        (NOW - timedelta(hours=48), NOW - timedelta(hours=24), 0),
        (NOW - timedelta(hours=24), NOW, 287),
        (NOW - timedelta(hours=1), NOW, 350),
        (NOW - timedelta(hours=2), NOW - timedelta(hours=1), 216),
    ],
)
def test_average_response_time(conn, four_results, start, end, expected):
    assert q.get_service_average_response_time(conn, four_results, start, end) == expected


def test_hourly_average_response_times(conn, four_results):
    hourly = q.get_service_hourly_average_response_times(
        conn, four_results, NOW - timedelta(hours=24), NOW
    )
    hour = int(NOW.timestamp())
    assert hourly == {hour: 500, hour - 3600: 200, hour - 7200: 225}


def test_uptime_accumulates_within_an_hour(conn, service_id):
    for minutes, success in ((0, True), (10, False), (20, True)):
        result = replace(SUCCESSFUL, timestamp=NOW + timedelta(minutes=minutes), success=success)
        q.update_service_uptime(conn, service_id, result)
    row = conn.execute(
        "SELECT total_executions, successful_executions, total_response_time FROM service_uptime"
    ).fetchall()
    assert row == [(3, 2, 450)]


def test_age_of_oldest_uptime_entry(conn, service_id):
    q.update_service_uptime(conn, service_id, Result(timestamp=NOW - timedelta(hours=5), success=True))
    assert q.get_age_of_oldest_service_uptime_entry(conn, service_id) // timedelta(hours=1) == 5
    q.update_service_uptime(conn, service_id, Result(timestamp=NOW - timedelta(hours=3), success=True))
    assert q.get_age_of_oldest_service_uptime_entry(conn, service_id) // timedelta(hours=1) == 5
    q.update_service_uptime(conn, service_id, Result(timestamp=NOW - timedelta(hours=8), success=True))
    assert q.get_age_of_oldest_service_uptime_entry(conn, service_id) // timedelta(hours=1) == 8


def test_delete_old_uptime_entries(conn, service_id):
    old = NOW - (q.UPTIME_CLEAN_UP_THRESHOLD + timedelta(hours=1))
    q.update_service_uptime(conn, service_id, Result(timestamp=old, success=True))
    q.update_service_uptime(conn, service_id, Result(timestamp=NOW - timedelta(hours=8), success=True))
    cutoff = datetime.now(timezone.utc) - (q.UPTIME_RETENTION + timedelta(hours=1))
    q.delete_old_uptime_entries(conn, service_id, cutoff)
    assert q.get_age_of_oldest_service_uptime_entry(conn, service_id) // timedelta(hours=1) == 8


def test_delete_old_service_events_keeps_the_newest(conn, service_id):
    for index in range(MAXIMUM_NUMBER_OF_EVENTS + 10):
        q.insert_event(conn, service_id, Event(EventType.HEALTHY, NOW + timedelta(seconds=index)))
    q.delete_old_service_events(conn, service_id)
    assert q.get_number_of_events_by_service_id(conn, service_id) == MAXIMUM_NUMBER_OF_EVENTS
    events = q.get_events_by_service_id(conn, service_id, 1, 100)
    assert events[0].timestamp == NOW + timedelta(seconds=10)


def test_delete_old_service_results_keeps_the_newest(conn, service_id):
    for index in range(MAXIMUM_NUMBER_OF_RESULTS + 10):
        q.insert_result(conn, service_id, replace(SUCCESSFUL, timestamp=NOW + timedelta(seconds=index)))
    q.delete_old_service_results(conn, service_id)
    assert q.get_number_of_results_by_service_id(conn, service_id) == MAXIMUM_NUMBER_OF_RESULTS
    results = q.get_results_by_service_id(conn, service_id, 1, 500)
    assert results[0].timestamp == NOW + timedelta(seconds=10)


def test_deleting_a_service_cascades(conn, service_id):
    _record(conn, service_id, SUCCESSFUL)
    q.insert_event(conn, service_id, Event.from_result(SUCCESSFUL))
    conn.execute("DELETE FROM service")
    assert q.get_number_of_results_by_service_id(conn, service_id) == 0
    assert q.get_number_of_events_by_service_id(conn, service_id) == 0
    assert conn.execute("SELECT COUNT(1) FROM service_result_condition").fetchone()[0] == 0
    assert conn.execute("SELECT COUNT(1) FROM service_uptime").fetchone()[0] == 0


@pytest.mark.parametrize(
    "call",
    [
        lambda c: q.insert_service(c, SERVICE),
        lambda c: q.insert_event(c, 1, Event.from_result(SUCCESSFUL)),
        lambda c: q.insert_result(c, 1, SUCCESSFUL),
        lambda c: q.insert_condition_results(c, 1, SUCCESSFUL.condition_results),
        lambda c: q.update_service_uptime(c, 1, SUCCESSFUL),
        lambda c: q.get_all_service_keys(c),
        lambda c: q.get_service_id_group_and_name_by_key(c, SERVICE.key()),
        lambda c: q.get_events_by_service_id(c, 1, 1, 50),
        lambda c: q.get_results_by_service_id(c, 1, 1, 50),
        lambda c: q.delete_old_service_events(c, 1),
        lambda c: q.delete_old_service_results(c, 1),
        lambda c: q.get_service_uptime(c, 1, NOW, NOW),
        lambda c: q.get_service_average_response_time(c, 1, NOW, NOW),
        lambda c: q.get_service_hourly_average_response_times(c, 1, NOW, NOW),
        lambda c: q.get_service_id(c, SERVICE),
        lambda c: q.get_number_of_events_by_service_id(c, 1),
        lambda c: q.get_number_of_results_by_service_id(c, 1),
        lambda c: q.get_age_of_oldest_service_uptime_entry(c, 1),
        lambda c: q.get_last_service_result_success_value(c, 1),
        lambda c: q.delete_old_uptime_entries(c, 1, NOW),
    ],
)
def test_closed_connection_raises(tmp_path, call):
    connection = sqlite3.connect(tmp_path / "closed.db")
    q.create_schema(connection)
    connection.close()
    with pytest.raises(sqlite3.ProgrammingError):
        call(connection)


def test_missing_table_raises_operational_error(conn, service_id):
    conn.execute("DROP TABLE service_uptime")
    with pytest.raises(sqlite3.OperationalError):
        q.update_service_uptime(conn, service_id, SUCCESSFUL)