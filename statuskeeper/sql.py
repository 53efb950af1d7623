"""Store that persists service statuses in an SQLite database."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from . import sql_queries as queries
from .common import InvalidTimeRangeError, ServiceNotFoundError, StoreError
from .key import convert_group_and_service_to_key
from .models import Event, EventType, Result, Service, ServiceStatus, Store
from .paging import ServiceStatusParams

logger = logging.getLogger(__name__)

_SUPPORTED_DRIVERS = ("sqlite",)
_PRAGMAS = ("PRAGMA foreign_keys=ON", "PRAGMA journal_mode=WAL", "PRAGMA synchronous=NORMAL")
_START_EVENT_OFFSET = timedelta(milliseconds=50)


class SQLStore(Store):
    """Store backed by a database file; every change is persisted immediately."""

    def __init__(self, driver: str, path: str) -> None:
        if not driver:
            raise ValueError("database driver cannot be empty")
        if not path:
            raise ValueError("file path cannot be empty")
        if driver not in _SUPPORTED_DRIVERS:
            raise ValueError(f"unsupported database driver: {driver}")
        self.driver = driver
        self.file = path
        # A single connection guarded by a lock avoids "database is locked" errors under WAL.
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open database {path}: {exc}") from exc
        for pragma in _PRAGMAS:
            try:
                self._conn.execute(pragma)
            except sqlite3.Error as exc:
                logger.debug("Ignoring failed %s: %s", pragma, exc)
        try:
            self.create_schema()
        except StoreError:
            self._conn.close()
            raise

    def create_schema(self) -> None:
        """Create the tables the store needs, if they do not exist yet."""
        with self._lock:
            try:
                queries.create_schema(self._conn)
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in a transaction, rolled back and reported as StoreError on failure."""
        with self._lock:
            try:
                self._conn.execute("BEGIN")
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc
            try:
                yield self._conn
            except BaseException as exc:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                if isinstance(exc, sqlite3.Error):
                    raise StoreError(str(exc)) from exc
                raise
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise StoreError(str(exc)) from exc

    @staticmethod
    def _service_status(
        conn: sqlite3.Connection, key: str, params: ServiceStatusParams
    ) -> ServiceStatus:
        service_id, group, name = queries.get_service_id_group_and_name_by_key(conn, key)
        status = ServiceStatus(key=key, group=group, name=name)
        if params.events_page_size > 0:
            try:
                status.events = queries.get_events_by_service_id(
                    conn, service_id, params.events_page, params.events_page_size
                )
            except sqlite3.Error as exc:
                logger.warning("Failed to retrieve events for key=%s: %s", key, exc)
        if params.results_page_size > 0:
            try:
                status.results = queries.get_results_by_service_id(
                    conn, service_id, params.results_page, params.results_page_size
                )
            except sqlite3.Error as exc:
                logger.warning("Failed to retrieve results for key=%s: %s", key, exc)
        return status

    def get_all_service_statuses(self, params: ServiceStatusParams) -> list[ServiceStatus]:
        statuses = []
        with self._transaction() as conn:
            for key in queries.get_all_service_keys(conn):
                try:
                    statuses.append(self._service_status(conn, key, params))
                except (StoreError, sqlite3.Error) as exc:
                    logger.warning("Skipping service with key=%s: %s", key, exc)
        return statuses

    def get_service_status(
        self, group_name: str, service_name: str, params: ServiceStatusParams
    ) -> ServiceStatus:
        key = convert_group_and_service_to_key(group_name, service_name)
        return self.get_service_status_by_key(key, params)

    def get_service_status_by_key(self, key: str, params: ServiceStatusParams) -> ServiceStatus:
        with self._transaction() as conn:
            return self._service_status(conn, key, params)

    def get_uptime_by_key(self, key: str, start: datetime, end: datetime) -> float:
        if start > end:
            raise InvalidTimeRangeError()
        with self._transaction() as conn:
            service_id, _, _ = queries.get_service_id_group_and_name_by_key(conn, key)
            uptime, _ = queries.get_service_uptime(conn, service_id, start, end)
        return uptime

    def get_average_response_time_by_key(self, key: str, start: datetime, end: datetime) -> int:
        if start > end:
            raise InvalidTimeRangeError()
        with self._transaction() as conn:
            service_id, _, _ = queries.get_service_id_group_and_name_by_key(conn, key)
            return queries.get_service_average_response_time(conn, service_id, start, end)

    def get_hourly_average_response_time_by_key(
        self, key: str, start: datetime, end: datetime
    ) -> dict[int, int]:
        if start > end:
            raise InvalidTimeRangeError()
        with self._transaction() as conn:
            service_id, _, _ = queries.get_service_id_group_and_name_by_key(conn, key)
            return queries.get_service_hourly_average_response_times(conn, service_id, start, end)

    def insert(self, service: Service, result: Result) -> None:
        with self._transaction() as conn:
            try:
                service_id = queries.get_service_id(conn, service)
            except ServiceNotFoundError:
                try:
                    service_id = queries.insert_service(conn, service)
                except sqlite3.Error as exc:
                    logger.error(
                        "Failed to create service with group=%s; service=%s: %s",
                        service.group, service.name, exc,
                    )
                    raise
            self._record_events(conn, service_id, service, result)
            try:
                queries.insert_result(conn, service_id, result)
            except sqlite3.Error as exc:
                logger.error(
                    "Failed to insert result for group=%s; service=%s: %s",
                    service.group, service.name, exc,
                )
                raise
            self._clean_up_results(conn, service_id, service)
            self._record_uptime(conn, service_id, service, result)

    @staticmethod
    def _record_events(
        conn: sqlite3.Connection, service_id: int, service: Service, result: Result
    ) -> None:
        """Add the events implied by ``result``; failures are logged, never raised."""
        try:
            number_of_events = queries.get_number_of_events_by_service_id(conn, service_id)
        except sqlite3.Error as exc:
            logger.warning("Failed to count events for service=%s: %s", service.name, exc)
            number_of_events = 0
        new_events: list[Event] = []
        if number_of_events == 0:
            new_events.append(
                Event(type=EventType.START, timestamp=result.timestamp - _START_EVENT_OFFSET)
            )
            new_events.append(Event.from_result(result))
        else:
            try:
                last_success = queries.get_last_service_result_success_value(conn, service_id)
            except (StoreError, sqlite3.Error) as exc:
                logger.warning(
                    "Failed to retrieve outcome of previous result for service=%s: %s",
                    service.name, exc,
                )
            else:
                if last_success != result.success:
                    new_events.append(Event.from_result(result))
        for event in new_events:
            try:
                queries.insert_event(conn, service_id, event)
            except sqlite3.Error as exc:
                logger.warning(
                    "Failed to insert event=%s for service=%s: %s",
                    event.type.value, service.name, exc,
                )
        if number_of_events > queries.EVENTS_CLEAN_UP_THRESHOLD:
            try:
                queries.delete_old_service_events(conn, service_id)
            except sqlite3.Error as exc:
                logger.warning("Failed to delete old events for service=%s: %s", service.name, exc)

    @staticmethod
    def _clean_up_results(conn: sqlite3.Connection, service_id: int, service: Service) -> None:
        try:
            if queries.get_number_of_results_by_service_id(conn, service_id) > (
                queries.RESULTS_CLEAN_UP_THRESHOLD
            ):
                queries.delete_old_service_results(conn, service_id)
        except sqlite3.Error as exc:
            logger.warning("Failed to clean up results for service=%s: %s", service.name, exc)

    @staticmethod
    def _record_uptime(
        conn: sqlite3.Connection, service_id: int, service: Service, result: Result
    ) -> None:
        try:
            queries.update_service_uptime(conn, service_id, result)
        except sqlite3.Error as exc:
            logger.warning("Failed to update uptime for service=%s: %s", service.name, exc)
        try:
            age = queries.get_age_of_oldest_service_uptime_entry(conn, service_id)
        except (StoreError, sqlite3.Error) as exc:
            logger.warning(
                "Failed to retrieve oldest uptime entry for service=%s: %s", service.name, exc
            )
            return
        if age > queries.UPTIME_CLEAN_UP_THRESHOLD:
            cutoff = datetime.now(timezone.utc) - (queries.UPTIME_RETENTION + timedelta(hours=1))
            try:
                queries.delete_old_uptime_entries(conn, service_id, cutoff)
            except sqlite3.Error as exc:
                logger.warning(
                    "Failed to delete old uptime entries for service=%s: %s", service.name, exc
                )

    def delete_all_service_statuses_not_in_keys(self, keys: list[str]) -> int:
        if keys:
            placeholders = ",".join("?" * len(keys))
            statement = f"DELETE FROM service WHERE service_key NOT IN ({placeholders})"
            arguments: tuple[str, ...] = tuple(keys)
        else:
            statement, arguments = "DELETE FROM service", ()
        with self._lock:
            try:
                cursor = self._conn.execute(statement, arguments)
            except sqlite3.Error as exc:
                logger.error("Failed to delete rows not belonging to keys=%s: %s", keys, exc)
                return 0
            return cursor.rowcount

    def clear(self) -> None:
        with self._lock:
            try:
                self._conn.execute("DELETE FROM service")
            except sqlite3.Error as exc:
                logger.warning("Failed to clear the store: %s", exc)

    def save(self) -> None:
        """Nothing to do: every change is already persisted."""

    def close(self) -> None:
        with self._lock:
            self._conn.close()