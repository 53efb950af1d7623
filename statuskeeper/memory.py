"""Store that keeps every service status in memory, with optional persistence to a file."""

from __future__ import annotations

import math
import pickle
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

from .common import (
    MAXIMUM_NUMBER_OF_EVENTS,
    MAXIMUM_NUMBER_OF_RESULTS,
    InvalidTimeRangeError,
    ServiceNotFoundError,
    StoreError,
)
from .key import convert_group_and_service_to_key
from .models import (
    Event,
    EventType,
    HourlyUptimeStatistics,
    Result,
    Service,
    ServiceStatus,
    Store,
    Uptime,
)
from .paging import ServiceStatusParams

NUMBER_OF_HOURS_IN_TEN_DAYS = 10 * 24
SEVEN_DAYS = timedelta(days=7)
_HOUR = timedelta(hours=1)
_SECONDS_PER_HOUR = 3600


def _hour_floor(moment: datetime) -> int:
    """Return the Unix timestamp of the start of the hour containing ``moment``."""
    seconds = math.floor(moment.timestamp())
    return seconds - seconds % _SECONDS_PER_HOUR


def _milliseconds(duration: timedelta) -> int:
    return int(duration / timedelta(milliseconds=1))


def process_uptime_after_result(uptime: Uptime, result: Result) -> None:
    """Add ``result`` to the hourly statistics of ``uptime`` and drop stale hours when needed."""
    hour = _hour_floor(result.timestamp)
    stats = uptime.hourly_statistics.get(hour)
    if stats is None:
        stats = HourlyUptimeStatistics()
        uptime.hourly_statistics[hour] = stats
    if result.success:
        stats.successful_executions += 1
    stats.total_executions += 1
    stats.total_executions_response_time += _milliseconds(result.duration)
    # Cleaning up only once there are more entries than ten days' worth avoids
    # re-scanning on every result as soon as seven days have been recorded.
    if len(uptime.hourly_statistics) > NUMBER_OF_HOURS_IN_TEN_DAYS:
        cutoff = math.floor((datetime.now(timezone.utc) - (SEVEN_DAYS + _HOUR)).timestamp())
        for stale in [ts for ts in uptime.hourly_statistics if ts < cutoff]:
            del uptime.hourly_statistics[stale]


def _page_bounds(count: int, page: int, page_size: int) -> tuple[int, int] | None:
    """Return the slice bounds of a page counted from the newest item, or None if empty."""
    if page < 1 or page_size < 0:
        return None
    start = count - page * page_size
    end = count - (page - 1) * page_size
    if start > count:
        return None
    start = max(start, 0)
    end = min(end, count)
    if end < 0:
        return None
    return start, end


def _page(items: list, page: int, page_size: int) -> list:
    bounds = _page_bounds(len(items), page, page_size)
    if bounds is None:
        return []
    start, end = bounds
    return items[start:end]


def shallow_copy_service_status(status: ServiceStatus, params: ServiceStatusParams) -> ServiceStatus:
    """Return a copy of ``status`` holding only the results and events on the requested pages."""
    return ServiceStatus(
        key=status.key,
        group=status.group,
        name=status.name,
        results=_page(status.results, params.results_page, params.results_page_size),
        events=_page(status.events, params.events_page, params.events_page_size),
        uptime=Uptime(),
    )


def add_result(status: ServiceStatus | None, result: Result) -> None:
    """Append ``result`` to ``status``, recording state changes and keeping the history bounded."""
    if status is None:
        return
    if status.results:
        if status.results[-1].success != result.success:
            status.events.append(Event.from_result(result))
            if len(status.events) > MAXIMUM_NUMBER_OF_EVENTS:
                status.events = status.events[-MAXIMUM_NUMBER_OF_EVENTS:]
    else:
        status.events.append(Event.from_result(result))
    status.results.append(result)
    if len(status.results) > MAXIMUM_NUMBER_OF_RESULTS:
        status.results = status.results[-MAXIMUM_NUMBER_OF_RESULTS:]
    process_uptime_after_result(status.uptime, result)


class MemoryStore(Store):
    """Store holding everything in memory; persisted to ``file`` on save when one is given."""

    def __init__(self, file: str = "") -> None:
        self.file = file
        self._lock = threading.RLock()
        self._statuses: dict[str, ServiceStatus] = {}
        if file:
            self._statuses = self._load(Path(file))

    @staticmethod
    def _load(path: Path) -> dict[str, ServiceStatus]:
        if not path.exists() or path.stat().st_size == 0:
            return {}
        try:
            with path.open("rb") as handle:
                data = pickle.load(handle)
        except (pickle.UnpicklingError, EOFError, AttributeError, ValueError, TypeError,
                IndexError, KeyError, ImportError) as exc:
            raise StoreError(f"cannot read store file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreError(f"cannot read store file {path}: unexpected content")
        return data

    def _hourly_stats(self, key: str, start: datetime, end: datetime):
        """Yield (hour, stats) for every hour with executions between ``start`` and ``end``."""
        if start > end:
            raise InvalidTimeRangeError()
        with self._lock:
            status = self._statuses.get(key)
            if status is None:
                raise ServiceNotFoundError()
            statistics = dict(status.uptime.hourly_statistics)
        current = start
        while end - current >= timedelta(0):
            hour = _hour_floor(current)
            stats = statistics.get(hour)
            if stats is not None and stats.total_executions > 0:
                yield hour, stats
            current += _HOUR

    def get_all_service_statuses(self, params: ServiceStatusParams) -> list[ServiceStatus]:
        with self._lock:
            copies = [shallow_copy_service_status(s, params) for s in self._statuses.values()]
        return sorted(copies, key=lambda status: status.key)

    def get_service_status(
        self, group_name: str, service_name: str, params: ServiceStatusParams
    ) -> ServiceStatus:
        key = convert_group_and_service_to_key(group_name, service_name)
        return self.get_service_status_by_key(key, params)

    def get_service_status_by_key(self, key: str, params: ServiceStatusParams) -> ServiceStatus:
        with self._lock:
            status = self._statuses.get(key)
            if status is None:
                raise ServiceNotFoundError()
            return shallow_copy_service_status(status, params)

    def get_uptime_by_key(self, key: str, start: datetime, end: datetime) -> float:
        successful = total = 0
        for _, stats in self._hourly_stats(key, start, end):
            successful += stats.successful_executions
            total += stats.total_executions
        return successful / total if total else 0.0

    def get_average_response_time_by_key(self, key: str, start: datetime, end: datetime) -> int:
        total = response_time = 0
        for _, stats in self._hourly_stats(key, start, end):
            total += stats.total_executions
            response_time += stats.total_executions_response_time
        return int(response_time / total) if total else 0

    def get_hourly_average_response_time_by_key(
        self, key: str, start: datetime, end: datetime
    ) -> dict[int, int]:
        return {
            hour: int(stats.total_executions_response_time / stats.total_executions)
            for hour, stats in self._hourly_stats(key, start, end)
        }

    def insert(self, service: Service, result: Result) -> None:
        key = service.key()
        with self._lock:
            status = self._statuses.get(key)
            if status is None:
                status = ServiceStatus(key=key, group=service.group, name=service.name)
                status.events.append(
                    Event(type=EventType.START, timestamp=datetime.now(timezone.utc))
                )
                self._statuses[key] = status
            add_result(status, result)

    def delete_all_service_statuses_not_in_keys(self, keys: list[str]) -> int:
        kept = set(keys)
        with self._lock:
            doomed = [key for key in self._statuses if key not in kept]
            for key in doomed:
                del self._statuses[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._statuses.clear()

    def save(self) -> None:
        if not self.file:
            return
        with self._lock:
            payload = pickle.dumps(self._statuses)
        Path(self.file).write_bytes(payload)

    def close(self) -> None:
        """Nothing to release for an in-memory store."""