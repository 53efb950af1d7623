"""Data model of monitored services and the interface every store implements."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from .key import convert_group_and_service_to_key
from .paging import ServiceStatusParams


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Service:
    """A monitored service."""

    name: str = ""
    group: str = ""
    url: str = ""
    method: str = "GET"
    body: str = ""
    interval: timedelta = timedelta(minutes=1)
    conditions: list[str] = field(default_factory=list)
    number_of_failures_in_a_row: int = 0
    number_of_successes_in_a_row: int = 0

    def key(self) -> str:
        """Return the storage key of this service."""
        return convert_group_and_service_to_key(self.group, self.name)


@dataclass
class ConditionResult:
    """Outcome of evaluating a single condition."""

    condition: str
    success: bool


@dataclass
class Result:
    """Outcome of one health evaluation of a service."""

    timestamp: datetime = field(default_factory=_now)
    success: bool = False
    hostname: str = ""
    ip: str = ""
    http_status: int = 0
    dns_rcode: str = ""
    errors: list[str] = field(default_factory=list)
    connected: bool = False
    duration: timedelta = timedelta(0)
    certificate_expiration: timedelta = timedelta(0)
    condition_results: list[ConditionResult] = field(default_factory=list)


class EventType(str, enum.Enum):
    """Kind of event in a service's history."""

    START = "START"
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"


@dataclass
class Event:
    """A change in the state of a service."""

    type: EventType
    timestamp: datetime = field(default_factory=_now)

    @classmethod
    def from_result(cls, result: Result) -> Event:
        """Create the healthy or unhealthy event that ``result`` represents."""
        event_type = EventType.HEALTHY if result.success else EventType.UNHEALTHY
        return cls(type=event_type, timestamp=result.timestamp)


@dataclass
class HourlyUptimeStatistics:
    """Execution counters for one hour."""

    total_executions: int = 0
    successful_executions: int = 0
    total_executions_response_time: int = 0


@dataclass
class Uptime:
    """Hourly statistics keyed by the Unix timestamp of the start of each hour."""

    hourly_statistics: dict[int, HourlyUptimeStatistics] = field(default_factory=dict)


@dataclass
class ServiceStatus:
    """Stored state of a service: its recent results, events and uptime."""

    key: str
    group: str
    name: str
    results: list[Result] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)
    uptime: Uptime = field(default_factory=Uptime)


class Store(ABC):
    """Interface implemented by every store of service statuses."""

    @abstractmethod
    def get_all_service_statuses(self, params: ServiceStatusParams) -> list[ServiceStatus]:
        """Return every service status, paged by ``params``."""

    def get_service_status(
        self, group_name: str, service_name: str, params: ServiceStatusParams
    ) -> ServiceStatus:
        """Return the status of the named service in the named group."""
        key = convert_group_and_service_to_key(group_name, service_name)
        return self.get_service_status_by_key(key, params)

    @abstractmethod
    def get_service_status_by_key(self, key: str, params: ServiceStatusParams) -> ServiceStatus:
        """Return the status of the service with ``key``; raise ServiceNotFoundError if absent."""

    @abstractmethod
    def get_uptime_by_key(self, key: str, start: datetime, end: datetime) -> float:
        """Return the share of successful executions between ``start`` and ``end``."""

    @abstractmethod
    def get_average_response_time_by_key(self, key: str, start: datetime, end: datetime) -> int:
        """Return the average response time in milliseconds between ``start`` and ``end``."""

    @abstractmethod
    def get_hourly_average_response_time_by_key(
        self, key: str, start: datetime, end: datetime
    ) -> dict[int, int]:
        """Return the average response time in milliseconds for each hour in the range."""

    @abstractmethod
    def insert(self, service: Service, result: Result) -> None:
        """Record ``result`` for ``service``."""

    @abstractmethod
    def delete_all_service_statuses_not_in_keys(self, keys: list[str]) -> int:
        """Delete every service whose key is not in ``keys``; return how many were deleted."""

    @abstractmethod
    def clear(self) -> None:
        """Delete everything from the store."""

    @abstractmethod
    def save(self) -> None:
        """Persist the data, if the store needs it."""

    @abstractmethod
    def close(self) -> None:
        """Release the store's resources."""

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()