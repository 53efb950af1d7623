"""Limits and errors shared by every store."""

MAXIMUM_NUMBER_OF_RESULTS = 100
"""Maximum number of results kept for a service."""

MAXIMUM_NUMBER_OF_EVENTS = 50
"""Maximum number of events kept for a service."""


class StoreError(Exception):
    """Base class of the errors raised by stores."""

    default_message = "store error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class ServiceNotFoundError(StoreError, LookupError):
    """The requested service does not exist in the store."""

    default_message = "service not found"


class InvalidTimeRangeError(StoreError, ValueError):
    """The start of a time range lies after its end."""

    default_message = "'from' cannot be older than 'to'"


class NoRowsReturnedError(StoreError):
    """A query expected a row but returned none."""

    default_message = "expected a row to be returned, but none was"