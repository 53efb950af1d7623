"""Paging parameters used when reading service statuses."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ServiceStatusParams:
    """Which page of events and of results to return, and how large a page is."""

    events_page: int = 0
    events_page_size: int = 0
    results_page: int = 0
    results_page_size: int = 0

    def with_events(self, page: int, page_size: int) -> ServiceStatusParams:
        """Set the events page and page size; return ``self`` for chaining."""
        self.events_page = page
        self.events_page_size = page_size
        return self

    def with_results(self, page: int, page_size: int) -> ServiceStatusParams:
        """Set the results page and page size; return ``self`` for chaining."""
        self.results_page = page
        self.results_page_size = page_size
        return self