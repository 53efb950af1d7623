"""Storage for service health-check results, events and hourly uptime statistics."""

__version__ = "0.1.0"

__all__ = ["common", "key", "memory", "models", "paging", "sql", "sql_queries", "storage"]