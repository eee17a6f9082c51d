"""Error taxonomy for driver analytics.

Every failure of an aggregation surfaces as one of these; the HTTP layer maps
them to status codes. Cache failures never appear here, they degrade to a miss.
"""


class AnalyticsError(Exception):
    """Base class for analytics failures."""


class InvalidDriverId(AnalyticsError, ValueError):
    """Driver id is not a positive integer."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Driver ID must be a positive integer, got {value!r}")


class DriverNotFound(AnalyticsError, LookupError):
    """No driver row for the requested id."""

    def __init__(self, driver_id: int):
        self.driver_id = driver_id
        super().__init__("Driver not found")


class QueryTimeout(AnalyticsError, TimeoutError):
    """A store read exceeded its deadline. Safe to retry the whole aggregation."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} exceeded {timeout}s")


class StoreError(AnalyticsError):
    """Any other data-store failure (connection, query, unexpected row shape)."""
