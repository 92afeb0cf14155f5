"""Exceptions raised by the analytics feature."""


class AnalyticsError(Exception):
    """Base exception for analytics computations."""

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message)
        self.operation = operation


class UpstreamUnavailable(AnalyticsError):
    """An activity source call failed or timed out."""

    def __init__(self, message: str, source: str, operation: str = "fetch"):
        super().__init__(message, operation=operation)
        self.source = source
