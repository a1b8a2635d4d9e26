"""
Exception taxonomy for the observability and statistics engine.

Missing or partial telemetry is never an error; these are raised only when
the metrics source is unusable.
"""


class RPCBenchError(Exception):
    """Base class for all rpcbench errors."""


class ConfigurationError(RPCBenchError):
    """No usable metrics source is configured, or the configuration is invalid."""


class QueryError(RPCBenchError):
    """The time-series source failed to answer or returned a malformed response."""

    def __init__(self, message: str, selector: str | None = None):
        super().__init__(message)
        self.selector = selector
