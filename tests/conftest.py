"""
Test configuration and fixtures for the rpcbench test suite.
Provides fake metric sources, a scriptable host probe and sample builders.
"""

from datetime import datetime, timezone

import pytest

from rpcbench.metrics.timeseries import TimeSeriesSample

RUN_ID = "run-1"
QUERY_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_sample(family: str,
                value: float,
                client: str = "geth",
                method: str = "eth_call",
                run: str | None = RUN_ID,
                **extra: str) -> TimeSeriesSample:
    """Build a k6-style labelled sample."""
    labels = {"__name__": family, "scenario": client, "req_name": method}
    if run is not None:
        labels["testid"] = run
    labels.update(extra)
    return TimeSeriesSample(labels=labels, value=value)


class FakeSource:
    """Time-series source returning a fixed snapshot and recording queries."""

    def __init__(self, samples=None, error: Exception | None = None):
        self.samples = list(samples or [])
        self.error = error
        self.queries = []

    def query(self, selector, timestamp):
        self.queries.append((selector, timestamp))
        if self.error is not None:
            raise self.error
        return list(self.samples)


class FakeProbe:
    """Scriptable host probe; names listed in ``failing`` raise OSError."""

    def __init__(self):
        self.process_cpu = 10.0
        self.host_cpu = 40.0
        self.process_memory = 128.0
        self.host_mem = (2048.0, 50.0)
        self.network = (1000, 2000)
        self.disk = (5000, 6000)
        self.connections = 3
        self.tasks = 7
        self.failing: set[str] = set()
        self.calls: dict[str, int] = {}

    def _value(self, name, value):
        self.calls[name] = self.calls.get(name, 0) + 1
        if name in self.failing:
            raise OSError(f"{name} unavailable")
        return value

    def process_cpu_percent(self):
        return self._value("process_cpu_percent", self.process_cpu)

    def host_cpu_percent(self):
        return self._value("host_cpu_percent", self.host_cpu)

    def process_memory_mb(self):
        return self._value("process_memory_mb", self.process_memory)

    def host_memory(self):
        return self._value("host_memory", self.host_mem)

    def network_counters(self):
        return self._value("network_counters", self.network)

    def disk_counters(self):
        return self._value("disk_counters", self.disk)

    def open_connections(self):
        return self._value("open_connections", self.connections)

    def concurrent_tasks(self):
        return self._value("concurrent_tasks", self.tasks)


@pytest.fixture
def fake_probe():
    return FakeProbe()


@pytest.fixture
def query_time():
    return QUERY_TIME
