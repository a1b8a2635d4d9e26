"""
Host and process resource sampling during a benchmark run.

The sampler polls a ``HostProbe`` from one background asyncio task. Blocking
probe reads run in a worker thread, so a slow read delays the next tick
instead of stalling the event loop. Every field is read independently: a
failed read keeps the previous value for that field and the tick carries on.
"""
import asyncio
import os
import platform
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import psutil

from rpcbench.logging_config import get_logger
from rpcbench.metrics.models import EnvironmentInfo, SystemMetricsAverage, SystemMetricsSample

logger = get_logger(__name__)

BYTES_PER_MB = 1024 * 1024
BYTES_PER_GB = 1024 * 1024 * 1024

_NUMERIC_FIELDS = (
    "cpu_percent",
    "memory_mb",
    "memory_percent",
    "network_bytes_sent",
    "network_bytes_recv",
    "disk_read_bytes",
    "disk_write_bytes",
    "open_connections",
    "concurrent_tasks",
)


class HostProbe(Protocol):
    """OS and process introspection used by the sampler."""

    def process_cpu_percent(self) -> float: ...

    def host_cpu_percent(self) -> float: ...

    def process_memory_mb(self) -> float: ...

    def host_memory(self) -> tuple[float, float]:
        """Used memory in MB and used percent."""
        ...

    def network_counters(self) -> tuple[int, int]:
        """Cumulative bytes sent and received."""
        ...

    def disk_counters(self) -> tuple[int, int]:
        """Cumulative bytes read and written."""
        ...

    def open_connections(self) -> int: ...

    def concurrent_tasks(self) -> int: ...


class PsutilProbe:
    """``HostProbe`` backed by psutil for the current process."""

    def __init__(self, pid: int | None = None):
        self._process = psutil.Process(pid or os.getpid())
        # First call only primes the CPU counters and always reports 0.0
        self._process.cpu_percent(interval=None)
        psutil.cpu_percent(interval=None)

    def process_cpu_percent(self) -> float:
        return self._process.cpu_percent(interval=None)

    def host_cpu_percent(self) -> float:
        return psutil.cpu_percent(interval=None)

    def process_memory_mb(self) -> float:
        return self._process.memory_info().rss / BYTES_PER_MB

    def host_memory(self) -> tuple[float, float]:
        memory = psutil.virtual_memory()
        return memory.used / BYTES_PER_MB, memory.percent

    def network_counters(self) -> tuple[int, int]:
        counters = psutil.net_io_counters(pernic=False)
        if counters is None:
            raise OSError("network counters unavailable")
        return counters.bytes_sent, counters.bytes_recv

    def disk_counters(self) -> tuple[int, int]:
        counters = psutil.disk_io_counters(perdisk=False)
        if counters is None:
            raise OSError("disk counters unavailable")
        return counters.read_bytes, counters.write_bytes

    def open_connections(self) -> int:
        return len(self._process.net_connections(kind="tcp"))

    def concurrent_tasks(self) -> int:
        # Must run on the event loop thread
        return len(asyncio.all_tasks())


@dataclass(frozen=True)
class _Counters:
    """Cumulative counters of the previous tick; None when never read."""
    network: tuple[int, int] | None = None
    disk: tuple[int, int] | None = None


def _read(name: str, reader: Callable[[], Any]) -> Any:
    try:
        return reader()
    except Exception as e:
        logger.debug("Failed to read %s: %s", name, e)
        return None


def _delta(current: tuple[int, int], previous: tuple[int, int] | None) -> tuple[int, int]:
    if previous is None:
        return 0, 0
    # Counters can wrap or reset between ticks
    return max(0, current[0] - previous[0]), max(0, current[1] - previous[1])


class SystemResourceSampler:
    """
    Background sampler of resource usage for the duration of a run.

    ``start()`` and ``stop()`` are idempotent and serialized: a ``start()``
    issued while ``stop()`` is still draining waits for the old poller to
    exit. The sample buffer survives ``stop()`` and is cleared by the next
    ``start()``. All mutable state is
    guarded by one lock; readers copy out under it and may call from any
    thread.
    """

    def __init__(self, interval: float = 1.0, probe: HostProbe | None = None):
        if interval <= 0:
            raise ValueError("sampling interval must be positive")
        self.interval = interval
        self._probe = probe if probe is not None else PsutilProbe()

        self._lock = threading.Lock()
        # Serializes start/stop so a restart waits for the previous poller
        self._lifecycle = asyncio.Lock()
        self._samples: list[SystemMetricsSample] = []
        self._collecting = False
        self._baseline = _Counters()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_collecting(self) -> bool:
        with self._lock:
            return self._collecting

    async def start(self) -> None:
        """Begin sampling; a no-op while already collecting."""
        async with self._lifecycle:
            with self._lock:
                if self._collecting:
                    logger.debug("System sampler already collecting")
                    return

                self._collecting = True
                self._samples = []
                self._baseline = _Counters(
                    network=_read("network counters", self._probe.network_counters),
                    disk=_read("disk counters", self._probe.disk_counters),
                )
                self._stop_event = asyncio.Event()
                self._task = asyncio.create_task(self._run(self._stop_event))

        logger.info("System sampler started with %.2fs interval", self.interval)

    async def stop(self) -> None:
        """Stop sampling and wait for the poller to exit; a no-op when idle."""
        async with self._lifecycle:
            with self._lock:
                if not self._collecting:
                    return
                self._collecting = False
                self._stop_event.set()
                task = self._task

            # The poller may be mid-tick; it appends once more and exits
            if task is not None:
                await task
            with self._lock:
                self._task = None

        logger.info("System sampler stopped after %d samples", len(self.get_metrics()))

    async def __aenter__(self) -> "SystemResourceSampler":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def get_metrics(self) -> list[SystemMetricsSample]:
        """Snapshot of the collected samples in capture order."""
        with self._lock:
            return list(self._samples)

    def get_average_metrics(self) -> SystemMetricsAverage:
        """Mean of every numeric field; all zeros when nothing was collected."""
        samples = self.get_metrics()
        if not samples:
            return SystemMetricsAverage()

        n = len(samples)
        averages = {
            field: sum(getattr(sample, field) for sample in samples) / n
            for field in _NUMERIC_FIELDS
        }
        return SystemMetricsAverage(samples=n, **averages)

    async def _run(self, stop_event: asyncio.Event) -> None:
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass

            try:
                await self._tick()
            except Exception:
                logger.warning("System metrics tick failed", exc_info=True)

    async def _tick(self) -> None:
        with self._lock:
            previous = self._samples[-1] if self._samples else None
            baseline = self._baseline
            sequence = len(self._samples)

        tasks = _read("concurrent tasks", self._probe.concurrent_tasks)
        values, counters = await asyncio.to_thread(self._capture, previous, baseline)
        if tasks is not None:
            values["concurrent_tasks"] = tasks

        sample = SystemMetricsSample(
            sequence=sequence,
            captured_at=datetime.now(timezone.utc),
            **values,
        )
        with self._lock:
            self._samples.append(sample)
            self._baseline = counters

    def _capture(self,
                 previous: SystemMetricsSample | None,
                 baseline: _Counters) -> tuple[dict[str, Any], _Counters]:
        """Read every counter once; fields that fail keep their previous value."""
        values = previous.model_dump(include=set(_NUMERIC_FIELDS)) if previous else {}

        cpu = _read("process cpu", self._probe.process_cpu_percent)
        if cpu is None:
            cpu = _read("host cpu", self._probe.host_cpu_percent)
        if cpu is not None:
            values["cpu_percent"] = cpu

        host_memory = _read("host memory", self._probe.host_memory)
        if host_memory is not None:
            values["memory_mb"], values["memory_percent"] = host_memory
        process_memory = _read("process memory", self._probe.process_memory_mb)
        if process_memory is not None:
            values["memory_mb"] = process_memory

        network = _read("network counters", self._probe.network_counters)
        if network is not None:
            values["network_bytes_sent"], values["network_bytes_recv"] = _delta(network, baseline.network)
        else:
            network = baseline.network

        disk = _read("disk counters", self._probe.disk_counters)
        if disk is not None:
            values["disk_read_bytes"], values["disk_write_bytes"] = _delta(disk, baseline.disk)
        else:
            disk = baseline.disk

        connections = _read("open connections", self._probe.open_connections)
        if connections is not None:
            values["open_connections"] = connections

        return values, _Counters(network=network, disk=disk)


def _cpu_model() -> str:
    try:
        with open("/proc/cpuinfo", encoding="utf-8") as f:
            for line in f:
                if line.startswith("model name"):
                    return line.split(":", 1)[1].strip()
    except OSError:
        pass
    return platform.processor()


def environment_info() -> EnvironmentInfo:
    """One-shot description of the benchmark host."""
    total_memory_gb = 0.0
    try:
        total_memory_gb = psutil.virtual_memory().total / BYTES_PER_GB
    except Exception as e:
        logger.debug("Failed to read total memory: %s", e)

    return EnvironmentInfo(
        os=platform.system().lower(),
        architecture=platform.machine(),
        python_version=platform.python_version(),
        cpu_model=_cpu_model(),
        cpu_cores=psutil.cpu_count(logical=True) or os.cpu_count() or 0,
        total_memory_gb=total_memory_gb,
    )
