"""
Result models produced by the metrics engine.

These are handed unchanged to the reporting and storage collaborators.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# Seed for a summary minimum so the first real sample always replaces it
MIN_LATENCY_SENTINEL = 9_999_999_999.0


class MetricSummary(BaseModel):
    """Latency and request-count summary for one method or one client (milliseconds)."""
    count: int = 0
    error_count: int = 0
    success_count: int = 0
    error_rate: float = Field(0.0, description="Percentage of failed requests")
    success_rate: float = Field(0.0, description="Percentage of successful requests")

    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    p50: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    std_dev: float = 0.0
    coeff_var: float = 0.0
    throughput: float = Field(0.0, description="Requests per second derived from mean latency")

    @classmethod
    def seeded(cls) -> "MetricSummary":
        """An empty summary whose minimum is primed with the sentinel."""
        return cls(min=MIN_LATENCY_SENTINEL)

    @property
    def has_min(self) -> bool:
        return self.min < MIN_LATENCY_SENTINEL

    def recompute_rates(self) -> None:
        """Derive both rates from the counters."""
        if self.count > 0:
            self.error_rate = self.error_count / self.count * 100
            self.success_rate = self.success_count / self.count * 100
        else:
            self.error_rate = 0.0
            self.success_rate = 0.0


class ConnectionMetrics(BaseModel):
    """Connection-level timings (milliseconds) and counters for one client."""
    tcp_handshake_time: float = 0.0
    tls_handshake_time: float = 0.0
    dns_resolution_time: float = 0.0
    connection_reuse: float = 0.0
    active_connections: int = 0


class ClientMetrics(BaseModel):
    """Performance summary of one client for exactly one run."""
    name: str
    methods: dict[str, MetricSummary] = Field(default_factory=dict)
    latency: MetricSummary = Field(default_factory=MetricSummary)
    total_requests: int = 0
    total_errors: int = 0
    error_rate: float = 0.0
    success_rate: float = 0.0
    connection_metrics: ConnectionMetrics = Field(default_factory=ConnectionMetrics)
    error_types: dict[str, int] = Field(default_factory=dict)
    status_codes: dict[int, int] = Field(default_factory=dict)


class SystemMetricsSample(BaseModel):
    """One point-in-time resource snapshot. Byte counters are deltas since the previous sample."""
    model_config = ConfigDict(frozen=True)

    sequence: int = 0
    captured_at: datetime | None = None
    cpu_percent: float = 0.0
    memory_mb: float = 0.0
    memory_percent: float = 0.0
    network_bytes_sent: int = 0
    network_bytes_recv: int = 0
    disk_read_bytes: int = 0
    disk_write_bytes: int = 0
    open_connections: int = 0
    concurrent_tasks: int = 0


class SystemMetricsAverage(BaseModel):
    """Arithmetic mean of every numeric field over a sample buffer."""
    samples: int = 0
    cpu_percent: float = 0.0
    memory_mb: float = 0.0
    memory_percent: float = 0.0
    network_bytes_sent: float = 0.0
    network_bytes_recv: float = 0.0
    disk_read_bytes: float = 0.0
    disk_write_bytes: float = 0.0
    open_connections: float = 0.0
    concurrent_tasks: float = 0.0


class EnvironmentInfo(BaseModel):
    """Static description of the host running the benchmark."""
    model_config = ConfigDict(frozen=True)

    os: str = ""
    architecture: str = ""
    python_version: str = ""
    cpu_model: str = ""
    cpu_cores: int = 0
    total_memory_gb: float = 0.0


class Outlier(BaseModel):
    """A value outside the Tukey fences and its position in the input."""
    model_config = ConfigDict(frozen=True)

    index: int
    value: float


class LatencyDistribution(BaseModel):
    """Distribution summary computed from raw per-request latencies."""
    count: int = 0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    p999: float = 0.0
    variance: float = 0.0
    std_dev: float = 0.0
    coeff_var: float = 0.0
    skewness: float = 0.0
    kurtosis: float = 0.0
    iqr: float = 0.0
    mad: float = 0.0
    jitter: float = 0.0
    outliers: list[Outlier] = Field(default_factory=list)
