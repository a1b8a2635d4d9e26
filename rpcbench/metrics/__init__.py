from rpcbench.metrics.aggregator import MetricsAggregator, collect_clients_metrics
from rpcbench.metrics.models import (
    ClientMetrics,
    ConnectionMetrics,
    EnvironmentInfo,
    LatencyDistribution,
    MetricSummary,
    Outlier,
    SystemMetricsAverage,
    SystemMetricsSample,
)
from rpcbench.metrics.statistics import summarize
from rpcbench.metrics.system import PsutilProbe, SystemResourceSampler, environment_info
from rpcbench.metrics.timeseries import PrometheusSource, TimeSeriesSample, TimeSeriesSource

__all__ = [
    "MetricsAggregator",
    "collect_clients_metrics",
    "ClientMetrics",
    "ConnectionMetrics",
    "EnvironmentInfo",
    "LatencyDistribution",
    "MetricSummary",
    "Outlier",
    "SystemMetricsAverage",
    "SystemMetricsSample",
    "summarize",
    "PsutilProbe",
    "SystemResourceSampler",
    "environment_info",
    "PrometheusSource",
    "TimeSeriesSample",
    "TimeSeriesSource",
]
