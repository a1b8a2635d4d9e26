"""
Per-client performance summaries rebuilt from the k6 Prometheus output.

k6 does not remote-write raw request observations, only trend indicators
(avg, min, med, max, p90, p95, p99) and request counters, so each summary is
reconstructed indicator by indicator. Two figures are approximations:

* ``std_dev`` is the range proxy ``(max - min) / 4``.
* client-level percentiles are the unweighted mean of per-method percentiles,
  not percentiles of the pooled population.

Callers that hold raw latency arrays should use
:func:`rpcbench.metrics.statistics.summarize` instead.
"""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from rpcbench.config import BenchmarkConfig
from rpcbench.errors import ConfigurationError
from rpcbench.logging_config import get_logger, log_performance
from rpcbench.metrics.models import ClientMetrics, MetricSummary
from rpcbench.metrics.timeseries import PrometheusSource, TimeSeriesSample, TimeSeriesSource

logger = get_logger(__name__)

# k6 label names
RUN_LABEL = "testid"
CLIENT_LABEL = "scenario"
METHOD_LABEL = "req_name"
NAME_LABEL = "__name__"
ERROR_CODE_LABEL = "error_code"
STATUS_LABEL = "status"

TREND_PREFIX = "k6_http_req_"
REQUESTS_FAMILY = "k6_http_reqs_total"

DURATION_INDICATORS = {
    "avg": "avg",
    "min": "min",
    "med": "p50",
    "max": "max",
    "p90": "p90",
    "p95": "p95",
    "p99": "p99",
}


def build_selector(run_id: str) -> str:
    escaped = run_id.replace("\\", "\\\\").replace('"', '\\"')
    return f'{{{NAME_LABEL}=~"k6_http_req.+",{RUN_LABEL}="{escaped}"}}'


@dataclass(frozen=True)
class DecodedSample:
    """A sample whose labels passed the boundary checks."""
    client: str
    method: str
    family: str
    value: float
    error_code: str | None = None
    status: str | None = None

    @property
    def is_request_count(self) -> bool:
        return self.family.lower() == REQUESTS_FAMILY

    @property
    def trend(self) -> tuple[str, str] | None:
        """``(type, indicator)`` for ``k6_http_req_<type>_<indicator>`` families."""
        if not self.family.startswith(TREND_PREFIX):
            return None
        metric_type, _, indicator = self.family[len(TREND_PREFIX):].rpartition("_")
        if not metric_type or not indicator:
            return None
        return metric_type, indicator


def decode_sample(sample: TimeSeriesSample, run_id: str) -> DecodedSample | None:
    """Check the required labels of a raw sample; None means discard."""
    labels = sample.labels
    client = labels.get(CLIENT_LABEL)
    family = labels.get(NAME_LABEL)
    method = labels.get(METHOD_LABEL)
    if not client or not family or not method:
        return None
    if labels.get(RUN_LABEL) != run_id:
        return None
    if not math.isfinite(sample.value):
        return None

    return DecodedSample(
        client=client,
        method=method,
        family=family,
        value=sample.value,
        error_code=labels.get(ERROR_CODE_LABEL),
        status=labels.get(STATUS_LABEL),
    )


def _method_summary(client: ClientMetrics, method: str) -> MetricSummary:
    summary = client.methods.get(method)
    if summary is None:
        summary = client.methods[method] = MetricSummary.seeded()
    return summary


def _apply_duration(summary: MetricSummary, indicator: str, milliseconds: float) -> bool:
    field = DURATION_INDICATORS.get(indicator)
    if field is None:
        return False

    setattr(summary, field, milliseconds)

    # Range proxy; raw observations are never transmitted
    if summary.has_min and summary.max >= summary.min:
        summary.std_dev = (summary.max - summary.min) / 4
    else:
        summary.std_dev = 0.0
    if summary.avg > 0:
        summary.coeff_var = summary.std_dev / summary.avg * 100
    return True


def _apply_request_count(client: ClientMetrics, summary: MetricSummary, sample: DecodedSample) -> None:
    count = max(0, int(sample.value))
    summary.count += count
    if sample.error_code is not None:
        summary.error_count += count
        client.error_types[sample.error_code] = client.error_types.get(sample.error_code, 0) + count
    else:
        summary.success_count += count
    summary.recompute_rates()

    if sample.status and sample.status.isdigit():
        code = int(sample.status)
        client.status_codes[code] = client.status_codes.get(code, 0) + count


def _bracket_average(summary: MetricSummary, has_min: bool) -> None:
    """
    Widen a missing or inconsistent min/max so that it encloses avg.

    ``std_dev`` keeps the range proxy of the indicators that were reported.
    """
    if not has_min or summary.min > summary.avg:
        summary.min = summary.avg
    if summary.max < summary.avg:
        summary.max = summary.avg


def finalize_client(client: ClientMetrics) -> None:
    """Derive client totals and the aggregate latency from the method buckets."""
    total_requests = 0
    total_errors = 0
    total_success = 0
    weighted_latency = 0.0
    mins: list[float] = []
    maxes: list[float] = []
    p50 = p90 = p95 = p99 = 0.0

    for method in client.methods.values():
        has_min = method.has_min
        if not has_min:
            method.min = 0.0
        if method.count > 0 and method.avg > 0:
            _bracket_average(method, has_min)
            has_min = True
        if has_min:
            mins.append(method.min)
        if method.max > 0:
            maxes.append(method.max)

        method.throughput = 1000.0 / method.avg if method.avg > 0 else 0.0

        total_requests += method.count
        total_errors += method.error_count
        total_success += method.success_count
        weighted_latency += method.avg * method.count
        p50 += method.p50
        p90 += method.p90
        p95 += method.p95
        p99 += method.p99

    client.total_requests = total_requests
    client.total_errors = total_errors
    client.error_rate = total_errors / total_requests * 100 if total_requests > 0 else 0.0
    client.success_rate = total_success / total_requests * 100 if total_requests > 0 else 0.0

    latency = MetricSummary(
        count=total_requests,
        error_count=total_errors,
        success_count=total_success,
    )
    latency.recompute_rates()

    if total_requests > 0:
        method_count = len(client.methods)
        latency.avg = weighted_latency / total_requests
        latency.min = min(mins) if mins else 0.0
        latency.max = max(maxes) if maxes else 0.0
        latency.p50 = p50 / method_count
        latency.p90 = p90 / method_count
        latency.p95 = p95 / method_count
        latency.p99 = p99 / method_count
        if mins and latency.max >= latency.min:
            latency.std_dev = (latency.max - latency.min) / 4
        if latency.avg > 0:
            latency.coeff_var = latency.std_dev / latency.avg * 100
            latency.throughput = 1000.0 / latency.avg

    client.latency = latency


class MetricsAggregator:
    """
    Builds ``ClientMetrics`` for one run from a single instant query.

    Holds no per-run state: every call works on freshly created mappings, so
    an aggregator can be shared between threads and reused across runs.
    """

    def __init__(self, source: TimeSeriesSource | None):
        self.source = source

    @log_performance(logger, "collect client metrics")
    def collect(self,
                run_id: str,
                clients: Iterable[str],
                timestamp: datetime) -> dict[str, ClientMetrics]:
        if self.source is None:
            raise ConfigurationError("no time-series source configured")

        selector = build_selector(run_id)
        samples = self.source.query(selector, timestamp)
        return self.aggregate(run_id, clients, samples)

    def aggregate(self,
                  run_id: str,
                  clients: Iterable[str],
                  samples: Iterable[TimeSeriesSample]) -> dict[str, ClientMetrics]:
        """Fold query samples into per-client metrics; unusable samples are skipped."""
        metrics = {name: ClientMetrics(name=name) for name in clients}
        consumed = 0
        discarded = 0

        for raw in samples:
            sample = decode_sample(raw, run_id)
            client = metrics.get(sample.client) if sample else None
            if sample is None or client is None:
                discarded += 1
                continue

            if self._apply(client, sample):
                consumed += 1
            else:
                discarded += 1

        for client in metrics.values():
            finalize_client(client)

        logger.info(
            "Aggregated %d samples for run %s across %d clients (%d discarded)",
            consumed, run_id, len(metrics), discarded,
        )
        return metrics

    @staticmethod
    def _apply(client: ClientMetrics, sample: DecodedSample) -> bool:
        if sample.is_request_count:
            _apply_request_count(client, _method_summary(client, sample.method), sample)
            return True

        trend = sample.trend
        if trend is None:
            return False

        metric_type, indicator = trend
        milliseconds = sample.value * 1000  # source reports seconds
        if metric_type == "duration":
            if indicator not in DURATION_INDICATORS:
                return False
            return _apply_duration(_method_summary(client, sample.method), indicator, milliseconds)

        if indicator != "avg":
            return False
        if metric_type in ("blocked", "connecting"):
            client.connection_metrics.tcp_handshake_time += milliseconds
            return True
        if metric_type == "tls_handshaking":
            client.connection_metrics.tls_handshake_time += milliseconds
            return True
        return False


def collect_clients_metrics(config: BenchmarkConfig,
                            timestamp: datetime,
                            source: TimeSeriesSource | None = None) -> dict[str, ClientMetrics]:
    """Collect metrics for every configured client of ``config.test_name``."""
    if source is None and config.outputs.prometheus_rw is not None:
        source = PrometheusSource.from_config(config.outputs.prometheus_rw)
    if source is None:
        raise ConfigurationError("no outputs configured")

    return MetricsAggregator(source).collect(config.test_name, config.clients, timestamp)
