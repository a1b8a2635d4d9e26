"""
Unit tests for rpcbench.metrics.aggregator.
Covers reconstruction of per-method summaries from pre-aggregated k6 samples
and the per-client finalization pass.
"""

import itertools
from unittest.mock import MagicMock, patch

import pytest

from rpcbench.config import BenchmarkConfig
from rpcbench.errors import ConfigurationError, QueryError
from rpcbench.metrics.aggregator import (
    MetricsAggregator,
    build_selector,
    collect_clients_metrics,
    decode_sample,
)
from rpcbench.metrics.models import MIN_LATENCY_SENTINEL, ClientMetrics, MetricSummary
from rpcbench.metrics.timeseries import TimeSeriesSample
from tests.conftest import RUN_ID, FakeSource, make_sample

CLIENTS = ["geth", "nethermind"]


def duration(indicator: str, seconds: float, **kwargs) -> TimeSeriesSample:
    return make_sample(f"k6_http_req_duration_{indicator}", seconds, **kwargs)


def requests(count: float, **kwargs) -> TimeSeriesSample:
    return make_sample("k6_http_reqs_total", count, **kwargs)


def aggregate(samples, clients=CLIENTS):
    return MetricsAggregator(FakeSource()).aggregate(RUN_ID, clients, samples)


class TestDecodeSample:
    """Test the boundary decode of raw samples."""

    def test_valid_sample(self):
        decoded = decode_sample(requests(5, error_code="1211"), RUN_ID)

        assert decoded.client == "geth"
        assert decoded.method == "eth_call"
        assert decoded.error_code == "1211"
        assert decoded.is_request_count

    @pytest.mark.parametrize("missing", ["scenario", "req_name", "__name__", "testid"])
    def test_missing_label_is_discarded(self, missing):
        sample = requests(5)
        del sample.labels[missing]
        assert decode_sample(sample, RUN_ID) is None

    def test_other_run_is_discarded(self):
        assert decode_sample(requests(5, run="run-2"), RUN_ID) is None

    def test_non_finite_value_is_discarded(self):
        assert decode_sample(duration("avg", float("nan")), RUN_ID) is None

    def test_trend_parsing(self):
        assert decode_sample(duration("p95", 0.1), RUN_ID).trend == ("duration", "p95")
        tls = decode_sample(make_sample("k6_http_req_tls_handshaking_avg", 0.1), RUN_ID)
        assert tls.trend == ("tls_handshaking", "avg")
        assert decode_sample(requests(1), RUN_ID).trend is None


class TestDurationSamples:
    """Test per-method latency reconstruction."""

    def test_seconds_become_milliseconds(self):
        metrics = aggregate([
            duration("avg", 0.012),
            duration("med", 0.010),
            duration("p90", 0.020),
            duration("p95", 0.025),
            duration("p99", 0.040),
        ])
        method = metrics["geth"].methods["eth_call"]

        assert method.avg == pytest.approx(12.0)
        assert method.p50 == pytest.approx(10.0)
        assert method.p90 == pytest.approx(20.0)
        assert method.p95 == pytest.approx(25.0)
        assert method.p99 == pytest.approx(40.0)

    def test_range_proxy_without_avg(self):
        metrics = aggregate([duration("min", 0.005), duration("max", 0.015)])
        method = metrics["geth"].methods["eth_call"]

        assert method.std_dev == pytest.approx(2.5)
        assert method.coeff_var == 0.0

    def test_coeff_var_once_avg_arrives(self):
        metrics = aggregate([
            duration("min", 0.005),
            duration("max", 0.015),
            duration("avg", 0.010),
        ])
        method = metrics["geth"].methods["eth_call"]

        assert method.std_dev == pytest.approx(2.5)
        assert method.coeff_var == pytest.approx(25.0)

    @pytest.mark.parametrize("order", list(itertools.permutations(["min", "max", "avg"])))
    def test_indicator_order_does_not_matter(self, order):
        values = {"min": 0.005, "max": 0.015, "avg": 0.010}
        metrics = aggregate([duration(ind, values[ind]) for ind in order])
        method = metrics["geth"].methods["eth_call"]

        assert (method.min, method.max, method.avg) == pytest.approx((5.0, 15.0, 10.0))
        assert method.std_dev == pytest.approx(2.5)
        assert method.coeff_var == pytest.approx(25.0)

    def test_max_before_min_has_no_spread(self):
        aggregator = MetricsAggregator(FakeSource())
        client = ClientMetrics(name="geth")
        aggregator._apply(client, decode_sample(duration("max", 0.015), RUN_ID))

        summary = client.methods["eth_call"]
        assert summary.min == MIN_LATENCY_SENTINEL
        assert summary.std_dev == 0.0

    def test_unknown_indicator_creates_no_bucket(self):
        metrics = aggregate([duration("p75", 0.01), make_sample("k6_http_req_waiting_avg", 0.01)])
        assert metrics["geth"].methods == {}


class TestRequestCounts:
    """Test request counters and derived rates."""

    def test_rates_recomputed_from_counts(self):
        metrics = aggregate([
            requests(90, status="200"),
            requests(10, error_code="1211", status="200"),
        ])
        method = metrics["geth"].methods["eth_call"]

        assert method.count == 100
        assert method.success_count == 90
        assert method.error_count == 10
        assert method.count == method.success_count + method.error_count
        assert method.error_rate == pytest.approx(10.0)
        assert method.success_rate == pytest.approx(90.0)

    def test_error_and_status_tallies(self):
        metrics = aggregate([
            requests(7, error_code="1211", status="200"),
            requests(3, error_code="1500", status="503"),
            requests(2, error_code="1211", method="eth_getBalance", status="200"),
        ])
        geth = metrics["geth"]

        assert geth.error_types == {"1211": 9, "1500": 3}
        assert geth.status_codes == {200: 9, 503: 3}

    def test_count_only_method_reports_zero_min(self):
        metrics = aggregate([requests(4)])
        assert metrics["geth"].methods["eth_call"].min == 0.0


class TestFinalization:
    """Test client-level totals and the aggregate latency."""

    def two_method_samples(self):
        return [
            requests(100, method="eth_call"),
            duration("avg", 0.010, method="eth_call"),
            duration("min", 0.002, method="eth_call"),
            duration("max", 0.050, method="eth_call"),
            duration("med", 0.008, method="eth_call"),
            duration("p99", 0.040, method="eth_call"),
            requests(280, method="eth_getBalance"),
            requests(20, method="eth_getBalance", error_code="1211"),
            duration("avg", 0.020, method="eth_getBalance"),
            duration("min", 0.005, method="eth_getBalance"),
            duration("max", 0.080, method="eth_getBalance"),
            duration("med", 0.016, method="eth_getBalance"),
            duration("p99", 0.060, method="eth_getBalance"),
        ]

    def test_totals(self):
        geth = aggregate(self.two_method_samples())["geth"]

        assert geth.total_requests == 400
        assert geth.total_errors == 20
        assert geth.error_rate == pytest.approx(5.0)
        assert geth.success_rate == pytest.approx(95.0)

    def test_aggregate_latency(self):
        latency = aggregate(self.two_method_samples())["geth"].latency

        # (10 * 100 + 20 * 300) / 400
        assert latency.avg == pytest.approx(17.5)
        assert latency.min == pytest.approx(2.0)
        assert latency.max == pytest.approx(80.0)
        assert latency.p50 == pytest.approx(12.0)
        assert latency.p99 == pytest.approx(50.0)
        assert latency.std_dev == pytest.approx(19.5)
        assert latency.throughput == pytest.approx(1000 / 17.5)
        assert latency.min <= latency.avg <= latency.max

    def test_method_throughput(self):
        methods = aggregate(self.two_method_samples())["geth"].methods
        assert methods["eth_call"].throughput == pytest.approx(100.0)
        assert methods["eth_getBalance"].throughput == pytest.approx(50.0)

    def test_totals_independent_of_sample_order(self):
        samples = [
            requests(5, method="eth_call"),
            requests(3, method="eth_call", error_code="1211"),
            requests(11, method="eth_chainId"),
            requests(2, client="nethermind", method="eth_call"),
        ]
        for permutation in itertools.permutations(samples):
            metrics = aggregate(permutation)
            for client in metrics.values():
                assert client.total_requests == sum(m.count for m in client.methods.values())
            assert metrics["geth"].total_requests == 19
            assert metrics["geth"].total_errors == 3
            assert metrics["nethermind"].total_requests == 2

    def test_avg_only_method_brackets_avg(self):
        metrics = aggregate([requests(10), duration("avg", 0.012)])
        method = metrics["geth"].methods["eth_call"]
        latency = metrics["geth"].latency

        assert (method.min, method.avg, method.max) == pytest.approx((12.0, 12.0, 12.0))
        assert method.std_dev == 0.0
        assert latency.min <= latency.avg <= latency.max
        assert latency.min == pytest.approx(12.0)

    def test_inconsistent_indicators_are_widened(self):
        metrics = aggregate([
            requests(10),
            duration("min", 0.015),
            duration("avg", 0.012),
            duration("max", 0.011),
        ])
        method = metrics["geth"].methods["eth_call"]

        assert method.min <= method.avg <= method.max
        assert (method.min, method.max) == pytest.approx((12.0, 12.0))

    def test_partial_method_keeps_client_bounds(self):
        metrics = aggregate([
            requests(10, method="eth_call"),
            duration("avg", 0.030, method="eth_call"),
            requests(10, method="eth_chainId"),
            duration("avg", 0.004, method="eth_chainId"),
            duration("min", 0.001, method="eth_chainId"),
            duration("max", 0.009, method="eth_chainId"),
        ])
        latency = metrics["geth"].latency

        assert latency.avg == pytest.approx(17.0)
        assert latency.min == pytest.approx(1.0)
        assert latency.max == pytest.approx(30.0)

    def test_connection_timings(self):
        metrics = aggregate([
            make_sample("k6_http_req_blocked_avg", 0.001),
            make_sample("k6_http_req_connecting_avg", 0.002),
            make_sample("k6_http_req_connecting_max", 0.009),
            make_sample("k6_http_req_tls_handshaking_avg", 0.004),
        ])
        connection = metrics["geth"].connection_metrics

        assert connection.tcp_handshake_time == pytest.approx(3.0)
        assert connection.tls_handshake_time == pytest.approx(4.0)


class TestMissingData:
    """Test that noisy or empty snapshots degrade to zero-filled output."""

    def test_empty_snapshot_yields_every_client(self):
        metrics = aggregate([])

        assert set(metrics) == set(CLIENTS)
        for name, client in metrics.items():
            assert client.name == name
            assert client.methods == {}
            assert client.total_requests == 0
            assert client.latency == MetricSummary()

    def test_noise_is_ignored(self):
        unnamed = requests(50)
        del unnamed.labels["scenario"]
        metrics = aggregate([
            requests(50, run="run-2"),
            requests(50, client="erigon"),
            unnamed,
            requests(float("nan")),
            requests(4),
        ])

        assert metrics["geth"].total_requests == 4
        assert "erigon" not in metrics


class TestMetricsAggregator:
    """Test the query-driven collection entry points."""

    def test_collect_queries_once(self, query_time):
        source = FakeSource([requests(8)])
        metrics = MetricsAggregator(source).collect(RUN_ID, CLIENTS, query_time)

        assert source.queries == [(build_selector(RUN_ID), query_time)]
        assert metrics["geth"].total_requests == 8

    def test_selector(self):
        assert build_selector("run-1") == '{__name__=~"k6_http_req.+",testid="run-1"}'
        assert build_selector('a"b') == '{__name__=~"k6_http_req.+",testid="a\\"b"}'

    def test_collect_is_idempotent(self, query_time):
        source = FakeSource(TestFinalization().two_method_samples())
        aggregator = MetricsAggregator(source)

        first = aggregator.collect(RUN_ID, CLIENTS, query_time)
        second = aggregator.collect(RUN_ID, CLIENTS, query_time)

        assert {k: v.model_dump() for k, v in first.items()} == {k: v.model_dump() for k, v in second.items()}
        assert first["geth"] is not second["geth"]

    def test_missing_source(self, query_time):
        with pytest.raises(ConfigurationError):
            MetricsAggregator(None).collect(RUN_ID, CLIENTS, query_time)

    def test_query_error_propagates(self, query_time):
        source = FakeSource(error=QueryError("connection refused"))
        with pytest.raises(QueryError):
            MetricsAggregator(source).collect(RUN_ID, CLIENTS, query_time)

    def test_collect_clients_metrics_without_outputs(self, query_time):
        config = BenchmarkConfig(test_name=RUN_ID, clients=CLIENTS)
        with pytest.raises(ConfigurationError):
            collect_clients_metrics(config, query_time)

    def test_collect_clients_metrics_with_explicit_source(self, query_time):
        config = BenchmarkConfig(test_name=RUN_ID, clients=CLIENTS)
        metrics = collect_clients_metrics(config, query_time, source=FakeSource([requests(3)]))
        assert metrics["geth"].total_requests == 3

    def test_collect_clients_metrics_builds_prometheus_source(self, query_time):
        config = BenchmarkConfig.from_mapping({
            "test_name": RUN_ID,
            "clients": CLIENTS,
            "outputs": {"prometheus_rw": {"endpoint": "http://prometheus:9090"}},
        })
        fake = FakeSource([requests(6)])

        with patch("rpcbench.metrics.aggregator.PrometheusSource") as source_cls:
            source_cls.from_config = MagicMock(return_value=fake)
            metrics = collect_clients_metrics(config, query_time)

        source_cls.from_config.assert_called_once_with(config.outputs.prometheus_rw)
        assert metrics["geth"].total_requests == 6
