"""
Time-series sources consumed by the metrics aggregator.

A source answers one instant query with a flat list of labelled samples.
``PrometheusSource`` talks to the Prometheus HTTP API that the k6
remote-write output feeds; the untyped JSON is decoded through pydantic
models here so nothing downstream sees raw payloads.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Literal, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from rpcbench.config import PrometheusOutput
from rpcbench.errors import QueryError
from rpcbench.logging_config import get_logger

logger = get_logger(__name__)


class TimeSeriesSample(BaseModel):
    """One labelled value from an instant query."""
    labels: dict[str, str] = Field(default_factory=dict)
    value: float


@runtime_checkable
class TimeSeriesSource(Protocol):
    def query(self, selector: str, timestamp: datetime) -> list[TimeSeriesSample]:
        ...


class VectorResult(BaseModel):
    """An element of a Prometheus ``vector`` result."""
    metric: dict[str, str] = Field(default_factory=dict)
    value: tuple[float, str]


class QueryData(BaseModel):
    resultType: Literal["matrix", "vector", "scalar", "string"]
    result: Any = None


class QueryResponse(BaseModel):
    """Envelope of ``/api/v1/query``."""
    status: Literal["success", "error"]
    data: QueryData | None = None
    errorType: str | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


_vector_adapter = TypeAdapter(list[VectorResult])


def decode_query_response(payload: Any, selector: str | None = None) -> list[TimeSeriesSample]:
    """Validate a decoded JSON body and flatten its vector result into samples."""
    try:
        response = QueryResponse.model_validate(payload)
    except ValidationError as e:
        raise QueryError(f"malformed prometheus response: {e}", selector) from e

    if response.status != "success":
        raise QueryError(f"prometheus query failed ({response.errorType}): {response.error}", selector)
    if response.data is None:
        raise QueryError("prometheus response carries no data", selector)
    if response.data.resultType != "vector":
        raise QueryError(f"expected vector type, got {response.data.resultType}", selector)

    for warning in response.warnings:
        logger.warning("Prometheus warning for %s: %s", selector, warning)

    try:
        results = _vector_adapter.validate_python(response.data.result or [])
        return [TimeSeriesSample(labels=r.metric, value=float(r.value[1])) for r in results]
    except (ValidationError, ValueError) as e:
        raise QueryError(f"malformed prometheus vector: {e}", selector) from e


class PrometheusSource:
    """Instant-query client for the Prometheus HTTP API."""

    def __init__(self,
                 endpoint: str,
                 username: str | None = None,
                 password: str | None = None,
                 timeout: float = 30.0,
                 transport: httpx.BaseTransport | None = None):
        self.endpoint = endpoint.rstrip("/")
        self.auth = httpx.BasicAuth(username, password) if username and password else None
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, output: PrometheusOutput, transport: httpx.BaseTransport | None = None) -> "PrometheusSource":
        auth = output.basic_auth
        return cls(
            endpoint=output.endpoint,
            username=auth.username if auth.enabled else None,
            password=auth.password if auth.enabled else None,
            timeout=output.timeout,
            transport=transport,
        )

    @contextmanager
    def client_session(self) -> Iterator[httpx.Client]:
        with httpx.Client(
                base_url=self.endpoint,
                auth=self.auth,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
        ) as client:
            yield client

    def query(self, selector: str, timestamp: datetime) -> list[TimeSeriesSample]:
        """Run one instant query; no retries."""
        params = {"query": selector, "time": f"{timestamp.timestamp():.3f}"}
        logger.debug("Querying %s with %s", self.endpoint, params)

        try:
            with self.client_session() as client:
                response = client.get("/api/v1/query", params=params)
        except httpx.HTTPError as e:
            raise QueryError(f"failed to query prometheus: {e}", selector) from e

        # Prometheus reports bad queries as 4xx with a JSON error envelope
        try:
            payload = response.json()
        except ValueError as e:
            raise QueryError(
                f"failed to query prometheus: HTTP {response.status_code} with non-JSON body", selector
            ) from e

        if response.is_error and not isinstance(payload, dict):
            raise QueryError(f"failed to query prometheus: HTTP {response.status_code}", selector)

        samples = decode_query_response(payload, selector)
        logger.debug("Prometheus returned %d samples", len(samples))
        return samples
