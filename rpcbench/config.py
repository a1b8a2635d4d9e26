"""
Benchmark configuration models.

Only the parts of the runner configuration that the metrics engine reads are
modelled here: the test (run) name, the expected client names and the
Prometheus endpoint that k6 remote-writes into.
"""

import os
import re
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from rpcbench.errors import ConfigurationError
from rpcbench.logging_config import get_logger

logger = get_logger(__name__)

_ENV_REFERENCE = re.compile(r"\$\$\{([^}]*)\}|\$\{([^}]*)\}")
_REQUIRED_VALUE = re.compile(r"^(.+?):\?(.*)$")
_DEFAULT_VALUE = re.compile(r"^(.+?):-(.*)$")


def substitute_env_vars(content: str) -> str:
    """
    Expand environment references in a configuration string.

    Supported forms:
        ${VAR}            value of VAR, empty when unset
        ${VAR:-default}   value of VAR, or default when unset or empty
        ${VAR:?message}   value of VAR, ConfigurationError when unset or empty
        $${VAR}           literal ${VAR}
    """

    def replace(match: re.Match) -> str:
        escaped, reference = match.groups()
        if escaped is not None:
            return "${" + escaped + "}"

        required = _REQUIRED_VALUE.match(reference)
        if required:
            name = required.group(1).strip()
            value = os.getenv(name, "")
            if not value:
                message = required.group(2).strip() or f"required environment variable {name} is not set"
                raise ConfigurationError(message)
            return value

        default = _DEFAULT_VALUE.match(reference)
        if default:
            return os.getenv(default.group(1).strip(), "") or default.group(2).strip()

        return os.getenv(reference, "")

    return _ENV_REFERENCE.sub(replace, content)


def _substitute(data: Any) -> Any:
    if isinstance(data, str):
        return substitute_env_vars(data)
    if isinstance(data, dict):
        return {key: _substitute(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_substitute(item) for item in data]
    return data


class BasicAuth(BaseModel):
    """Basic authentication credentials for a server endpoint."""
    username: str = ""
    password: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.username and self.password)


class PrometheusOutput(BaseModel):
    """Prometheus server that receives the k6 remote-write stream."""
    endpoint: str = Field(..., description="Base URL of the Prometheus HTTP API")
    basic_auth: BasicAuth = Field(default_factory=BasicAuth)
    timeout: float = Field(30.0, gt=0, description="Query timeout in seconds")

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"invalid prometheus endpoint: {value!r}")
        return value.rstrip("/")


class Outputs(BaseModel):
    """Outputs used by the benchmarks."""
    prometheus_rw: PrometheusOutput | None = None


class BenchmarkConfig(BaseModel):
    """Benchmark run configuration as seen by the metrics engine."""
    test_name: str = Field(..., min_length=1, description="Run identity (k6 testid label)")
    clients: list[str] = Field(default_factory=list, description="Expected client names")
    outputs: Outputs = Field(default_factory=Outputs)

    @field_validator("clients")
    @classmethod
    def _unique_clients(cls, value: list[str]) -> list[str]:
        seen = []
        for name in value:
            if name not in seen:
                seen.append(name)
        return seen

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "BenchmarkConfig":
        """Build a config from parsed file content, expanding environment references first."""
        try:
            return cls.model_validate(_substitute(data))
        except ValidationError as e:
            raise ConfigurationError(f"invalid benchmark configuration: {e}") from e

    @classmethod
    def from_env(cls) -> "BenchmarkConfig":
        """Build a config from RPCBENCH_* environment variables."""
        clients = [name.strip() for name in os.getenv("RPCBENCH_CLIENTS", "").split(",") if name.strip()]
        data: dict[str, Any] = {
            "test_name": os.getenv("RPCBENCH_TEST_NAME", ""),
            "clients": clients,
            "outputs": {},
        }

        endpoint = os.getenv("RPCBENCH_PROMETHEUS_URL")
        if endpoint:
            data["outputs"]["prometheus_rw"] = {
                "endpoint": endpoint,
                "basic_auth": {
                    "username": os.getenv("RPCBENCH_PROMETHEUS_USER", ""),
                    "password": os.getenv("RPCBENCH_PROMETHEUS_PASSWORD", ""),
                },
            }

        logger.debug("Loaded benchmark config from environment for %d clients", len(clients))
        return cls.from_mapping(data)
