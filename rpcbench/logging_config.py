"""
Centralized logging configuration for rpcbench.

This module provides a consistent logging setup across the benchmark runner
with support for different environments and an optional rotating log file.
"""

import functools
import inspect
import logging
import logging.config
import os
import sys
import time
from typing import Any, Dict


def get_log_level() -> str:
    """Get log level from environment variable or default to INFO."""
    return os.getenv("RPCBENCH_LOG_LEVEL", "INFO").upper()


def get_log_format() -> str:
    """Get log format based on environment."""
    env = os.getenv("RPCBENCH_ENV", "development").lower()

    if env == "production":
        return "%(asctime)s | %(name)s | %(levelname)s | %(message)s | %(pathname)s:%(lineno)d"
    return "%(asctime)s | %(name)-28s | %(levelname)-8s | %(message)s"


def get_logging_config() -> Dict[str, Any]:
    """Get the logging configuration dictionary."""
    log_level = get_log_level()

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": get_log_format(),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "standard",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "rpcbench": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": ["console"],
        },
    }

    # Request logs from the Prometheus client are noise below WARNING
    for name in ("httpx", "httpcore"):
        config["loggers"][name] = {
            "level": "WARNING",
            "handlers": ["console"],
            "propagate": False,
        }

    log_file = os.getenv("RPCBENCH_LOG_FILE")
    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "standard",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
        }
        config["loggers"]["rpcbench"]["handlers"].append("file")

    return config


def setup_logging() -> None:
    """Setup logging configuration for the benchmark runner."""
    logging.config.dictConfig(get_logging_config())

    logger = logging.getLogger("rpcbench.logging")
    logger.info("Logging configured with level: %s", get_log_level())

    if os.getenv("RPCBENCH_LOG_FILE"):
        logger.info("File logging enabled: %s", os.getenv("RPCBENCH_LOG_FILE"))


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the rpcbench hierarchy.

    Args:
        name: Logger name (typically __name__ of the module)
    """
    # Keep every logger under the rpcbench hierarchy
    if not name.startswith("rpcbench"):
        if name == "__main__":
            name = "rpcbench.main"
        else:
            name = f"rpcbench.{name}"

    return logging.getLogger(name)


def log_performance(logger: logging.Logger, operation: str):
    """
    Decorator to log performance timing of operations.

    Args:
        logger: Logger instance to use
        operation: Description of the operation being timed
    """

    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                logger.debug("Operation '%s' completed in %.3fs", operation, time.perf_counter() - start_time)
                return result
            except Exception as e:
                logger.error("Operation '%s' failed after %.3fs: %s", operation, time.perf_counter() - start_time, e)
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                logger.debug("Operation '%s' completed in %.3fs", operation, time.perf_counter() - start_time)
                return result
            except Exception as e:
                logger.error("Operation '%s' failed after %.3fs: %s", operation, time.perf_counter() - start_time, e)
                raise

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


# Initialize logging when module is imported
if not logging.getLogger().handlers:
    setup_logging()
