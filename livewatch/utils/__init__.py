"""Utility functions and helpers."""

from .health import HealthCheckServer, get_health_server, start_health_server, stop_health_server
from .logging import setup_logging
from .rate_limiter import RateLimiter

__all__ = [
    "HealthCheckServer",
    "setup_logging",
    "RateLimiter",
    "start_health_server",
    "stop_health_server",
    "get_health_server",
]
