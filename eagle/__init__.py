"""Continuous, rate-controlled HTTP load generation with Prometheus results."""

__version__ = "0.3.0"
