"""Monitoring and telemetry module for parity runs."""

from src.monitoring.metrics import RunMetricsPublisher

__all__ = ["RunMetricsPublisher"]
