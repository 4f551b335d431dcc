"""Measurement: run and phase statistics built from lifecycle events."""

from product_research.measurement.collector import PhaseStats, RunMetricsCollector

__all__ = ["PhaseStats", "RunMetricsCollector"]
